"""Tests for the OpenAI-compatible LLM session."""

import json

import httpx
import pytest

from seforim_acronymizer.config import LLMConfig
from seforim_acronymizer.errors import ConfigError, RateLimitError, SchemaError
from seforim_acronymizer.llm import OpenAIAcronymSession, make_session_factory
from seforim_acronymizer.models import AcronymList
from seforim_acronymizer.prompts import FEW_SHOT_EXAMPLES


def completion(content: str) -> dict:
    """Wrap content in a chat completion response body."""
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


class Recorder:
    """httpx MockTransport handler that records requests and replays responses."""

    def __init__(self, *responses: httpx.Response):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responses.pop(0)

    def body(self, index: int = -1) -> dict:
        return json.loads(self.requests[index].content)


@pytest.fixture
def llm_config():
    return LLMConfig(model="test-model", base_url="https://llm.test/v1", api_key="sk-test")


def make_session(llm_config, recorder):
    client = httpx.AsyncClient(transport=httpx.MockTransport(recorder))
    return OpenAIAcronymSession(llm_config, http_client=client), client


class TestAcronymize:
    """Test single-term structured queries."""

    @pytest.mark.asyncio
    async def test_parses_structured_answer(self, llm_config):
        answer = {"term": "אורח חיים סימן", "items": ['או"ח סי\'', "או״ח סי׳"]}
        recorder = Recorder(
            httpx.Response(200, json=completion(json.dumps(answer, ensure_ascii=False)))
        )
        session, client = make_session(llm_config, recorder)

        result = await session.acronymize("אורח חיים סימן")
        await client.aclose()

        assert result == AcronymList(term="אורח חיים סימן", items=answer["items"])
        request = recorder.requests[0]
        assert str(request.url) == "https://llm.test/v1/chat/completions"
        assert request.headers["Authorization"] == "Bearer sk-test"
        body = recorder.body()
        assert body["model"] == "test-model"
        assert body["response_format"]["type"] == "json_schema"
        assert body["messages"][0]["role"] == "system"
        assert body["messages"][-1] == {"role": "user", "content": "אורח חיים סימן"}

    @pytest.mark.asyncio
    async def test_history_accumulates_within_session(self, llm_config):
        """Each answered question stays in the session's context."""
        recorder = Recorder(
            httpx.Response(200, json=completion('{"term": "A", "items": ["a"]}')),
            httpx.Response(200, json=completion('{"term": "B", "items": []}')),
        )
        session, client = make_session(llm_config, recorder)

        await session.acronymize("A")
        await session.acronymize("B")
        await client.aclose()

        base = 1 + 2 * len(FEW_SHOT_EXAMPLES)
        assert len(recorder.body(0)["messages"]) == base + 1
        assert len(recorder.body(1)["messages"]) == base + 3

    @pytest.mark.asyncio
    async def test_keeps_input_term(self, llm_config):
        """A rewritten term in the answer is replaced by the input."""
        recorder = Recorder(
            httpx.Response(200, json=completion('{"term": "normalized", "items": ["x"]}'))
        )
        session, client = make_session(llm_config, recorder)

        result = await session.acronymize("Original  Term")
        await client.aclose()

        assert result.term == "Original  Term"

    @pytest.mark.asyncio
    async def test_rate_limit_raises_typed_error(self, llm_config):
        """HTTP 429 becomes RateLimitError with the retry-after hint."""
        recorder = Recorder(
            httpx.Response(
                429,
                headers={"retry-after": "3"},
                json={"error": {"message": "Rate limit reached. Please try again in 2.5s."}},
            )
        )
        session, client = make_session(llm_config, recorder)

        with pytest.raises(RateLimitError) as exc_info:
            await session.acronymize("A")
        await client.aclose()

        assert exc_info.value.retry_after == 3.0
        assert "try again in 2.5s" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_server_error_propagates(self, llm_config):
        recorder = Recorder(httpx.Response(500, text="boom"))
        session, client = make_session(llm_config, recorder)

        with pytest.raises(httpx.HTTPStatusError):
            await session.acronymize("A")
        await client.aclose()

    @pytest.mark.parametrize(
        "content",
        [
            "not json",
            "",
            '{"term": "A"}',
            '{"term": "A", "items": "x"}',
            '{"term": "A", "items": [1, 2]}',
            '["A"]',
        ],
    )
    @pytest.mark.asyncio
    async def test_malformed_output_raises_schema_error(self, llm_config, content):
        recorder = Recorder(httpx.Response(200, json=completion(content)))
        session, client = make_session(llm_config, recorder)

        with pytest.raises(SchemaError):
            await session.acronymize("A")
        await client.aclose()

    @pytest.mark.asyncio
    async def test_failed_call_does_not_extend_history(self, llm_config):
        recorder = Recorder(httpx.Response(200, json=completion("garbage")))
        session, client = make_session(llm_config, recorder)
        before = len(session.messages)

        with pytest.raises(SchemaError):
            await session.acronymize("A")
        await client.aclose()

        assert len(session.messages) == before


class TestUniformize:
    """Test batch homogenization calls."""

    @pytest.mark.asyncio
    async def test_round_trips_entries(self, llm_config):
        entries = [AcronymList("A", ["a"]), AcronymList("B", ["b"])]
        reply = {"entries": [{"term": "A", "items": ["a", "a2"]}, {"term": "B", "items": ["b"]}]}
        recorder = Recorder(httpx.Response(200, json=completion(json.dumps(reply))))
        session, client = make_session(llm_config, recorder)

        result = await session.uniformize(entries)
        await client.aclose()

        assert result == [AcronymList("A", ["a", "a2"]), AcronymList("B", ["b"])]
        sent = json.loads(recorder.body()["messages"][-1]["content"])
        assert sent == {"entries": [{"term": "A", "items": ["a"]}, {"term": "B", "items": ["b"]}]}

    @pytest.mark.asyncio
    async def test_missing_entries_is_schema_error(self, llm_config):
        recorder = Recorder(httpx.Response(200, json=completion('{"items": []}')))
        session, client = make_session(llm_config, recorder)

        with pytest.raises(SchemaError):
            await session.uniformize([AcronymList("A", ["a"])])
        await client.aclose()


class TestSessionSetup:
    """Test session construction."""

    def test_missing_api_key(self, monkeypatch):
        """No key configured is a configuration error."""
        monkeypatch.delenv("OPEN_AI_KEY", raising=False)
        with pytest.raises(ConfigError):
            OpenAIAcronymSession(LLMConfig())

    def test_api_key_from_env(self, monkeypatch):
        monkeypatch.setenv("OPEN_AI_KEY", "env-key")
        session = OpenAIAcronymSession(LLMConfig(), http_client=httpx.AsyncClient())
        assert session._api_key == "env-key"

    def test_factory_opens_fresh_sessions(self, llm_config):
        client = httpx.AsyncClient()
        factory = make_session_factory(llm_config, http_client=client)

        first, second = factory(), factory()

        assert first is not second
        assert first.messages == second.messages
        assert first.messages is not second.messages
