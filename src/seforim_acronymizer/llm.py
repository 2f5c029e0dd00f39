"""
LLM client for seforim-acronymizer.

Speaks the OpenAI-compatible chat completions API with JSON-schema
structured output. Each session keeps its own conversation history, so
replacing the session gives the model a fresh context.
"""

import json
import logging
from collections.abc import Callable
from typing import Any, Protocol

import httpx

from .config import LLMConfig
from .errors import ConfigError, RateLimitError, SchemaError
from .models import AcronymList
from .prompts import FEW_SHOT_EXAMPLES, SYSTEM_PROMPT, UNIFORMIZE_PROMPT

logger = logging.getLogger(__name__)

ACRONYM_LIST_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "term": {"type": "string"},
        "items": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["term", "items"],
    "additionalProperties": False,
}

ACRONYM_BATCH_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "entries": {"type": "array", "items": ACRONYM_LIST_SCHEMA},
    },
    "required": ["entries"],
    "additionalProperties": False,
}


class AcronymSession(Protocol):
    """What the batch processor and homogenizer need from an LLM session."""

    async def acronymize(self, text: str) -> AcronymList: ...

    async def uniformize(self, entries: list[AcronymList]) -> list[AcronymList]: ...

    async def aclose(self) -> None: ...


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _error_message(response: httpx.Response) -> str:
    """Pull the human-readable error message out of an error response."""
    try:
        data = response.json()
    except ValueError:
        return response.text
    if isinstance(data, dict) and isinstance(data.get("error"), dict):
        return data["error"].get("message") or response.text
    return response.text


def _parse_content(content: str | None) -> Any:
    if not content:
        raise SchemaError("Model returned an empty response")
    try:
        return json.loads(content)
    except json.JSONDecodeError as e:
        raise SchemaError(f"Model returned invalid JSON: {e}") from e


class OpenAIAcronymSession:
    """
    One conversational session against an OpenAI-compatible endpoint.

    The conversation starts with the system prompt and the few-shot examples;
    every ``acronymize`` call appends its question and answer.
    """

    def __init__(
        self,
        config: LLMConfig,
        http_client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize the session.

        Args:
            config: LLM configuration
            http_client: Optional client (for testing); closed by the caller
        """
        api_key = config.get_api_key()
        if not api_key:
            raise ConfigError(
                f"Environment variable {config.api_key_env} is not set"
                if config.api_key_env
                else "No LLM API key configured"
            )

        self.config = config
        self._api_key = api_key
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=config.timeout_seconds)
        self.messages: list[dict[str, str]] = self._initial_messages()

    def _initial_messages(self) -> list[dict[str, str]]:
        messages = [{"role": "system", "content": SYSTEM_PROMPT}]
        for example in FEW_SHOT_EXAMPLES:
            messages.append({"role": "user", "content": example.term})
            messages.append(
                {
                    "role": "assistant",
                    "content": json.dumps(example.to_dict(), ensure_ascii=False),
                }
            )
        return messages

    async def _complete(
        self,
        messages: list[dict[str, str]],
        schema_name: str,
        schema: dict[str, Any],
    ) -> Any:
        """POST a chat completion request and return the decoded JSON answer."""
        url = f"{self.config.base_url.rstrip('/')}/chat/completions"
        payload = {
            "model": self.config.model,
            "temperature": self.config.temperature,
            "messages": messages,
            "response_format": {
                "type": "json_schema",
                "json_schema": {"name": schema_name, "strict": True, "schema": schema},
            },
        }

        response = await self._client.post(
            url,
            json=payload,
            headers={"Authorization": f"Bearer {self._api_key}"},
        )

        if response.status_code == 429:
            raise RateLimitError(
                f"429 rate limit: {_error_message(response)}",
                retry_after=_parse_retry_after(response.headers.get("retry-after")),
            )
        response.raise_for_status()

        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise SchemaError(f"Unexpected completion payload: {e}") from e
        return _parse_content(content)

    async def acronymize(self, text: str) -> AcronymList:
        """Ask for the attested acronyms of a single term."""
        question = {"role": "user", "content": text}
        data = await self._complete(
            self.messages + [question], "AcronymList", ACRONYM_LIST_SCHEMA
        )
        result = AcronymList.from_dict(data)

        if result.term != text:
            logger.debug(f"Model rewrote term {text[:40]!r}, keeping input")
            result.term = text

        self.messages.append(question)
        self.messages.append(
            {"role": "assistant", "content": json.dumps(result.to_dict(), ensure_ascii=False)}
        )
        return result

    async def uniformize(self, entries: list[AcronymList]) -> list[AcronymList]:
        """Ask the model to homogenize a block of results. Order is preserved."""
        messages = [
            {"role": "system", "content": UNIFORMIZE_PROMPT},
            {
                "role": "user",
                "content": json.dumps(
                    {"entries": [e.to_dict() for e in entries]}, ensure_ascii=False
                ),
            },
        ]
        data = await self._complete(messages, "AcronymBatch", ACRONYM_BATCH_SCHEMA)
        if not isinstance(data, dict) or not isinstance(data.get("entries"), list):
            raise SchemaError("Field 'entries' must be a list")
        return [AcronymList.from_dict(entry) for entry in data["entries"]]

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def make_session_factory(
    config: LLMConfig,
    http_client: httpx.AsyncClient | None = None,
) -> Callable[[], OpenAIAcronymSession]:
    """Build a factory that opens a fresh session on each call."""

    def factory() -> OpenAIAcronymSession:
        return OpenAIAcronymSession(config, http_client=http_client)

    return factory
