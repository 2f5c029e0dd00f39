"""Shared pytest fixtures for seforim-acronymizer tests."""

import pytest

from seforim_acronymizer.config import AcronymizerConfig
from seforim_acronymizer.migrations import run_migrations
from seforim_acronymizer.models import AcronymList, ResultStore, ResultTable


class FakeClock:
    """Millisecond clock that only moves when something sleeps on it."""

    def __init__(self, start_ms: int = 1_000_000):
        self.now_ms = start_ms
        self.sleeps: list[float] = []

    def __call__(self) -> int:
        return self.now_ms

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now_ms += round(seconds * 1000)


class FakeSession:
    """In-memory stand-in for an LLM session.

    ``answers`` maps input text to items; a callable value is invoked and
    may raise to simulate upstream failures.
    """

    def __init__(self, answers=None, uniformize_fn=None):
        self.answers = answers or {}
        self.uniformize_fn = uniformize_fn
        self.calls: list[str] = []
        self.uniformize_calls: list[list[AcronymList]] = []
        self.closed = False

    async def acronymize(self, text: str) -> AcronymList:
        self.calls.append(text)
        answer = self.answers.get(text, [])
        if callable(answer):
            answer = answer()
        return AcronymList(term=text, items=list(answer))

    async def uniformize(self, entries: list[AcronymList]) -> list[AcronymList]:
        self.uniformize_calls.append(entries)
        if self.uniformize_fn is not None:
            return self.uniformize_fn(entries)
        return [AcronymList(term=e.term, items=list(e.items)) for e in entries]

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def db_path(tmp_path):
    """Create a temporary result database with full schema via migrations."""
    db_file = tmp_path / "test_acronymizer.db"
    run_migrations(db_file)
    return db_file


@pytest.fixture
def store(db_path):
    """Result store over the book titles table."""
    return ResultStore(db_path, ResultTable.BOOK_TITLES)


@pytest.fixture
def toc_store(db_path):
    """Result store over the TOC texts table."""
    return ResultStore(db_path, ResultTable.TOC_TEXTS)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config(db_path):
    """Config pointing at the test database, with no real-time delays."""
    config = AcronymizerConfig(db_path=db_path)
    config.batch.session_reset_delay_seconds = 0.0
    return config


@pytest.fixture
def fake_session_cls():
    return FakeSession
