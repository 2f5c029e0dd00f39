"""
Data models and database operations for seforim-acronymizer.
"""

import json
import logging
import secrets
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from .errors import InvalidTermError, PersistenceError, SchemaError
from .migrations import run_migrations

logger = logging.getLogger(__name__)

TERMS_DELIMITER = ","


class ResultTable(str, Enum):
    """Result tables, one per kind of source text."""

    BOOK_TITLES = "acronym_results"
    TOC_TEXTS = "toc_acronym_results"

    @property
    def key_column(self) -> str:
        if self is ResultTable.BOOK_TITLES:
            return "book_title"
        return "toc_text"


class RunStatus(str, Enum):
    """Status of a batch run."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ItemOutcome(str, Enum):
    """What happened to a single source item."""

    SKIPPED = "skipped"
    INSERTED = "inserted"
    UPDATED = "updated"
    EMPTY = "empty"
    ERROR = "error"


def encode_terms(items: list[str]) -> str:
    """
    Join acronym items into the stored delimited form.

    Items are stripped and blanks dropped. An item containing the delimiter
    would split into two on read, so it is rejected.
    """
    cleaned = [item.strip() for item in items if item and item.strip()]
    for item in cleaned:
        if TERMS_DELIMITER in item:
            raise InvalidTermError(
                f"Term {item!r} contains the delimiter {TERMS_DELIMITER!r}"
            )
    return TERMS_DELIMITER.join(cleaned)


def decode_terms(terms: str | None) -> list[str]:
    """Split a stored terms string back into items."""
    if not terms:
        return []
    return [t for t in terms.split(TERMS_DELIMITER) if t]


@dataclass
class AcronymList:
    """Structured LLM result: the attested acronyms for one input term."""

    term: str
    items: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"term": self.term, "items": list(self.items)}

    @classmethod
    def from_dict(cls, data: Any) -> "AcronymList":
        """Validate and build from decoded model output."""
        if not isinstance(data, dict):
            raise SchemaError(f"Expected an object, got {type(data).__name__}")
        term = data.get("term")
        items = data.get("items")
        if not isinstance(term, str):
            raise SchemaError("Field 'term' must be a string")
        if not isinstance(items, list) or not all(isinstance(i, str) for i in items):
            raise SchemaError("Field 'items' must be a list of strings")
        return cls(term=term, items=items)


@dataclass
class AcronymRecord:
    """A stored acronym result row."""

    row_id: int
    source_key: str
    terms: str
    created_at: str

    @property
    def items(self) -> list[str]:
        """Parse the delimited terms column."""
        return decode_terms(self.terms)


@dataclass
class RunRecord:
    """A single execution of the batch processor."""

    run_id: str
    table_name: str
    started_ts: str
    status: str = "running"
    completed_ts: str | None = None
    items_total: int = 0
    items_processed: int = 0
    items_skipped: int = 0
    items_errored: int = 0
    config_snapshot_json: str | None = None
    error_message: str | None = None


@dataclass
class RunSummary:
    """Per-outcome counts for a batch run."""

    total: int = 0
    skipped: int = 0
    inserted: int = 0
    updated: int = 0
    empty: int = 0
    errored: int = 0
    homogenized: int = 0

    @property
    def processed(self) -> int:
        """Items that went through the LLM without error."""
        return self.inserted + self.updated + self.empty

    def record(self, outcome: ItemOutcome) -> None:
        if outcome is ItemOutcome.SKIPPED:
            self.skipped += 1
        elif outcome is ItemOutcome.INSERTED:
            self.inserted += 1
        elif outcome is ItemOutcome.UPDATED:
            self.updated += 1
        elif outcome is ItemOutcome.EMPTY:
            self.empty += 1
        elif outcome is ItemOutcome.ERROR:
            self.errored += 1


class ResultStore:
    """
    Read/write access to one acronym results table.

    Rows are keyed by source text but the key is not unique: every insert
    appends a new row, and only the latest row per key is authoritative.
    The schema is created lazily on first use.
    """

    def __init__(self, db_path: Path, table: ResultTable = ResultTable.BOOK_TITLES):
        self.db_path = Path(db_path)
        self.table = table
        self._initialized = False

    def initialize(self) -> None:
        """Create the database file and apply pending migrations."""
        if self._initialized:
            return
        try:
            applied = run_migrations(self.db_path)
        except (sqlite3.Error, OSError) as e:
            raise PersistenceError(
                f"Could not initialize result store at {self.db_path}: {e}"
            ) from e
        if applied:
            logger.info(f"Initialized {self.db_path} (migrations {applied})")
        self._initialized = True

    def _connect(self) -> sqlite3.Connection:
        self.initialize()
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _session(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection, translating sqlite errors to PersistenceError."""
        try:
            conn = self._connect()
        except sqlite3.Error as e:
            raise PersistenceError(f"Could not open {self.db_path}: {e}") from e
        try:
            yield conn
        except sqlite3.Error as e:
            raise PersistenceError(f"Database error on {self.table.value}: {e}") from e
        finally:
            conn.close()

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def latest_record(self, source_key: str) -> AcronymRecord | None:
        """Get the authoritative (highest id) row for a key."""
        table, key = self.table.value, self.table.key_column
        with self._session() as conn:
            row = conn.execute(
                f"""
                SELECT id, {key} AS source_key, terms, created_at
                FROM {table}
                WHERE {key} = ?
                ORDER BY id DESC
                LIMIT 1
                """,
                (source_key,),
            ).fetchone()
        if row is None:
            return None
        return AcronymRecord(
            row_id=row["id"],
            source_key=row["source_key"],
            terms=row["terms"],
            created_at=row["created_at"],
        )

    def exists(self, source_key: str) -> bool:
        """Check if any row exists for the key."""
        return self.latest_row_id(source_key) is not None

    def latest_terms(self, source_key: str) -> str | None:
        """
        Get the latest stored terms string for a key.

        Returns None when no row exists. An empty string means a row exists
        but holds no terms.
        """
        record = self.latest_record(source_key)
        return record.terms if record else None

    def latest_row_id(self, source_key: str) -> int | None:
        """Get the latest row id for a key, or None."""
        table, key = self.table.value, self.table.key_column
        with self._session() as conn:
            row = conn.execute(
                f"SELECT MAX(id) FROM {table} WHERE {key} = ?",
                (source_key,),
            ).fetchone()
        return row[0] if row and row[0] is not None else None

    def count(self) -> int:
        """Total number of rows in the table."""
        with self._session() as conn:
            return conn.execute(f"SELECT COUNT(*) FROM {self.table.value}").fetchone()[0]

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def insert(
        self,
        source_key: str,
        items: list[str],
        created_at: datetime | None = None,
    ) -> int:
        """Append a new row for the key. Returns the new row id."""
        terms = encode_terms(items)
        ts = (created_at or datetime.now(UTC)).isoformat()
        table, key = self.table.value, self.table.key_column
        with self._session() as conn:
            cursor = conn.execute(
                f"INSERT INTO {table} ({key}, terms, created_at) VALUES (?, ?, ?)",
                (source_key, terms, ts),
            )
            conn.commit()
            return cursor.lastrowid

    def update(
        self,
        row_id: int,
        items: list[str],
        created_at: datetime | None = None,
    ) -> None:
        """Overwrite the terms and timestamp of an existing row."""
        terms = encode_terms(items)
        ts = (created_at or datetime.now(UTC)).isoformat()
        with self._session() as conn:
            conn.execute(
                f"UPDATE {self.table.value} SET terms = ?, created_at = ? WHERE id = ?",
                (terms, ts, row_id),
            )
            conn.commit()

    # -------------------------------------------------------------------------
    # Runs
    # -------------------------------------------------------------------------

    def create_run(self, items_total: int = 0, config: dict | None = None) -> RunRecord:
        """Create a new run record."""
        run = RunRecord(
            run_id=secrets.token_hex(16),
            table_name=self.table.value,
            started_ts=datetime.now(UTC).isoformat(),
            items_total=items_total,
            config_snapshot_json=json.dumps(config) if config else None,
        )

        with self._session() as conn:
            conn.execute(
                """
                INSERT INTO acronymizer_runs
                    (run_id, table_name, started_ts, status, items_total,
                     config_snapshot_json)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    run.run_id,
                    run.table_name,
                    run.started_ts,
                    run.status,
                    run.items_total,
                    run.config_snapshot_json,
                ),
            )
            conn.commit()

        return run

    def complete_run(
        self,
        run_id: str,
        summary: RunSummary,
        status: RunStatus = RunStatus.COMPLETED,
        error_message: str | None = None,
    ) -> None:
        """Mark a run as finished."""
        now = datetime.now(UTC).isoformat()
        with self._session() as conn:
            conn.execute(
                """
                UPDATE acronymizer_runs SET
                    completed_ts = ?,
                    status = ?,
                    items_processed = ?,
                    items_skipped = ?,
                    items_errored = ?,
                    error_message = ?
                WHERE run_id = ?
                """,
                (
                    now,
                    status.value,
                    summary.processed,
                    summary.skipped,
                    summary.errored,
                    error_message,
                    run_id,
                ),
            )
            conn.commit()

    def get_run(self, run_id: str) -> RunRecord | None:
        """Get a run record by id."""
        with self._session() as conn:
            row = conn.execute(
                "SELECT * FROM acronymizer_runs WHERE run_id = ?",
                (run_id,),
            ).fetchone()
        return RunRecord(**dict(row)) if row else None
