"""
Source providers: where the texts to acronymize come from.
"""

import logging
import sqlite3
from enum import Enum
from pathlib import Path
from typing import Protocol

from .errors import ConfigError

logger = logging.getLogger(__name__)


class SourceKind(str, Enum):
    """Kind of text pulled from the Seforim library."""

    BOOK_TITLES = "book_titles"
    TOC_TEXTS = "toc_texts"


SOURCE_QUERIES = {
    SourceKind.BOOK_TITLES: "SELECT title FROM book ORDER BY id",
    SourceKind.TOC_TEXTS: "SELECT text FROM tocText ORDER BY id",
}


class SourceProvider(Protocol):
    def list_items(self) -> list[str]: ...


class SeforimSource:
    """Reads book titles or table-of-contents texts from a Seforim database."""

    def __init__(self, db_path: Path, kind: SourceKind = SourceKind.BOOK_TITLES):
        self.db_path = Path(db_path)
        self.kind = kind

    def list_items(self) -> list[str]:
        """Return non-blank texts in source order."""
        if not self.db_path.exists():
            raise ConfigError(f"Seforim database not found: {self.db_path}")

        # Read-only: never write to the library database.
        conn = sqlite3.connect(f"file:{self.db_path}?mode=ro", uri=True)
        try:
            cursor = conn.execute(SOURCE_QUERIES[self.kind])
            items = [row[0] for row in cursor.fetchall() if row[0] and row[0].strip()]
        finally:
            conn.close()

        logger.info(f"Loaded {len(items)} {self.kind.value} from {self.db_path}")
        return items


class TextFileSource:
    """Reads one text per line from a UTF-8 file. Blank lines are ignored."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def list_items(self) -> list[str]:
        if not self.path.exists():
            raise ConfigError(f"Items file not found: {self.path}")
        lines = self.path.read_text(encoding="utf-8").splitlines()
        return [line.strip() for line in lines if line.strip()]
