"""Catalog (articles table) read and replace operations."""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Sequence

from ..models import Article
from .schema import now_text

logger = logging.getLogger(__name__)

_COLUMNS = (
    "code, internal_code, description, units_per_case, weighable, weighable_by_unit"
)


class CatalogDB:
    """Manages the articles table."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def get(self, code: str) -> Article | None:
        """Look up an article by its primary code."""
        row = self._conn.execute(
            f"SELECT {_COLUMNS} FROM articles WHERE code = ?",
            (code.strip(),),
        ).fetchone()
        return Article.from_row(row) if row else None

    def find_by_internal_code(self, internal_code: str) -> Article | None:
        """Return one article carrying the internal code, or None.

        When several pack sizes share the code, the lowest primary code wins.
        """
        code = str(internal_code).strip()
        if not code:
            return None
        row = self._conn.execute(
            f"""SELECT {_COLUMNS} FROM articles
                WHERE TRIM(internal_code) = ?
                ORDER BY code
                LIMIT 1""",
            (code,),
        ).fetchone()
        return Article.from_row(row) if row else None

    def list_by_internal_code(self, internal_code: str) -> list[Article]:
        """List every article sharing an internal code, ordered by description."""
        code = str(internal_code).strip()
        if not code:
            return []
        rows = self._conn.execute(
            f"""SELECT {_COLUMNS} FROM articles
                WHERE TRIM(internal_code) = ?
                ORDER BY description COLLATE NOCASE ASC""",
            (code,),
        ).fetchall()
        return [Article.from_row(r) for r in rows]

    def count(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM articles").fetchone()[0]

    def replace_all(self, articles: Sequence[Article], batch_size: int = 800) -> int:
        """Replace the whole catalog in a single transaction.

        Rows are inserted in batches of ``batch_size``; a failure in any
        batch rolls back the delete as well, leaving the previous catalog
        untouched.

        Returns:
            Number of articles inserted.
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {batch_size}")

        ts = now_text()
        with self._conn:
            self._conn.execute("DELETE FROM articles")
            for start in range(0, len(articles), batch_size):
                batch = articles[start:start + batch_size]
                self._conn.executemany(
                    f"""INSERT INTO articles ({_COLUMNS}, updated_at)
                        VALUES (?, ?, ?, ?, ?, ?, ?)""",
                    [
                        (
                            a.code,
                            a.internal_code,
                            a.description,
                            a.units_per_case,
                            int(a.weighable),
                            int(a.weighable_by_unit),
                            ts,
                        )
                        for a in batch
                    ],
                )
                logger.debug("Inserted catalog batch %d-%d", start, start + len(batch))
        logger.info("Catalog replaced with %d articles", len(articles))
        return len(articles)
