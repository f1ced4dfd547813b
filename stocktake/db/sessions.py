"""Inventory session and line-item operations."""

from __future__ import annotations

import logging
import sqlite3
from datetime import date

from ..errors import ValidationError
from ..models import ExpiryLine, PlainLine, Session, SessionKind, SessionStats
from .schema import now_text

logger = logging.getLogger(__name__)

_UPSERT_PLAIN = """INSERT INTO plain_lines (session_id, code, quantity, updated_at)
                   VALUES (?, ?, ?, ?)
                   ON CONFLICT(session_id, code) DO UPDATE SET
                     quantity=excluded.quantity,
                     updated_at=excluded.updated_at"""

_UPSERT_EXPIRY = """INSERT INTO expiry_lines
                    (session_id, code, quantity, expiry_date, lot, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(session_id, code, expiry_date, lot) DO UPDATE SET
                      quantity=excluded.quantity,
                      updated_at=excluded.updated_at"""


def _plain_line(row: sqlite3.Row) -> PlainLine:
    keys = row.keys()
    return PlainLine(
        id=row["id"],
        session_id=row["session_id"],
        code=row["code"],
        quantity=row["quantity"],
        updated_at=row["updated_at"],
        internal_code=row["internal_code"] if "internal_code" in keys else None,
        description=row["description"] if "description" in keys else None,
        units_per_case=row["units_per_case"] if "units_per_case" in keys else None,
    )


def _expiry_line(row: sqlite3.Row) -> ExpiryLine:
    keys = row.keys()
    return ExpiryLine(
        id=row["id"],
        session_id=row["session_id"],
        code=row["code"],
        quantity=row["quantity"],
        expiry_date=date.fromisoformat(row["expiry_date"]),
        lot=row["lot"],
        updated_at=row["updated_at"],
        internal_code=row["internal_code"] if "internal_code" in keys else None,
        description=row["description"] if "description" in keys else None,
        units_per_case=row["units_per_case"] if "units_per_case" in keys else None,
    )


class SessionDB:
    """Manages the sessions, plain_lines and expiry_lines tables."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    # ---------- Sessions ----------

    def create(
        self,
        name: str,
        note: str | None = None,
        kind: SessionKind = SessionKind.PLAIN,
    ) -> int:
        """Create a session and return its id."""
        name = (name or "").strip()
        if not name:
            raise ValidationError("Falta nombre: ingresá un nombre para el inventario.")
        with self._conn:
            cur = self._conn.execute(
                "INSERT INTO sessions (name, note, kind, created_at) VALUES (?, ?, ?, ?)",
                (name, (note or "").strip(), SessionKind(kind).value, now_text()),
            )
        return cur.lastrowid

    def get(self, session_id: int) -> Session | None:
        row = self._conn.execute(
            "SELECT id, name, note, kind, created_at FROM sessions WHERE id = ?",
            (session_id,),
        ).fetchone()
        return Session.from_row(row) if row else None

    def rename(self, session_id: int, name: str, note: str | None = None) -> None:
        """Update the name and note of a session."""
        name = (name or "").strip()
        if not name:
            raise ValidationError("Falta nombre: ingresá un nombre para el inventario.")
        with self._conn:
            cur = self._conn.execute(
                "UPDATE sessions SET name = ?, note = ? WHERE id = ?",
                (name, (note or "").strip(), session_id),
            )
        if cur.rowcount == 0:
            raise ValidationError(f"Inventario inexistente: {session_id}")

    def list_with_stats(self) -> list[SessionStats]:
        """Return every session with line counts and its last write time.

        Most recently modified first. The last write falls back to the
        creation time when the session has no lines of either kind.
        """
        rows = self._conn.execute(
            """SELECT
                 s.id, s.name, s.note, s.kind, s.created_at,
                 (SELECT COUNT(DISTINCT p.code) FROM plain_lines p
                   WHERE p.session_id = s.id) AS plain_count,
                 (SELECT COUNT(DISTINCT e.code) FROM expiry_lines e
                   WHERE e.session_id = s.id) AS expiry_count,
                 COALESCE((
                   SELECT MAX(ts) FROM (
                     SELECT MAX(updated_at) AS ts FROM plain_lines
                      WHERE session_id = s.id
                     UNION ALL
                     SELECT MAX(updated_at) AS ts FROM expiry_lines
                      WHERE session_id = s.id
                   )
                 ), s.created_at) AS last_modified
               FROM sessions s
               ORDER BY last_modified DESC, s.id DESC"""
        ).fetchall()
        return [
            SessionStats(
                session=Session.from_row(r),
                plain_count=int(r["plain_count"] or 0),
                expiry_count=int(r["expiry_count"] or 0),
                last_modified=r["last_modified"],
            )
            for r in rows
        ]

    def delete(self, session_id: int) -> None:
        """Delete a session together with all of its line items."""
        with self._conn:
            self._conn.execute("DELETE FROM plain_lines WHERE session_id = ?", (session_id,))
            self._conn.execute("DELETE FROM expiry_lines WHERE session_id = ?", (session_id,))
            self._conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
        logger.info("Deleted session %d", session_id)

    def inferred_kind(self, session_id: int) -> SessionKind:
        """Kind implied by the stored lines, ignoring the explicit kind.

        EXPIRY only when the session holds expiry lines and no plain lines;
        an empty session is PLAIN.
        """
        plain = self._conn.execute(
            "SELECT 1 FROM plain_lines WHERE session_id = ? LIMIT 1", (session_id,)
        ).fetchone()
        expiry = self._conn.execute(
            "SELECT 1 FROM expiry_lines WHERE session_id = ? LIMIT 1", (session_id,)
        ).fetchone()
        if expiry and not plain:
            return SessionKind.EXPIRY
        return SessionKind.PLAIN

    # ---------- Plain lines ----------

    def get_line(self, session_id: int, code: str) -> PlainLine | None:
        row = self._conn.execute(
            """SELECT id, session_id, code, quantity, updated_at FROM plain_lines
               WHERE session_id = ? AND code = ?""",
            (session_id, code.strip()),
        ).fetchone()
        return _plain_line(row) if row else None

    def set_line(self, session_id: int, code: str, quantity: float) -> None:
        """Insert or overwrite the plain line for (session, code)."""
        with self._conn:
            self._conn.execute(
                _UPSERT_PLAIN, (session_id, code.strip(), max(0.0, quantity), now_text())
            )

    def add_to_line(self, session_id: int, code: str, delta: float) -> float:
        """Add ``delta`` to the plain line (creating it), floored at zero.

        Returns:
            The stored quantity.
        """
        with self._conn:
            row = self._conn.execute(
                "SELECT quantity FROM plain_lines WHERE session_id = ? AND code = ?",
                (session_id, code.strip()),
            ).fetchone()
            quantity = max(0.0, (row["quantity"] if row else 0.0) + delta)
            self._conn.execute(
                _UPSERT_PLAIN, (session_id, code.strip(), quantity, now_text())
            )
        return quantity

    def remove_line(self, session_id: int, code: str) -> bool:
        with self._conn:
            cur = self._conn.execute(
                "DELETE FROM plain_lines WHERE session_id = ? AND code = ?",
                (session_id, code.strip()),
            )
        return cur.rowcount > 0

    def get_lines(self, session_id: int) -> list[PlainLine]:
        """Plain lines joined with the current article data, by description."""
        rows = self._conn.execute(
            """SELECT p.id, p.session_id, p.code, p.quantity, p.updated_at,
                      a.internal_code, a.description, a.units_per_case
               FROM plain_lines p
               LEFT JOIN articles a ON a.code = p.code
               WHERE p.session_id = ?
               ORDER BY COALESCE(a.description, '') COLLATE NOCASE ASC, p.code""",
            (session_id,),
        ).fetchall()
        return [_plain_line(r) for r in rows]

    # ---------- Expiry lines ----------

    def get_expiry_line(
        self, session_id: int, code: str, expiry_date: date, lot: str = ""
    ) -> ExpiryLine | None:
        row = self._conn.execute(
            """SELECT id, session_id, code, quantity, expiry_date, lot, updated_at
               FROM expiry_lines
               WHERE session_id = ? AND code = ? AND expiry_date = ? AND lot = ?""",
            (session_id, code.strip(), expiry_date.isoformat(), lot),
        ).fetchone()
        return _expiry_line(row) if row else None

    def set_expiry_line(
        self,
        session_id: int,
        code: str,
        expiry_date: date,
        quantity: float,
        lot: str = "",
    ) -> None:
        """Insert or overwrite the expiry line for (session, code, date, lot)."""
        with self._conn:
            self._conn.execute(
                _UPSERT_EXPIRY,
                (
                    session_id,
                    code.strip(),
                    max(0.0, quantity),
                    expiry_date.isoformat(),
                    (lot or "").strip(),
                    now_text(),
                ),
            )

    def add_to_expiry_line(
        self, session_id: int, code: str, expiry_date: date, delta: float
    ) -> float:
        """Add ``delta`` to the line at ``expiry_date``, floored at zero."""
        with self._conn:
            row = self._conn.execute(
                """SELECT quantity FROM expiry_lines
                   WHERE session_id = ? AND code = ? AND expiry_date = ? AND lot = ''""",
                (session_id, code.strip(), expiry_date.isoformat()),
            ).fetchone()
            quantity = max(0.0, (row["quantity"] if row else 0.0) + delta)
            self._conn.execute(
                _UPSERT_EXPIRY,
                (session_id, code.strip(), quantity, expiry_date.isoformat(), "", now_text()),
            )
        return quantity

    def get_expiry_lines_for_code(self, session_id: int, code: str) -> list[ExpiryLine]:
        """Every expiry line of one code in a session, earliest date first."""
        rows = self._conn.execute(
            """SELECT id, session_id, code, quantity, expiry_date, lot, updated_at
               FROM expiry_lines
               WHERE session_id = ? AND code = ?
               ORDER BY expiry_date ASC""",
            (session_id, code.strip()),
        ).fetchall()
        return [_expiry_line(r) for r in rows]

    def consolidate_expiry(
        self, session_id: int, code: str, keep_date: date, quantity: float
    ) -> None:
        """Collapse all lines of ``code`` into one line at ``keep_date``.

        Runs as one transaction: the other dates are deleted and the kept
        date is upserted with ``quantity``.
        """
        code = code.strip()
        with self._conn:
            self._conn.execute(
                """DELETE FROM expiry_lines
                   WHERE session_id = ? AND code = ?
                     AND NOT (expiry_date = ? AND lot = '')""",
                (session_id, code, keep_date.isoformat()),
            )
            self._conn.execute(
                _UPSERT_EXPIRY,
                (session_id, code, max(0.0, quantity), keep_date.isoformat(), "", now_text()),
            )
        logger.info(
            "Consolidated session %d code %s at %s (quantity %s)",
            session_id, code, keep_date.isoformat(), quantity,
        )

    def remove_expiry_line(self, session_id: int, line_id: int) -> bool:
        """Delete one expiry line by row id, only if it belongs to the session."""
        with self._conn:
            cur = self._conn.execute(
                "DELETE FROM expiry_lines WHERE id = ? AND session_id = ?",
                (line_id, session_id),
            )
        return cur.rowcount > 0

    def get_expiry_lines(self, session_id: int) -> list[ExpiryLine]:
        """Expiry lines joined with article data, by date then description."""
        rows = self._conn.execute(
            """SELECT e.id, e.session_id, e.code, e.quantity, e.expiry_date, e.lot,
                      e.updated_at, a.internal_code, a.description, a.units_per_case
               FROM expiry_lines e
               LEFT JOIN articles a ON a.code = e.code
               WHERE e.session_id = ?
               ORDER BY e.expiry_date ASC,
                        COALESCE(a.description, '') COLLATE NOCASE ASC, e.code""",
            (session_id,),
        ).fetchall()
        return [_expiry_line(r) for r in rows]
