"""Data models for catalog articles, sessions and line items."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from datetime import date
from enum import Enum


class SessionKind(str, Enum):
    """Which kind of line items a session records."""

    PLAIN = "plain"
    EXPIRY = "expiry"


@dataclass(frozen=True)
class Article:
    """A catalog entry, keyed by its primary code (EAN)."""

    code: str
    internal_code: str
    description: str
    units_per_case: float = 1.0
    weighable: bool = False
    weighable_by_unit: bool = False

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Article:
        return cls(
            code=row["code"],
            internal_code=row["internal_code"],
            description=row["description"],
            units_per_case=row["units_per_case"],
            weighable=bool(row["weighable"]),
            weighable_by_unit=bool(row["weighable_by_unit"]),
        )


@dataclass(frozen=True)
class Session:
    id: int
    name: str
    note: str
    kind: SessionKind
    created_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Session:
        return cls(
            id=row["id"],
            name=row["name"],
            note=row["note"] or "",
            kind=SessionKind(row["kind"]),
            created_at=row["created_at"],
        )


@dataclass(frozen=True)
class SessionStats:
    """A session plus the aggregate figures shown in the session list."""

    session: Session
    plain_count: int  # distinct codes in plain_lines
    expiry_count: int  # distinct codes in expiry_lines
    last_modified: str

    @property
    def total(self) -> int:
        return self.plain_count + self.expiry_count


@dataclass(frozen=True)
class PlainLine:
    id: int
    session_id: int
    code: str
    quantity: float
    updated_at: str
    # Joined from articles; None when the line is read without the join
    internal_code: str | None = None
    description: str | None = None
    units_per_case: float | None = None


@dataclass(frozen=True)
class ExpiryLine:
    id: int
    session_id: int
    code: str
    quantity: float
    expiry_date: date
    lot: str
    updated_at: str
    internal_code: str | None = None
    description: str | None = None
    units_per_case: float | None = None
