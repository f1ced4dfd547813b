"""Barcode dialect detection for scanned or typed codes.

Three dialects are recognised, checked in this order:

- Scale-weight ticket: ``20``/``21`` + internal code (5) + weight (5 or 6)
  [+ check digit], e.g. ``2100510006657`` -> internal code ``510``,
  weight ``006657`` -> 0.6657 kg.
- PLU-packed ticket: ten zeros followed by a 3-5 digit internal code,
  e.g. ``0000000000510``.
- Plain code: anything else, used as the primary code.

Everything here is pure; catalog lookups live in :mod:`stocktake.resolver`.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

SCALE_PREFIXES = ("20", "21")

_FIVE_DIGITS = re.compile(r"[0-9]{5}")
_SIX_DIGITS = re.compile(r"[0-9]{6}")
_FOUR_DIGITS = re.compile(r"[0-9]{4}")
_PLU_PACKED = re.compile(r"0{10}([0-9]{3,5})")


class Dialect(str, Enum):
    SCALE = "scale"
    PLU_PACKED = "plu_packed"
    PLAIN = "plain"


@dataclass(frozen=True)
class ScaleTicket:
    internal_code: str  # leading zeros stripped
    weight: float | None  # kg; None when no weight field decodes


@dataclass(frozen=True)
class ClassifiedCode:
    """A normalised code and whatever fields its dialect carries."""

    code: str
    dialect: Dialect
    internal_code: str | None = None
    weight: float | None = None
    base_code: str | None = None


def normalize_code(raw: str | None) -> str:
    """Trim whitespace and the leading apostrophe left by spreadsheet exports."""
    s = (raw or "").strip()
    if s.startswith("'"):
        s = s[1:]
    return s


def is_scale_barcode(raw: str) -> bool:
    return (raw or "").strip().startswith(SCALE_PREFIXES)


def is_plu_packed_barcode(raw: str) -> bool:
    return _PLU_PACKED.fullmatch((raw or "").strip()) is not None


def parse_scale_barcode(raw: str) -> ScaleTicket | None:
    """Decode the internal code and weight of a scale ticket.

    Weight is tried as six digits after the code (/10000), then five
    digits (/1000), then the last four characters (/10000).

    Returns:
        None if the code is not a scale ticket or its internal code field
        is not five digits.
    """
    s = (raw or "").strip()
    if not is_scale_barcode(s) or len(s) < 8:
        return None

    padded = s[2:7]
    if not _FIVE_DIGITS.fullmatch(padded):
        return None
    internal_code = str(int(padded))

    weight6 = s[7:13]
    weight5 = s[7:12]
    weight: float | None = None
    if _SIX_DIGITS.fullmatch(weight6):
        weight = int(weight6) / 10000
    elif _FIVE_DIGITS.fullmatch(weight5):
        weight = int(weight5) / 1000
    else:
        last4 = s[-4:]
        if _FOUR_DIGITS.fullmatch(last4):
            weight = int(last4) / 10000

    return ScaleTicket(internal_code=internal_code, weight=weight)


def to_base_scale_code(raw: str) -> str | None:
    """Weight-agnostic EAN-13 of a scale ticket: prefix + padded code + "000000".

    ``2100510006657`` -> ``2100510000000``.
    """
    s = (raw or "").strip()
    if not is_scale_barcode(s):
        return None
    padded = s[2:7]
    if not _FIVE_DIGITS.fullmatch(padded):
        return None
    return f"{s[:2]}{padded}000000"


def plu_packed_internal_code(raw: str) -> str | None:
    m = _PLU_PACKED.fullmatch((raw or "").strip())
    if m is None:
        return None
    return str(int(m.group(1)))


def classify(raw: str | None) -> ClassifiedCode:
    """Classify a raw scanned/typed string into its dialect."""
    code = normalize_code(raw)

    if is_scale_barcode(code):
        ticket = parse_scale_barcode(code)
        return ClassifiedCode(
            code=code,
            dialect=Dialect.SCALE,
            internal_code=ticket.internal_code if ticket else None,
            weight=ticket.weight if ticket else None,
            base_code=to_base_scale_code(code),
        )

    plu = plu_packed_internal_code(code)
    if plu is not None:
        return ClassifiedCode(code=code, dialect=Dialect.PLU_PACKED, internal_code=plu)

    return ClassifiedCode(code=code, dialect=Dialect.PLAIN)
