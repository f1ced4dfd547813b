"""Quantity reconciliation for plain and expiry-dated counting sessions.

A submission either writes immediately or returns a decision request that
the front end shows to the operator. The operator's answer goes back
through :meth:`QuantityReconciler.decide`, which performs the write (or
returns the next decision request). The engine never picks a resolution
on its own.

Plain sessions::

    no line            -> insert
    line exists        -> SameKeyConflict(accumulate | replace)

Expiry sessions::

    line at same date  -> SameKeyConflict(accumulate | replace)
    lines at other dates -> CrossDateConflict(accumulate, keep earliest date
                                              | replace with new date)
    nothing            -> insert

Both kinds first pass a soft gate: a fractional quantity on an article not
flagged as weighable returns FractionalQuantity(continue | cancel).
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import ClassVar, Union

from .barcode import normalize_code
from .db.catalog import CatalogDB
from .db.sessions import SessionDB
from .errors import ArticleNotFoundError, ValidationError
from .models import Article, Session, SessionKind

logger = logging.getLogger(__name__)


class Choice(str, Enum):
    CANCEL = "cancel"
    CONTINUE = "continue"
    ACCUMULATE = "accumulate"
    REPLACE = "replace"
    ACCUMULATE_KEEP_EARLIEST = "accumulate_keep_earliest"
    REPLACE_WITH_NEW_DATE = "replace_with_new_date"


class Action(str, Enum):
    INSERTED = "inserted"
    ACCUMULATED = "accumulated"
    REPLACED = "replaced"
    CONSOLIDATED = "consolidated"


@dataclass(frozen=True)
class FractionalQuantity:
    """Decimal quantity entered for an article that is not weighable."""

    kind: ClassVar[str] = "FractionalQuantity"
    options: ClassVar[tuple[Choice, ...]] = (Choice.CONTINUE, Choice.CANCEL)

    session_id: int
    code: str
    quantity: float
    article: Article
    expiry_date: date | None = None


@dataclass(frozen=True)
class SameKeyConflict:
    """A line already exists for the code (and date, in expiry sessions)."""

    kind: ClassVar[str] = "SameKeyConflict"
    options: ClassVar[tuple[Choice, ...]] = (
        Choice.ACCUMULATE,
        Choice.REPLACE,
        Choice.CANCEL,
    )

    session_id: int
    code: str
    existing_quantity: float
    quantity: float
    expiry_date: date | None = None


@dataclass(frozen=True)
class CrossDateConflict:
    """The code was already counted in this session under other dates."""

    kind: ClassVar[str] = "CrossDateConflict"
    options: ClassVar[tuple[Choice, ...]] = (
        Choice.ACCUMULATE_KEEP_EARLIEST,
        Choice.REPLACE_WITH_NEW_DATE,
        Choice.CANCEL,
    )

    session_id: int
    code: str
    existing_dates: tuple[date, ...]  # distinct, ascending
    existing_total: float
    quantity: float
    expiry_date: date

    @property
    def earliest_date(self) -> date:
        return min((*self.existing_dates, self.expiry_date))


DecisionRequest = Union[FractionalQuantity, SameKeyConflict, CrossDateConflict]


@dataclass(frozen=True)
class Written:
    """A completed store mutation."""

    action: Action
    session_id: int
    code: str
    quantity: float  # quantity stored after the write
    expiry_date: date | None = None


def parse_quantity(text: str | float | int | None) -> float:
    """Parse an operator-entered quantity, accepting a comma as decimal mark.

    Raises:
        ValidationError: if the value is not a finite number greater than 0.
    """
    if isinstance(text, (int, float)) and not isinstance(text, bool):
        value = float(text)
    else:
        try:
            value = float(str(text if text is not None else "").strip().replace(",", ".", 1))
        except ValueError:
            value = math.nan
    if not math.isfinite(value) or value <= 0:
        raise ValidationError("Cantidad inválida: ingresá una cantidad mayor a 0.")
    return value


def has_fraction(quantity: float) -> bool:
    return math.floor(quantity) != quantity


def _as_date(value: date | datetime) -> date:
    # Day granularity; a datetime is normalised to its calendar day
    if isinstance(value, datetime):
        return value.date()
    return value


class QuantityReconciler:
    """Decides how a new quantity observation is written to a session."""

    def __init__(self, catalog: CatalogDB, sessions: SessionDB) -> None:
        self._catalog = catalog
        self._sessions = sessions

    # ---------- Submission ----------

    def submit(
        self,
        session_id: int,
        code: str,
        quantity: float,
        *,
        expiry_date: date | datetime | None = None,
        allow_fraction: bool = False,
        today: date | None = None,
    ) -> Written | DecisionRequest:
        """Route to the plain or expiry flow according to the session kind."""
        session = self._require_session(session_id)
        if session.kind is SessionKind.EXPIRY:
            return self.submit_expiry(
                session_id,
                code,
                quantity,
                expiry_date,
                allow_fraction=allow_fraction,
                today=today,
            )
        return self.submit_plain(session_id, code, quantity, allow_fraction=allow_fraction)

    def submit_plain(
        self,
        session_id: int,
        code: str,
        quantity: float,
        *,
        allow_fraction: bool = False,
    ) -> Written | DecisionRequest:
        self._require_session(session_id, SessionKind.PLAIN)
        code = self._require_code(code)
        quantity = parse_quantity(quantity)
        article = self._require_article(code)

        if not allow_fraction and not article.weighable and has_fraction(quantity):
            return FractionalQuantity(session_id, code, quantity, article)

        existing = self._sessions.get_line(session_id, code)
        if existing is not None:
            return SameKeyConflict(session_id, code, existing.quantity, quantity)

        self._sessions.set_line(session_id, code, quantity)
        logger.debug("Inserted %s x %s in session %d", code, quantity, session_id)
        return Written(Action.INSERTED, session_id, code, quantity)

    def submit_expiry(
        self,
        session_id: int,
        code: str,
        quantity: float,
        expiry_date: date | datetime | None,
        *,
        allow_fraction: bool = False,
        today: date | None = None,
    ) -> Written | DecisionRequest:
        self._require_session(session_id, SessionKind.EXPIRY)
        code = self._require_code(code)
        quantity = parse_quantity(quantity)
        if expiry_date is None:
            raise ValidationError("Fecha requerida: elegí la fecha de vencimiento.")
        expiry_date = _as_date(expiry_date)
        today = today or date.today()
        if expiry_date <= today:
            raise ValidationError(
                "Fecha inválida: la fecha de vencimiento debe ser mayor a la fecha actual."
            )
        article = self._require_article(code)

        if not allow_fraction and not article.weighable and has_fraction(quantity):
            return FractionalQuantity(session_id, code, quantity, article, expiry_date)

        # 1) same date -> accumulate / replace
        same = self._sessions.get_expiry_line(session_id, code, expiry_date)
        if same is not None:
            return SameKeyConflict(session_id, code, same.quantity, quantity, expiry_date)

        # 2) other dates -> consolidate
        others = self._sessions.get_expiry_lines_for_code(session_id, code)
        if others:
            return CrossDateConflict(
                session_id=session_id,
                code=code,
                existing_dates=tuple(sorted({r.expiry_date for r in others})),
                existing_total=sum(r.quantity for r in others),
                quantity=quantity,
                expiry_date=expiry_date,
            )

        # 3) nothing yet
        self._sessions.set_expiry_line(session_id, code, expiry_date, quantity)
        logger.debug(
            "Inserted %s x %s (%s) in session %d",
            code, quantity, expiry_date.isoformat(), session_id,
        )
        return Written(Action.INSERTED, session_id, code, quantity, expiry_date)

    # ---------- Resolution ----------

    def decide(
        self,
        request: DecisionRequest,
        choice: Choice | str,
        *,
        today: date | None = None,
    ) -> Written | DecisionRequest | None:
        """Apply the operator's answer to a decision request.

        Returns:
            The write performed, a follow-up decision request (after
            confirming a fractional quantity), or None when cancelled.

        Raises:
            ValidationError: if ``choice`` is not one of ``request.options``.
        """
        try:
            choice = Choice(choice)
        except ValueError:
            raise ValidationError(f"Opción desconocida: {choice!r}") from None
        if choice not in request.options:
            raise ValidationError(
                f"Opción {choice.value!r} no válida para {request.kind}"
            )
        if choice is Choice.CANCEL:
            return None

        if isinstance(request, FractionalQuantity):
            if request.expiry_date is None:
                return self.submit_plain(
                    request.session_id, request.code, request.quantity, allow_fraction=True
                )
            return self.submit_expiry(
                request.session_id,
                request.code,
                request.quantity,
                request.expiry_date,
                allow_fraction=True,
                today=today,
            )

        if isinstance(request, SameKeyConflict):
            return self._resolve_same_key(request, choice)

        return self._resolve_cross_date(request, choice)

    def _resolve_same_key(self, request: SameKeyConflict, choice: Choice) -> Written:
        sid, code, when = request.session_id, request.code, request.expiry_date
        if when is None:
            if choice is Choice.ACCUMULATE:
                stored = self._sessions.add_to_line(sid, code, request.quantity)
                return Written(Action.ACCUMULATED, sid, code, stored)
            self._sessions.set_line(sid, code, request.quantity)
            return Written(Action.REPLACED, sid, code, request.quantity)

        if choice is Choice.ACCUMULATE:
            stored = self._sessions.add_to_expiry_line(sid, code, when, request.quantity)
            return Written(Action.ACCUMULATED, sid, code, stored, when)
        self._sessions.set_expiry_line(sid, code, when, request.quantity)
        return Written(Action.REPLACED, sid, code, request.quantity, when)

    def _resolve_cross_date(self, request: CrossDateConflict, choice: Choice) -> Written:
        sid, code = request.session_id, request.code
        if choice is Choice.ACCUMULATE_KEEP_EARLIEST:
            # Re-read so the total reflects the rows being deleted
            rows = self._sessions.get_expiry_lines_for_code(sid, code)
            total = sum(r.quantity for r in rows) + request.quantity
            keep = min([r.expiry_date for r in rows] + [request.expiry_date])
            self._sessions.consolidate_expiry(sid, code, keep, total)
            return Written(Action.CONSOLIDATED, sid, code, total, keep)

        self._sessions.consolidate_expiry(sid, code, request.expiry_date, request.quantity)
        return Written(Action.REPLACED, sid, code, request.quantity, request.expiry_date)

    # ---------- Validation ----------

    def _require_session(
        self, session_id: int, kind: SessionKind | None = None
    ) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise ValidationError(f"Inventario inexistente: {session_id}")
        if kind is not None and session.kind is not kind:
            raise ValidationError(
                f"El inventario {session_id} es de tipo {session.kind.value!r}, "
                f"no {kind.value!r}."
            )
        return session

    @staticmethod
    def _require_code(code: str) -> str:
        code = normalize_code(code)
        if not code:
            raise ValidationError("Falta código: escaneá o ingresá el código.")
        return code

    def _require_article(self, code: str) -> Article:
        article = self._catalog.get(code)
        if article is None:
            raise ArticleNotFoundError(code)
        return article
