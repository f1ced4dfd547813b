"""Tests for the quantity reconciliation engine."""

from datetime import date, datetime

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from stocktake.errors import ArticleNotFoundError, ValidationError
from stocktake.models import SessionKind
from stocktake.reconcile import (
    Action,
    Choice,
    CrossDateConflict,
    FractionalQuantity,
    QuantityReconciler,
    SameKeyConflict,
    Written,
    has_fraction,
    parse_quantity,
)

TODAY = date(2026, 10, 18)
JAN = date(2027, 1, 10)
FEB = date(2027, 2, 20)
MAR = date(2027, 3, 5)

YERBA = "7790001000011"
ACEITE = "7790002000010"
QUESO = "2100510000000"


@pytest.fixture
def engine(loaded_catalog, sessions):
    return QuantityReconciler(loaded_catalog, sessions)


@pytest.fixture
def plain(sessions, loaded_catalog):
    return sessions.create("Salón")


@pytest.fixture
def expiry(sessions, loaded_catalog):
    return sessions.create("Vencimientos", kind=SessionKind.EXPIRY)


class TestParseQuantity:
    def test_comma_decimal(self):
        assert parse_quantity("1,5") == 1.5

    def test_number_passthrough(self):
        assert parse_quantity(3) == 3.0

    @pytest.mark.parametrize("bad", ["", "abc", "0", "-2", "nan", "inf", None])
    def test_rejects(self, bad):
        with pytest.raises(ValidationError, match="Cantidad inválida"):
            parse_quantity(bad)

    def test_has_fraction(self):
        assert has_fraction(1.5)
        assert not has_fraction(2.0)


class TestPlainSession:
    def test_first_submission_inserts(self, engine, sessions, plain):
        result = engine.submit(plain, YERBA, 5)
        assert result == Written(Action.INSERTED, plain, YERBA, 5)
        assert sessions.get_line(plain, YERBA).quantity == 5

    def test_existing_line_asks(self, engine, sessions, plain):
        engine.submit(plain, YERBA, 5)
        request = engine.submit(plain, YERBA, 3)
        assert isinstance(request, SameKeyConflict)
        assert request.existing_quantity == 5
        assert request.quantity == 3
        # Nothing written until the operator answers
        assert sessions.get_line(plain, YERBA).quantity == 5

    def test_accumulate(self, engine, sessions, plain):
        engine.submit(plain, YERBA, 5)
        result = engine.decide(engine.submit(plain, YERBA, 3), Choice.ACCUMULATE)
        assert result.action is Action.ACCUMULATED
        assert sessions.get_line(plain, YERBA).quantity == 8

    def test_replace(self, engine, sessions, plain):
        engine.submit(plain, YERBA, 5)
        result = engine.decide(engine.submit(plain, YERBA, 3), "replace")
        assert result.action is Action.REPLACED
        assert sessions.get_line(plain, YERBA).quantity == 3

    def test_cancel_leaves_store_untouched(self, engine, sessions, plain):
        engine.submit(plain, YERBA, 5)
        assert engine.decide(engine.submit(plain, YERBA, 3), Choice.CANCEL) is None
        assert sessions.get_line(plain, YERBA).quantity == 5

    def test_fractional_gate(self, engine, sessions, plain):
        request = engine.submit(plain, YERBA, "1,5")
        assert isinstance(request, FractionalQuantity)
        assert sessions.get_line(plain, YERBA) is None

        result = engine.decide(request, Choice.CONTINUE)
        assert result == Written(Action.INSERTED, plain, YERBA, 1.5)

    def test_fractional_continue_then_conflict(self, engine, plain):
        engine.submit(plain, YERBA, 2)
        request = engine.submit(plain, YERBA, 0.5)
        follow_up = engine.decide(request, Choice.CONTINUE)
        assert isinstance(follow_up, SameKeyConflict)

    def test_weighable_skips_fraction_gate(self, engine, plain):
        result = engine.submit(plain, QUESO, 0.6657)
        assert result.action is Action.INSERTED

    def test_unknown_article(self, engine, plain):
        with pytest.raises(ArticleNotFoundError) as exc_info:
            engine.submit(plain, "999", 1)
        assert exc_info.value.code == "999"

    def test_missing_code(self, engine, plain):
        with pytest.raises(ValidationError, match="Falta código"):
            engine.submit(plain, "  ", 1)

    def test_invalid_quantity_checked_before_article(self, engine, plain):
        with pytest.raises(ValidationError):
            engine.submit(plain, "999", 0)

    def test_unknown_session(self, engine):
        with pytest.raises(ValidationError, match="Inventario inexistente"):
            engine.submit(404, YERBA, 1)

    def test_kind_mismatch(self, engine, plain):
        with pytest.raises(ValidationError):
            engine.submit_expiry(plain, YERBA, 1, JAN, today=TODAY)

    def test_choice_not_offered(self, engine, plain):
        engine.submit(plain, YERBA, 5)
        request = engine.submit(plain, YERBA, 3)
        with pytest.raises(ValidationError):
            engine.decide(request, Choice.ACCUMULATE_KEEP_EARLIEST)
        with pytest.raises(ValidationError):
            engine.decide(request, "whatever")


class TestExpirySession:
    def test_first_submission_inserts(self, engine, sessions, expiry):
        result = engine.submit(expiry, ACEITE, 4, expiry_date=JAN, today=TODAY)
        assert result == Written(Action.INSERTED, expiry, ACEITE, 4, JAN)

    def test_date_required(self, engine, expiry):
        with pytest.raises(ValidationError, match="Fecha requerida"):
            engine.submit(expiry, ACEITE, 4, today=TODAY)

    @pytest.mark.parametrize("when", [TODAY, date(2026, 1, 1)])
    def test_date_must_be_after_today(self, engine, expiry, when):
        with pytest.raises(ValidationError, match="Fecha inválida"):
            engine.submit(expiry, ACEITE, 4, expiry_date=when, today=TODAY)

    def test_datetime_normalised_to_day(self, engine, sessions, expiry):
        engine.submit(
            expiry, ACEITE, 4, expiry_date=datetime(2027, 1, 10, 18, 30), today=TODAY
        )
        assert sessions.get_expiry_line(expiry, ACEITE, JAN).quantity == 4

    def test_same_date_conflict(self, engine, sessions, expiry):
        engine.submit(expiry, ACEITE, 4, expiry_date=JAN, today=TODAY)
        request = engine.submit(expiry, ACEITE, 6, expiry_date=JAN, today=TODAY)
        assert isinstance(request, SameKeyConflict)
        assert request.expiry_date == JAN

        engine.decide(request, Choice.ACCUMULATE)
        assert sessions.get_expiry_line(expiry, ACEITE, JAN).quantity == 10

    def test_same_date_replace(self, engine, sessions, expiry):
        engine.submit(expiry, ACEITE, 4, expiry_date=JAN, today=TODAY)
        request = engine.submit(expiry, ACEITE, 6, expiry_date=JAN, today=TODAY)
        engine.decide(request, Choice.REPLACE)
        assert sessions.get_expiry_line(expiry, ACEITE, JAN).quantity == 6

    def test_cross_date_conflict(self, engine, expiry):
        engine.submit(expiry, ACEITE, 4, expiry_date=FEB, today=TODAY)
        request = engine.submit(expiry, ACEITE, 6, expiry_date=JAN, today=TODAY)
        assert isinstance(request, CrossDateConflict)
        assert request.existing_dates == (FEB,)
        assert request.existing_total == 4
        assert request.earliest_date == JAN

    def test_cross_date_accumulate_keeps_earliest(self, engine, sessions, expiry):
        engine.submit(expiry, ACEITE, 4, expiry_date=JAN, today=TODAY)
        request = engine.submit(expiry, ACEITE, 6, expiry_date=MAR, today=TODAY)
        result = engine.decide(request, Choice.ACCUMULATE_KEEP_EARLIEST)

        assert result == Written(Action.CONSOLIDATED, expiry, ACEITE, 10, JAN)
        (row,) = sessions.get_expiry_lines_for_code(expiry, ACEITE)
        assert (row.expiry_date, row.quantity) == (JAN, 10)

    def test_cross_date_replace_uses_new_date(self, engine, sessions, expiry):
        engine.submit(expiry, ACEITE, 4, expiry_date=JAN, today=TODAY)
        request = engine.submit(expiry, ACEITE, 6, expiry_date=MAR, today=TODAY)
        engine.decide(request, Choice.REPLACE_WITH_NEW_DATE)

        (row,) = sessions.get_expiry_lines_for_code(expiry, ACEITE)
        assert (row.expiry_date, row.quantity) == (MAR, 6)

    def test_cross_date_over_several_rows(self, engine, sessions, expiry):
        sessions.set_expiry_line(expiry, ACEITE, FEB, 1)
        sessions.set_expiry_line(expiry, ACEITE, MAR, 2)
        request = engine.submit(expiry, ACEITE, 3, expiry_date=JAN, today=TODAY)
        assert request.existing_dates == (FEB, MAR)
        assert request.existing_total == 3

        engine.decide(request, Choice.ACCUMULATE_KEEP_EARLIEST)
        (row,) = sessions.get_expiry_lines_for_code(expiry, ACEITE)
        assert (row.expiry_date, row.quantity) == (JAN, 6)

    def test_cross_date_cancel(self, engine, sessions, expiry):
        engine.submit(expiry, ACEITE, 4, expiry_date=JAN, today=TODAY)
        request = engine.submit(expiry, ACEITE, 6, expiry_date=MAR, today=TODAY)
        assert engine.decide(request, Choice.CANCEL) is None
        assert len(sessions.get_expiry_lines_for_code(expiry, ACEITE)) == 1

    def test_fraction_gate_keeps_date(self, engine, sessions, expiry):
        request = engine.submit(expiry, ACEITE, 1.5, expiry_date=JAN, today=TODAY)
        assert isinstance(request, FractionalQuantity)
        assert request.expiry_date == JAN
        engine.decide(request, Choice.CONTINUE, today=TODAY)
        assert sessions.get_expiry_line(expiry, ACEITE, JAN).quantity == 1.5

    def test_expiry_kind_mismatch(self, engine, expiry):
        with pytest.raises(ValidationError):
            engine.submit_plain(expiry, ACEITE, 1)


@settings(
    max_examples=30,
    suppress_health_check=[HealthCheck.function_scoped_fixture],
    deadline=None,
)
@given(
    st.lists(
        st.tuples(
            st.sampled_from([JAN, FEB, MAR]),
            st.integers(min_value=1, max_value=50),
            st.sampled_from(
                [Choice.ACCUMULATE, Choice.REPLACE, Choice.ACCUMULATE_KEEP_EARLIEST,
                 Choice.REPLACE_WITH_NEW_DATE, Choice.CANCEL]
            ),
        ),
        min_size=1,
        max_size=8,
    )
)
def test_expiry_session_keeps_one_date_per_code(engine, sessions, observations):
    """Answering every conflict never leaves a code under two dates."""
    sid = sessions.create("prop", kind=SessionKind.EXPIRY)
    for when, qty, choice in observations:
        result = engine.submit(sid, ACEITE, qty, expiry_date=when, today=TODAY)
        if not isinstance(result, Written):
            if choice not in result.options:
                choice = Choice.CANCEL
            engine.decide(result, choice, today=TODAY)
        rows = sessions.get_expiry_lines_for_code(sid, ACEITE)
        assert len({r.expiry_date for r in rows}) == 1
        assert all(r.quantity > 0 for r in rows)
