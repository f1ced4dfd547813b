"""Tests for resolving scanned codes to catalog articles."""

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from stocktake.barcode import Dialect
from stocktake.resolver import ArticleResolver


@pytest.fixture
def resolver(loaded_catalog):
    return ArticleResolver(loaded_catalog)


def test_plain_code(resolver):
    res = resolver.resolve("7790002000010")
    assert res.found
    assert res.code == "7790002000010"
    assert res.suggested_quantity is None
    assert res.classified.dialect is Dialect.PLAIN


def test_scale_ticket_uses_base_code(resolver):
    """The weight-agnostic catalog entry collects every weighing."""
    res = resolver.resolve("2100510006657")
    assert res.article.description == "Queso cremoso x kg"
    assert res.code == "2100510000000"
    assert res.suggested_quantity == pytest.approx(0.6657)


def test_scale_ticket_without_base_entry_uses_found_code(resolver):
    # 21-prefixed ticket for an article only catalogued under prefix 20
    res = resolver.resolve("2100777012500")
    assert res.code == "2000777000000"
    assert res.suggested_quantity == pytest.approx(1.25)


def test_scale_ticket_unknown_internal_code(resolver):
    res = resolver.resolve("2199999006657")
    assert not res.found
    assert res.code == "2199999006657"
    assert res.suggested_quantity is None


def test_plu_packed(resolver):
    res = resolver.resolve("0000000000510")
    assert res.code == "2100510000000"
    assert res.suggested_quantity is None
    assert res.classified.dialect is Dialect.PLU_PACKED


def test_not_found_returns_trimmed_input(resolver):
    res = resolver.resolve("  12345  ")
    assert res.article is None
    assert res.code == "12345"


def test_empty_input(resolver):
    res = resolver.resolve("   ")
    assert res.article is None
    assert res.code == ""


def test_search_internal_code(resolver):
    assert [a.code for a in resolver.search_internal_code("1001")] == [
        "7790001000011",
        "7790001000028",
    ]


@settings(suppress_health_check=[HealthCheck.function_scoped_fixture])
@given(
    st.one_of(
        st.sampled_from(
            ["2100510006657", "0000000000510", "7790001000011", "2000777000000"]
        ),
        st.text(alphabet="0123456789 ", max_size=16),
    )
)
def test_resolving_a_resolved_code_is_stable(resolver, raw):
    """Resolving the chosen code again yields the same article and code."""
    first = resolver.resolve(raw)
    if not first.found:
        return
    second = resolver.resolve(first.code)
    assert second.article == first.article
    assert second.code == first.code
