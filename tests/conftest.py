"""Shared fixtures: a temporary store with a small catalog."""

import pytest

from stocktake.db import CatalogDB, SessionDB, open_store
from stocktake.models import Article


@pytest.fixture
def conn(tmp_path):
    """Open a temporary store."""
    connection = open_store(tmp_path / "test.db")
    yield connection
    connection.close()


@pytest.fixture
def catalog(conn):
    return CatalogDB(conn)


@pytest.fixture
def sessions(conn):
    return SessionDB(conn)


@pytest.fixture
def sample_articles():
    """Catalog rows used across tests."""
    return [
        Article("7790001000011", "1001", "Yerba 1kg", 10),
        Article("7790001000028", "1001", "Yerba 500g", 20),
        Article("2100510000000", "510", "Queso cremoso x kg", 1, weighable=True),
        Article("2000777000000", "777", "Jamón cocido x kg", 1, weighable=True),
        Article("7790002000010", "2002", "Aceite 900ml", 12),
        Article("7790003000019", "3003", "arroz largo fino", 10),
    ]


@pytest.fixture
def loaded_catalog(catalog, sample_articles):
    catalog.replace_all(sample_articles)
    return catalog
