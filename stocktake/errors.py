"""Exception types raised by the stocktake core."""

from __future__ import annotations


class StocktakeError(Exception):
    """Base class for all stocktake errors."""


class ValidationError(StocktakeError, ValueError):
    """Input rejected before any store mutation."""


class ArticleNotFoundError(StocktakeError, LookupError):
    """A line was requested for a code that is not in the catalog."""

    def __init__(self, code: str) -> None:
        super().__init__(f"Código no encontrado en el catálogo: {code}")
        self.code = code


class CatalogFormatError(StocktakeError, ValueError):
    """The catalog source is unusable (empty, or missing required columns)."""


class ExportError(StocktakeError):
    """A session has no rows to export."""
