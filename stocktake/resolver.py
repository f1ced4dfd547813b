"""Resolve scanned codes to catalog articles."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

from .barcode import ClassifiedCode, Dialect, classify
from .db.catalog import CatalogDB
from .models import Article

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Resolution:
    """Outcome of resolving a raw code.

    ``article`` is None when nothing in the catalog matched; ``code`` is
    then the trimmed input so the caller can still show what was scanned.
    """

    article: Article | None
    code: str
    suggested_quantity: float | None
    classified: ClassifiedCode

    @property
    def found(self) -> bool:
        return self.article is not None


class ArticleResolver:
    """Look up articles by primary code, scale ticket or PLU-packed ticket."""

    def __init__(self, catalog: CatalogDB) -> None:
        self._catalog = catalog

    def resolve(self, raw: str) -> Resolution:
        classified = classify(raw)
        code = classified.code

        if classified.dialect is Dialect.SCALE and classified.internal_code:
            found = self._catalog.find_by_internal_code(classified.internal_code)
            if found is not None:
                # Prefer the weight-agnostic entry so repeated weighings of the
                # same product share one line.
                use_code = found.code
                if classified.base_code and self._catalog.get(classified.base_code):
                    use_code = classified.base_code
                weight = classified.weight
                if weight is not None and not math.isfinite(weight):
                    weight = None
                logger.debug("Scale ticket %s -> %s (weight %s)", code, use_code, weight)
                return Resolution(found, use_code, weight, classified)

        if classified.dialect is Dialect.PLU_PACKED:
            found = self._catalog.find_by_internal_code(classified.internal_code)
            if found is not None:
                logger.debug("PLU-packed ticket %s -> %s", code, found.code)
                return Resolution(found, found.code, None, classified)

        article = self._catalog.get(code) if code else None
        if article is None:
            logger.debug("No catalog match for %r", code)
        return Resolution(article, code, None, classified)

    def search_internal_code(self, internal_code: str) -> list[Article]:
        """All articles sharing an internal code (e.g. every pack size)."""
        return self._catalog.list_by_internal_code(internal_code)
