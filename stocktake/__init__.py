"""Barcode-driven inventory counting with spreadsheet catalog import and export."""

from .barcode import ClassifiedCode, Dialect, classify, normalize_code
from .camera import BarcodeCamera, ScanThrottle, throttled
from .config import StocktakeConfig, load_config
from .db import CatalogDB, SessionDB, closing_store, open_store
from .errors import (
    ArticleNotFoundError,
    CatalogFormatError,
    ExportError,
    StocktakeError,
    ValidationError,
)
from .export import ExportResult, export_session
from .importer import import_catalog, import_catalog_file
from .models import Article, ExpiryLine, PlainLine, Session, SessionKind, SessionStats
from .reconcile import (
    Choice,
    CrossDateConflict,
    FractionalQuantity,
    QuantityReconciler,
    SameKeyConflict,
    Written,
)
from .resolver import ArticleResolver, Resolution

__all__ = [
    "classify",
    "normalize_code",
    "ClassifiedCode",
    "Dialect",
    "ArticleResolver",
    "Resolution",
    "QuantityReconciler",
    "Choice",
    "FractionalQuantity",
    "SameKeyConflict",
    "CrossDateConflict",
    "Written",
    "import_catalog",
    "import_catalog_file",
    "export_session",
    "ExportResult",
    "CatalogDB",
    "SessionDB",
    "open_store",
    "closing_store",
    "Article",
    "Session",
    "SessionKind",
    "SessionStats",
    "PlainLine",
    "ExpiryLine",
    "BarcodeCamera",
    "ScanThrottle",
    "throttled",
    "StocktakeConfig",
    "load_config",
    "StocktakeError",
    "ValidationError",
    "ArticleNotFoundError",
    "CatalogFormatError",
    "ExportError",
]
