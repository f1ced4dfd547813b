"""Catalog import from spreadsheet rows."""

from __future__ import annotations

import logging
import math
import re
import unicodedata
import zipfile
from collections.abc import Iterator, Mapping, Sequence
from pathlib import Path
from typing import Any

import openpyxl
from openpyxl.utils.exceptions import InvalidFileException

from .db.catalog import CatalogDB
from .errors import CatalogFormatError
from .models import Article

logger = logging.getLogger(__name__)

# Canonical column -> accepted header slugs
HEADER_SYNONYMS: dict[str, tuple[str, ...]] = {
    "ean": ("ean",),
    "codigo_articulo": (
        "codigo_articulo",
        "codigo",
        "codarticulo",
        "cod_articulo",
        "codigo_interno",
        "plu",
    ),
    "descripcion": ("descripcion", "desc"),
    "unidades_por_bulto": (
        "unidades_por_bulto",
        "unidades_por_paquete",
        "uxb",
        "unidades_paquete",
        "unidadesxbolsa",
    ),
    "pesable": ("pesable",),
    "pesable_por_unidad": (
        "pesable_x_un",
        "pesable_por_unidad",
        "pesablexun",
        "pesable_x_unidad",
    ),
}

REQUIRED_COLUMNS = ("ean", "codigo_articulo", "descripcion", "unidades_por_bulto")

_SEPARATORS = re.compile(r"[\s-]+")
_UNDERSCORES = re.compile(r"_+")
_NON_SLUG = re.compile(r"[^a-z0-9_]")


def slugify_header(header: Any) -> str:
    """Accent-, case- and punctuation-insensitive form of a column header.

    >>> slugify_header("Código Artículo")
    'codigo_articulo'
    """
    text = unicodedata.normalize("NFD", str(header))
    text = "".join(ch for ch in text if not unicodedata.combining(ch)).lower()
    text = _SEPARATORS.sub("_", text)
    text = _UNDERSCORES.sub("_", text)
    text = _NON_SLUG.sub("", text)
    return text.strip("_")


def pick(row: Mapping[str, Any], canonical: str) -> Any:
    """Value of a canonical column in a row, or None if no variant is present."""
    slugged = {slugify_header(k): v for k, v in row.items()}
    for variant in HEADER_SYNONYMS[canonical]:
        if variant in slugged:
            return slugged[variant]
        if variant in row:
            return row[variant]
    return None


def validate_headers(rows: Sequence[Mapping[str, Any]]) -> None:
    """Reject the import unless the first row carries every required column."""
    if not rows:
        raise CatalogFormatError("El archivo no tiene filas para importar.")
    missing = [key for key in REQUIRED_COLUMNS if pick(rows[0], key) is None]
    if missing:
        raise CatalogFormatError(f"Faltan columnas requeridas: {', '.join(missing)}")


def _cell_text(raw: Any) -> str:
    if raw is None:
        return ""
    # Numeric barcode cells come back as int/float from openpyxl
    if isinstance(raw, float) and raw.is_integer():
        return str(int(raw))
    return str(raw).strip()


def normalize_code(raw: Any) -> str:
    s = _cell_text(raw)
    if s.startswith("'"):
        s = s[1:]
    return s


def normalize_units(raw: Any) -> float:
    """Units per case; comma accepted as decimal mark, 1 when unusable."""
    try:
        n = float(_cell_text(raw).replace(",", ".", 1))
    except ValueError:
        return 1.0
    if not math.isfinite(n) or n <= 0:
        return 1.0
    return n


def normalize_bool01(raw: Any) -> bool:
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return raw == 1
    return _cell_text(raw) == "1"


def normalize_row(row: Mapping[str, Any]) -> Article | None:
    """Build an Article from one source row; None when code or description is blank."""
    code = normalize_code(pick(row, "ean"))
    description = _cell_text(pick(row, "descripcion"))
    if not code or not description:
        return None
    return Article(
        code=code,
        internal_code=_cell_text(pick(row, "codigo_articulo")),
        description=description,
        units_per_case=normalize_units(pick(row, "unidades_por_bulto")),
        weighable=normalize_bool01(pick(row, "pesable")),
        weighable_by_unit=normalize_bool01(pick(row, "pesable_por_unidad")),
    )


def normalize_rows(rows: Sequence[Mapping[str, Any]]) -> list[Article]:
    validate_headers(rows)
    articles = [a for a in (normalize_row(r) for r in rows) if a is not None]
    dropped = len(rows) - len(articles)
    if dropped:
        logger.info("Dropped %d rows without code or description", dropped)
    return articles


def read_xlsx_rows(path: str | Path) -> Iterator[dict[str, Any]]:
    """Yield one dict per data row of the first worksheet of an .xlsx file.

    The first row is the header; empty cells read as ``""`` and fully blank
    rows are skipped.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Archivo no encontrado: {path}")

    try:
        wb = openpyxl.load_workbook(path, read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError) as e:
        raise CatalogFormatError(f"No se pudo leer el Excel {path.name}: {e}") from e
    try:
        sheet = wb.worksheets[0]
        rows = sheet.iter_rows(values_only=True)
        header = next(rows, None)
        if header is None:
            return
        headers = [str(h).strip() if h is not None else "" for h in header]
        for values in rows:
            cells = ["" if v is None else v for v in values]
            if not any(c != "" for c in cells):
                continue
            yield {h: (cells[i] if i < len(cells) else "") for i, h in enumerate(headers) if h}
    finally:
        wb.close()


def import_catalog(
    catalog: CatalogDB,
    rows: Sequence[Mapping[str, Any]],
    batch_size: int = 800,
) -> int:
    """Replace the whole catalog with the given source rows.

    Headers are validated before anything is written; the replacement is a
    single transaction.

    Returns:
        Number of articles imported.

    Raises:
        CatalogFormatError: if there are no rows or a required column is missing.
    """
    articles = normalize_rows(rows)
    return catalog.replace_all(articles, batch_size=batch_size)


def import_catalog_file(
    catalog: CatalogDB, path: str | Path, batch_size: int = 800
) -> int:
    """Read an .xlsx catalog and import it."""
    rows = list(read_xlsx_rows(path))
    logger.info("Read %d rows from %s", len(rows), path)
    return import_catalog(catalog, rows, batch_size=batch_size)
