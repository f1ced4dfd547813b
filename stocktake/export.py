"""Export counting sessions to .xlsx workbooks."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path

from openpyxl import Workbook

from .db.sessions import SessionDB
from .errors import ExportError, ValidationError
from .models import SessionKind

logger = logging.getLogger(__name__)

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

LINE_HEADERS = (
    "ean",
    "codigo articulo",
    "descripcion",
    "unidades por bulto",
    "bultos",
    "cantidad",
    "fecha de ingreso",
    "fecha de vencimiento",  # always last; blank for plain sessions
)

SUMMARY_HEADERS = (
    "inventario_id",
    "nombre",
    "observacion",
    "fecha de creacion",
    "fecha de exportacion",
    "total filas",
    "tipo",
)


@dataclass(frozen=True)
class ExportResult:
    path: Path
    file_name: str
    rows: int


def fmt_date(d: date) -> str:
    return d.strftime("%d/%m/%Y")


def fmt_datetime(ts: str | datetime | None) -> str:
    if not ts:
        return ""
    if isinstance(ts, str):
        ts = datetime.fromisoformat(ts)
    return ts.strftime("%d/%m/%Y %H:%M")


def whole_cases(quantity: float, units_per_case: float | None) -> int:
    """Complete cases in a quantity; units per case below 1 count as 1."""
    upc = max(1.0, units_per_case or 1.0)
    return math.floor(quantity / upc)


def export_file_name(session_id: int, kind: SessionKind, now: datetime) -> str:
    prefix = "inventario_vto" if kind is SessionKind.EXPIRY else "inventario"
    return f"{prefix}_{session_id}_{now.strftime('%Y%m%d_%H%M')}.xlsx"


def build_line_rows(sessions: SessionDB, session_id: int, kind: SessionKind) -> list[list]:
    """Rows for the line-item sheet, in LINE_HEADERS order."""
    rows: list[list] = []
    if kind is SessionKind.EXPIRY:
        for line in sessions.get_expiry_lines(session_id):
            upc = max(1.0, line.units_per_case or 1.0)
            rows.append([
                line.code,
                line.internal_code or "",
                line.description or "",
                upc,
                whole_cases(line.quantity, upc),
                line.quantity,
                fmt_datetime(line.updated_at),
                fmt_date(line.expiry_date),
            ])
    else:
        for line in sessions.get_lines(session_id):
            upc = max(1.0, line.units_per_case or 1.0)
            rows.append([
                line.code,
                line.internal_code or "",
                line.description or "",
                upc,
                whole_cases(line.quantity, upc),
                line.quantity,
                fmt_datetime(line.updated_at),
                "",
            ])
    return rows


def export_session(
    sessions: SessionDB,
    session_id: int,
    output_dir: str | Path,
    *,
    now: datetime | None = None,
) -> ExportResult:
    """Write a session to ``output_dir`` as an .xlsx workbook.

    The workbook has one sheet of line items (``inventario`` or
    ``vencimientos``) and a ``resumen`` sheet describing the export.

    Raises:
        ValidationError: if the session does not exist.
        ExportError: if the session has no lines of its kind.
    """
    session = sessions.get(session_id)
    if session is None:
        raise ValidationError(f"Inventario inexistente: {session_id}")

    lines = build_line_rows(sessions, session_id, session.kind)
    if not lines:
        raise ExportError(
            f"El inventario {session_id} no tiene ítems para exportar."
        )

    now = now or datetime.now()
    expiry = session.kind is SessionKind.EXPIRY

    wb = Workbook()
    ws = wb.active
    ws.title = "vencimientos" if expiry else "inventario"
    ws.append(list(LINE_HEADERS))
    for row in lines:
        ws.append(row)

    summary = wb.create_sheet("resumen")
    summary.append(list(SUMMARY_HEADERS))
    summary.append([
        session.id,
        session.name,
        session.note,
        fmt_datetime(session.created_at),
        fmt_datetime(now),
        len(lines),
        "vencimientos" if expiry else "cantidades",
    ])

    output_dir = Path(output_dir).expanduser()
    output_dir.mkdir(parents=True, exist_ok=True)
    file_name = export_file_name(session.id, session.kind, now)
    path = output_dir / file_name
    wb.save(path)

    logger.info("Exported session %d (%d rows) to %s", session.id, len(lines), path)
    return ExportResult(path=path, file_name=file_name, rows=len(lines))
