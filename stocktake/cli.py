"""CLI entry point."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sqlite3
import sys
from datetime import date, datetime

from .camera import BarcodeCamera, ScanThrottle, line_codes, throttled
from .config import load_config
from .db import CatalogDB, SessionDB, closing_store
from .errors import StocktakeError, ValidationError
from .export import export_session, fmt_date
from .importer import import_catalog_file
from .models import SessionKind
from .reconcile import (
    Choice,
    CrossDateConflict,
    FractionalQuantity,
    QuantityReconciler,
    SameKeyConflict,
    Written,
    parse_quantity,
)
from .resolver import ArticleResolver

logger = logging.getLogger(__name__)

CHOICE_LABELS = {
    Choice.CONTINUE: "Continuar",
    Choice.CANCEL: "Cancelar",
    Choice.ACCUMULATE: "Sumar",
    Choice.REPLACE: "Reemplazar",
    Choice.ACCUMULATE_KEEP_EARLIEST: "Sumar y mantener fecha más baja",
    Choice.REPLACE_WITH_NEW_DATE: "Reemplazar por nueva fecha",
}


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="stocktake",
        description="Conteo de inventario por código de barras",
    )
    parser.add_argument(
        "--config", "-c", type=str, default=None, help="Archivo de configuración (TOML)"
    )
    parser.add_argument(
        "--verbose", "-v", action="count", default=0, help="Más detalle en el log"
    )

    sub = parser.add_subparsers(dest="command")

    sub.add_parser("cameras", help="Listar cámaras disponibles")

    imp = sub.add_parser("import", help="Reemplazar el catálogo desde un Excel (.xlsx)")
    imp.add_argument("file", type=str)

    look = sub.add_parser("lookup", help="Identificar un código")
    look.add_argument("code", type=str)
    look.add_argument("--plu", action="store_true", help="Listar todos los EAN de un código interno")

    new = sub.add_parser("new", help="Crear inventario")
    new.add_argument("name", type=str)
    new.add_argument("--note", type=str, default="")
    new.add_argument("--expiry", action="store_true", help="Inventario con vencimientos")

    ls = sub.add_parser("sessions", help="Listar inventarios")
    ls.add_argument("--json", action="store_true", help="Salida en JSON")

    ren = sub.add_parser("rename", help="Renombrar inventario")
    ren.add_argument("id", type=int)
    ren.add_argument("name", type=str)
    ren.add_argument("--note", type=str, default="")

    dele = sub.add_parser("delete", help="Eliminar inventario y sus ítems")
    dele.add_argument("id", type=int)
    dele.add_argument("--yes", "-y", action="store_true", help="No pedir confirmación")

    lines = sub.add_parser("lines", help="Ítems cargados en un inventario")
    lines.add_argument("id", type=int)
    lines.add_argument("--json", action="store_true", help="Salida en JSON")

    add = sub.add_parser("add", help="Agregar una cantidad")
    add.add_argument("id", type=int)
    add.add_argument("code", type=str)
    add.add_argument("quantity", type=str)
    add.add_argument("--date", type=str, default=None, help="Vencimiento (AAAA-MM-DD o DD/MM/AAAA)")
    add.add_argument(
        "--on-conflict",
        choices=[c.value for c in Choice if c not in (Choice.CONTINUE, Choice.CANCEL)],
        default=None,
        help="Resolver conflictos sin preguntar",
    )
    add.add_argument("--allow-fraction", action="store_true", help="Aceptar decimales en no pesables")

    rem = sub.add_parser("remove", help="Quitar un ítem")
    rem.add_argument("id", type=int)
    rem.add_argument("code", type=str, nargs="?", default=None)
    rem.add_argument("--row", type=int, default=None, help="Id de fila (vencimientos)")

    scan = sub.add_parser("scan", help="Escanear de forma continua")
    scan.add_argument("id", type=int)
    scan.add_argument("--stdin", action="store_true", help="Leer códigos de la entrada estándar")
    scan.add_argument("--date", type=str, default=None, help="Vencimiento para todo el escaneo")

    exp = sub.add_parser("export", help="Exportar a Excel")
    exp.add_argument("id", type=int)
    exp.add_argument("--out", type=str, default=None, help="Carpeta de salida")
    exp.add_argument("--drive", action="store_true", help="Subir a Google Drive")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    level = {0: logging.WARNING, 1: logging.INFO}.get(args.verbose, logging.DEBUG)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    config = load_config(args.config)

    if args.command == "cameras":
        _cmd_cameras()
        return

    try:
        with closing_store(config.database.path) as conn:
            match args.command:
                case "import":
                    _cmd_import(conn, config, args)
                case "lookup":
                    _cmd_lookup(conn, args)
                case "new":
                    _cmd_new(conn, args)
                case "sessions":
                    _cmd_sessions(conn, args)
                case "rename":
                    SessionDB(conn).rename(args.id, args.name, args.note)
                    print(f"Inventario {args.id} actualizado.")
                case "delete":
                    _cmd_delete(conn, args)
                case "lines":
                    _cmd_lines(conn, args)
                case "add":
                    _cmd_add(conn, args)
                case "remove":
                    _cmd_remove(conn, args)
                case "scan":
                    try:
                        asyncio.run(_cmd_scan(conn, config, args))
                    except KeyboardInterrupt:
                        print()
                case "export":
                    _cmd_export(conn, config, args)
    except StocktakeError as e:
        print(str(e), file=sys.stderr)
        sys.exit(1)
    except FileNotFoundError as e:
        print(str(e), file=sys.stderr)
        sys.exit(1)
    except sqlite3.Error as e:
        logger.exception("Store operation failed")
        print(f"Error de base de datos: {e}", file=sys.stderr)
        sys.exit(1)


# ---------- Prompts ----------

def parse_date(text: str) -> date:
    """Parse ``AAAA-MM-DD`` or ``DD/MM/AAAA``."""
    text = (text or "").strip()
    for fmt in ("%Y-%m-%d", "%d/%m/%Y"):
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    raise ValidationError(f"Fecha inválida: {text!r} (usá AAAA-MM-DD o DD/MM/AAAA)")


def describe_request(request) -> str:
    if isinstance(request, FractionalQuantity):
        return (
            f"Decimal en artículo NO pesable ({request.article.description}). "
            f"¿Registrar {request.quantity:g}?"
        )
    if isinstance(request, SameKeyConflict):
        when = f" para el {fmt_date(request.expiry_date)}" if request.expiry_date else ""
        return (
            f"Este código ya fue contado{when} (cantidad actual: "
            f"{request.existing_quantity:g}). ¿Sumar {request.quantity:g} o reemplazar?"
        )
    if isinstance(request, CrossDateConflict):
        dates = ", ".join(fmt_date(d) for d in request.existing_dates)
        return (
            f"Este código ya tiene otras fechas: {dates} "
            f"(total {request.existing_total:g}). ¿Cómo querés proceder?"
        )
    raise TypeError(f"Unknown decision request: {request!r}")


def ask_choice(request, preset: Choice | None = None) -> Choice:
    """Resolve a decision request from a preset or by asking the operator."""
    if preset is not None and preset in request.options:
        return preset
    print(describe_request(request))
    for n, option in enumerate(request.options, start=1):
        print(f"  {n}) {CHOICE_LABELS[option]}")
    while True:
        try:
            answer = input("> ").strip()
        except EOFError:
            return Choice.CANCEL
        if answer.isdigit() and 1 <= int(answer) <= len(request.options):
            return request.options[int(answer) - 1]
        print("Opción inválida.")


def run_submission(
    engine: QuantityReconciler,
    result,
    *,
    on_conflict: Choice | None = None,
    allow_fraction: bool = False,
    today: date | None = None,
) -> Written | None:
    """Drive decision requests until the submission is written or cancelled."""
    while result is not None and not isinstance(result, Written):
        preset = Choice.CONTINUE if (
            allow_fraction and isinstance(result, FractionalQuantity)
        ) else on_conflict
        result = engine.decide(result, ask_choice(result, preset), today=today)
    return result


def _report(written: Written | None) -> None:
    if written is None:
        print("Cancelado.")
        return
    when = f" vence {fmt_date(written.expiry_date)}" if written.expiry_date else ""
    labels = {
        "inserted": "Agregado",
        "accumulated": "Sumado",
        "replaced": "Reemplazado",
        "consolidated": "Consolidado",
    }
    print(f"{labels[written.action.value]}: {written.code} = {written.quantity:g}{when}")


# ---------- Commands ----------

def _cmd_cameras() -> None:
    cameras = BarcodeCamera.list_cameras()
    if not cameras:
        print("No se encontraron cámaras.")
        return
    print(f"Cámaras disponibles: {len(cameras)}")
    for idx in cameras:
        print(f"  cámara {idx}")


def _cmd_import(conn, config, args) -> None:
    total = import_catalog_file(
        CatalogDB(conn), args.file, batch_size=config.catalog.batch_size
    )
    print(f"Catálogo importado: {total} artículos.")


def _cmd_lookup(conn, args) -> None:
    resolver = ArticleResolver(CatalogDB(conn))
    if args.plu:
        found = resolver.search_internal_code(args.code)
        if not found:
            print("Sin resultados para ese código interno.")
            return
        for a in found:
            print(f"  {a.code}  {a.description}  (UxB {a.units_per_case:g})")
        return

    res = resolver.resolve(args.code)
    print(f"Tipo: {res.classified.dialect.value}")
    if not res.found:
        print(f"Código no encontrado: {res.code}")
        return
    print(f"EAN a usar: {res.code}")
    print(f"Artículo: {res.article.description} (código {res.article.internal_code})")
    if res.suggested_quantity is not None:
        print(f"Peso sugerido: {res.suggested_quantity:g}")


def _cmd_new(conn, args) -> None:
    kind = SessionKind.EXPIRY if args.expiry else SessionKind.PLAIN
    session_id = SessionDB(conn).create(args.name, args.note, kind)
    print(f"Inventario creado: {session_id}")


def _cmd_sessions(conn, args) -> None:
    stats = SessionDB(conn).list_with_stats()
    if args.json:
        data = [
            {
                "id": s.session.id,
                "name": s.session.name,
                "note": s.session.note,
                "kind": s.session.kind.value,
                "created_at": s.session.created_at,
                "plain_count": s.plain_count,
                "expiry_count": s.expiry_count,
                "total": s.total,
                "last_modified": s.last_modified,
            }
            for s in stats
        ]
        print(json.dumps(data, ensure_ascii=False, indent=2))
        return
    if not stats:
        print("No hay inventarios.")
        return
    for s in stats:
        print(
            f"{s.session.id:>4}  {s.session.name:<24} [{s.session.kind.value}] "
            f"ítems: {s.total:<5} modificado: {s.last_modified}"
        )


def _cmd_delete(conn, args) -> None:
    sessions = SessionDB(conn)
    session = sessions.get(args.id)
    if session is None:
        raise ValidationError(f"Inventario inexistente: {args.id}")
    if not args.yes:
        answer = input(f"¿Eliminar «{session.name}» y todos sus ítems? [s/N] ")
        if answer.strip().lower() not in ("s", "si", "sí", "y", "yes"):
            print("Cancelado.")
            return
    sessions.delete(args.id)
    print(f"Inventario {args.id} eliminado.")


def _cmd_lines(conn, args) -> None:
    sessions = SessionDB(conn)
    session = sessions.get(args.id)
    if session is None:
        raise ValidationError(f"Inventario inexistente: {args.id}")

    if session.kind is SessionKind.EXPIRY:
        rows = [
            {
                "id": r.id,
                "code": r.code,
                "internal_code": r.internal_code,
                "description": r.description,
                "quantity": r.quantity,
                "expiry_date": r.expiry_date.isoformat(),
            }
            for r in sessions.get_expiry_lines(args.id)
        ]
    else:
        rows = [
            {
                "id": r.id,
                "code": r.code,
                "internal_code": r.internal_code,
                "description": r.description,
                "quantity": r.quantity,
            }
            for r in sessions.get_lines(args.id)
        ]

    if args.json:
        print(json.dumps(rows, ensure_ascii=False, indent=2))
        return
    if not rows:
        print("Sin ítems cargados.")
        return
    for r in rows:
        when = f"  vence {fmt_date(date.fromisoformat(r['expiry_date']))}" if "expiry_date" in r else ""
        print(f"{r['id']:>5}  {r['code']:<14} {r['description'] or '?':<30} {r['quantity']:>8g}{when}")


def _cmd_add(conn, args) -> None:
    catalog = CatalogDB(conn)
    engine = QuantityReconciler(catalog, SessionDB(conn))
    resolution = ArticleResolver(catalog).resolve(args.code)
    expiry = parse_date(args.date) if args.date else None
    result = engine.submit(
        args.id,
        resolution.code,
        parse_quantity(args.quantity),
        expiry_date=expiry,
        allow_fraction=args.allow_fraction,
    )
    on_conflict = Choice(args.on_conflict) if args.on_conflict else None
    _report(run_submission(engine, result, on_conflict=on_conflict))


def _cmd_remove(conn, args) -> None:
    sessions = SessionDB(conn)
    if args.row is not None:
        removed = sessions.remove_expiry_line(args.id, args.row)
    elif args.code:
        removed = sessions.remove_line(args.id, args.code)
    else:
        raise ValidationError("Indicá un código o --row.")
    print("Ítem eliminado." if removed else "No se encontró el ítem.")


async def _cmd_scan(conn, config, args) -> None:
    catalog = CatalogDB(conn)
    sessions = SessionDB(conn)
    resolver = ArticleResolver(catalog)
    engine = QuantityReconciler(catalog, sessions)

    session = sessions.get(args.id)
    if session is None:
        raise ValidationError(f"Inventario inexistente: {args.id}")
    fixed_date = parse_date(args.date) if args.date else None

    throttle = None
    if args.stdin:
        feed = line_codes()
    else:
        throttle = ScanThrottle(config.scanner.throttle_ms)
        camera = BarcodeCamera(
            camera_index=config.scanner.camera_index,
            poll_interval=config.scanner.poll_interval,
        )
        feed = throttled(camera.codes(), throttle)

    print(f"Escaneando en «{session.name}». Ctrl+C para terminar.")
    async for raw in feed:
        resolution = resolver.resolve(raw)
        if not resolution.found:
            print(f"Código no encontrado: {resolution.code}")
            continue
        print(f"{resolution.code}  {resolution.article.description}")
        # Prompts block the loop; the feed is not read while the operator answers
        try:
            written = _scan_one(engine, session.id, session.kind, resolution, fixed_date)
        except EOFError:
            break
        except StocktakeError as e:
            print(str(e))
            continue
        finally:
            if throttle is not None:
                throttle.touch()
        _report(written)


def _scan_one(engine, session_id, kind, resolution, fixed_date) -> Written | None:
    suggested = resolution.suggested_quantity
    hint = f" [{suggested:g}]" if suggested is not None else ""
    text = input(f"Cantidad{hint}: ").strip()
    if not text and suggested is not None:
        text = str(suggested)
    quantity = parse_quantity(text)

    expiry = None
    if kind is SessionKind.EXPIRY:
        expiry = fixed_date or parse_date(input("Vencimiento (DD/MM/AAAA): "))

    result = engine.submit(session_id, resolution.code, quantity, expiry_date=expiry)
    return run_submission(engine, result)


def _cmd_export(conn, config, args) -> None:
    sessions = SessionDB(conn)
    result = export_session(sessions, args.id, args.out or config.export.output_dir)
    print(f"Exportación lista: {result.path} ({result.rows} filas)")

    if args.drive or config.gdrive.enabled:
        from .gdrive import DriveSharer

        print("Subiendo a Google Drive...")
        try:
            shared = DriveSharer(config.gdrive).share(result, sessions.get(args.id))
        except (ImportError, FileNotFoundError) as e:
            print(f"Error de Google Drive: {e}", file=sys.stderr)
            return
        print(f"   Compartido: {shared.web_link or shared.file_id}")
