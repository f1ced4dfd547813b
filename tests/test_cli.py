"""Tests for the command-line front end."""

import io
import json

import openpyxl
import pytest

from stocktake.cli import main, parse_date
from stocktake.db import CatalogDB, SessionDB, closing_store
from stocktake.errors import ValidationError


@pytest.fixture
def db_path(tmp_path, monkeypatch, sample_articles):
    path = tmp_path / "cli.db"
    monkeypatch.setenv("STOCKTAKE_DB", str(path))
    monkeypatch.setenv("STOCKTAKE_EXPORT_DIR", str(tmp_path / "exports"))
    with closing_store(path) as conn:
        CatalogDB(conn).replace_all(sample_articles)
    return path


def _lines(db_path, session_id):
    with closing_store(db_path) as conn:
        return SessionDB(conn).get_lines(session_id)


def test_parse_date_formats():
    assert parse_date("2027-01-10") == parse_date("10/01/2027")
    with pytest.raises(ValidationError):
        parse_date("mañana")


def test_no_command_exits(capsys):
    with pytest.raises(SystemExit):
        main([])


def test_new_and_list_sessions(db_path, capsys):
    main(["new", "Depósito", "--note", "turno tarde"])
    main(["new", "Lácteos", "--expiry"])
    capsys.readouterr()

    main(["sessions", "--json"])
    data = json.loads(capsys.readouterr().out)
    by_name = {s["name"]: s for s in data}
    assert by_name["Depósito"]["kind"] == "plain"
    assert by_name["Depósito"]["note"] == "turno tarde"
    assert by_name["Lácteos"]["kind"] == "expiry"


def test_import_xlsx(db_path, tmp_path, capsys):
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.append(["EAN", "Código", "Descripción", "Unidades por bulto"])
    ws.append(["123", "9", "Nuevo", 6])
    path = tmp_path / "cat.xlsx"
    wb.save(path)

    main(["import", str(path)])
    assert "1 artículos" in capsys.readouterr().out
    with closing_store(db_path) as conn:
        assert CatalogDB(conn).count() == 1


def test_import_missing_file_exits(db_path, tmp_path, capsys):
    with pytest.raises(SystemExit) as exc_info:
        main(["import", str(tmp_path / "nope.xlsx")])
    assert exc_info.value.code == 1
    assert "Archivo no encontrado" in capsys.readouterr().err


def test_import_corrupt_file_exits(db_path, tmp_path, capsys):
    path = tmp_path / "cat.xlsx"
    path.write_bytes(b"not a zip")
    with pytest.raises(SystemExit) as exc_info:
        main(["import", str(path)])
    assert exc_info.value.code == 1
    assert "No se pudo leer" in capsys.readouterr().err
    with closing_store(db_path) as conn:
        assert CatalogDB(conn).count() == 6


def test_lookup_scale_ticket(db_path, capsys):
    main(["lookup", "2100510006657"])
    out = capsys.readouterr().out
    assert "EAN a usar: 2100510000000" in out
    assert "Peso sugerido: 0.6657" in out


def test_lookup_plu(db_path, capsys):
    main(["lookup", "--plu", "1001"])
    out = capsys.readouterr().out
    assert "7790001000011" in out
    assert "7790001000028" in out


def test_add_then_accumulate(db_path, capsys):
    main(["new", "Salón"])
    main(["add", "1", "7790001000011", "5"])
    main(["add", "1", "7790001000011", "3", "--on-conflict", "accumulate"])

    out = capsys.readouterr().out
    assert "Sumado: 7790001000011 = 8" in out
    assert _lines(db_path, 1)[0].quantity == 8


def test_add_prompts_on_conflict(db_path, capsys, monkeypatch):
    main(["new", "Salón"])
    main(["add", "1", "7790001000011", "5"])
    monkeypatch.setattr("builtins.input", lambda prompt="": "2")  # Reemplazar

    main(["add", "1", "7790001000011", "3"])
    assert "Reemplazado" in capsys.readouterr().out
    assert _lines(db_path, 1)[0].quantity == 3


def test_add_prompt_eof_cancels(db_path, capsys, monkeypatch):
    main(["new", "Salón"])

    def _eof(prompt=""):
        raise EOFError

    monkeypatch.setattr("builtins.input", _eof)
    main(["add", "1", "7790001000011", "1,5"])
    assert "Cancelado." in capsys.readouterr().out
    assert _lines(db_path, 1) == []


def test_add_unknown_code_exits(db_path, capsys):
    main(["new", "Salón"])
    with pytest.raises(SystemExit) as exc_info:
        main(["add", "1", "999", "1"])
    assert exc_info.value.code == 1
    assert "Código no encontrado en el catálogo: 999" in capsys.readouterr().err


def test_add_expiry_requires_date(db_path, capsys):
    main(["new", "Lácteos", "--expiry"])
    with pytest.raises(SystemExit):
        main(["add", "1", "7790002000010", "2"])
    assert "Fecha requerida" in capsys.readouterr().err


def test_scan_from_stdin(db_path, capsys, monkeypatch):
    main(["new", "Fiambrería"])
    # code, then quantity (blank accepts the ticket weight)
    monkeypatch.setattr("sys.stdin", io.StringIO("2100510006657\n\n999\n"))

    main(["scan", "1", "--stdin"])

    out = capsys.readouterr().out
    assert "Código no encontrado: 999" in out
    (line,) = _lines(db_path, 1)
    assert line.code == "2100510000000"
    assert line.quantity == pytest.approx(0.6657)


def test_export(db_path, tmp_path, capsys):
    main(["new", "Salón"])
    main(["add", "1", "7790002000010", "25"])
    main(["export", "1", "--out", str(tmp_path / "out")])

    assert "Exportación lista" in capsys.readouterr().out
    (path,) = (tmp_path / "out").glob("inventario_1_*.xlsx")
    wb = openpyxl.load_workbook(path)
    assert wb.sheetnames == ["inventario", "resumen"]


def test_export_shares_to_drive(db_path, tmp_path, capsys, monkeypatch):
    from stocktake import gdrive

    shared = []

    class FakeSharer:
        def __init__(self, config):
            pass

        def share(self, result, session):
            shared.append((result.file_name, session.name))
            return gdrive.SharedWorkbook("f1", "d1", "https://drive.example/f1")

    monkeypatch.setattr(gdrive, "DriveSharer", FakeSharer)
    main(["new", "Salón"])
    main(["add", "1", "7790002000010", "25"])
    main(["export", "1", "--out", str(tmp_path / "out"), "--drive"])

    assert shared[0][1] == "Salón"
    assert shared[0][0].startswith("inventario_1_")
    assert "Compartido: https://drive.example/f1" in capsys.readouterr().out


def test_export_empty_session_exits(db_path, capsys):
    main(["new", "Vacío"])
    with pytest.raises(SystemExit):
        main(["export", "1"])
    assert "no tiene ítems" in capsys.readouterr().err


def test_remove_and_delete(db_path, capsys):
    main(["new", "Salón"])
    main(["add", "1", "7790002000010", "2"])
    main(["remove", "1", "7790002000010"])
    assert "Ítem eliminado." in capsys.readouterr().out

    main(["delete", "1", "--yes"])
    with closing_store(db_path) as conn:
        assert SessionDB(conn).get(1) is None


def test_camera_scan_ignores_frames_buffered_during_prompt(db_path, capsys, monkeypatch):
    """The same ticket decoded again right after the prompt is not asked twice."""
    from stocktake import cli
    from stocktake.camera import ScanThrottle

    now = [0.0]

    class FakeCamera:
        def __init__(self, **kwargs):
            pass

        async def codes(self):
            yield "7790002000010"
            # Buffered frames of the same physical scan
            yield "7790002000010"
            yield "7790002000010"

    prompts = []

    def answer(prompt=""):
        prompts.append(prompt)
        now[0] += 3.0  # operator takes a while
        return "2"

    monkeypatch.setattr(cli, "BarcodeCamera", FakeCamera)
    monkeypatch.setattr(cli, "ScanThrottle", lambda ms: ScanThrottle(ms, clock=lambda: now[0]))
    monkeypatch.setattr("builtins.input", answer)

    main(["new", "Salón"])
    main(["scan", "1"])

    assert len(prompts) == 1
    (line,) = _lines(db_path, 1)
    assert line.quantity == 2
