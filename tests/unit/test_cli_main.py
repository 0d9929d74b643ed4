from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock, patch

import psycopg2
import pytest

from interior_sync.cli.__main__ import main as cli_main
from interior_sync.db.repository import InMemoryRepository
from interior_sync.db.sync_log_store import InMemorySyncLogStore
from interior_sync.sheets.transport import ExcelWorkbookTransport

"""CLI entrypoint tests (mock mode unless stated otherwise)."""

DUAN_HEADER = ["TenDuAn", "ChuDauTu", "DiaChi", "TrangThai"]
LAYOUT_HEADER = ["TenDuAn", "ApartmentType", "DienTich", "Gia"]
VGP = "Vinhomes Grand Park"


@pytest.fixture()
def mock_mode(monkeypatch):
    monkeypatch.setenv("DISABLE_DB_CONNECT", "1")


@pytest.fixture()
def demo_workbook(write_workbook) -> Path:
    return write_workbook("demo", {
        "DuAn": [DUAN_HEADER, [VGP, "Vingroup", "Quận 9", "active"]],
        "LayoutIDs": [LAYOUT_HEADER, [VGP, "1pn", "55", "2.500.000.000"]],
    })


def test_missing_config_is_fatal(temp_workdir: Path, mock_mode, capsys):
    code = cli_main(["pull", "demo"])
    assert code == 1
    assert "ERROR config: config file not found" in capsys.readouterr().out


def test_missing_source_directory_is_fatal(temp_workdir: Path, mock_mode, capsys):
    (temp_workdir / "config" / "sync.yml").write_text("source_directory: ./nope\n", encoding="utf-8")
    code = cli_main(["pull", "demo"])
    assert code == 1
    assert "ERROR directory not found: ./nope" in capsys.readouterr().out


def test_pull_success(write_config, demo_workbook, mock_mode, capsys):
    code = cli_main(["pull", "demo", "--by", "tester"])
    out = capsys.readouterr().out
    assert code == 0
    assert "INFO mode=mock" in out
    assert "INFO DuAn: created=1 updated=0 unchanged=0 skipped=0 failed=0" in out
    assert (
        "SUMMARY direction=pull sheet=demo status=success rows=2 succeeded=2 skipped=0 failed=0 dry_run=false"
        in out
    )


def test_pull_partial_writes_error_log(temp_workdir: Path, write_config, write_workbook, mock_mode, capsys):
    write_workbook("demo", {
        "DuAn": [DUAN_HEADER, [VGP, "Vingroup", "", "active"]],
        "LayoutIDs": [LAYOUT_HEADER, [VGP, "1pn", "55", "1"], [VGP, "apartment", "40", "1"]],
    })
    code = cli_main(["pull", "demo"])
    out = capsys.readouterr().out
    assert code == 2
    assert "WARN LayoutIDs row=3 INVALID_APARTMENT_TYPE" in out
    assert "status=partial" in out
    logs = list((temp_workdir / "logs").glob("sync-errors-*.log"))
    assert len(logs) == 1
    assert "error log written:" in out


def test_pull_missing_workbook_fails(write_config, mock_mode, capsys):
    code = cli_main(["pull", "absent"])
    out = capsys.readouterr().out
    assert code == 2
    assert "ERROR DuAn row=-1 SHEET_READ_ERROR" in out
    assert "status=failed" in out


def test_pull_single_tab(write_config, demo_workbook, mock_mode, capsys):
    code = cli_main(["pull", "demo", "--tab", "DuAn"])
    out = capsys.readouterr().out
    assert code == 0
    assert "LayoutIDs:" not in out
    assert "rows=1 " in out


def test_preview_pull(write_config, demo_workbook, mock_mode, capsys):
    code = cli_main(["preview", "demo", "--direction", "pull"])
    out = capsys.readouterr().out
    assert code == 0
    assert "INFO DuAn row=2 add changes=TenDuAn,ChuDauTu,DiaChi,TrangThai" in out
    assert "INFO LayoutIDs row=2 add" in out
    assert "dry_run=true" in out
    assert out.rstrip().endswith("add=2 update=0 unchanged=0 conflict=0")


def test_push_rewrites_tab_with_canonical_header(temp_workdir: Path, write_config, demo_workbook, mock_mode, capsys):
    code = cli_main(["push", "demo", "--tab", "DuAn"])
    out = capsys.readouterr().out
    assert code == 0
    # mock モードの DB は空: シートの行はそのまま残る
    assert "DuAn: written=0 conflicts=0 failed=0 preserved=1" in out
    rows = ExcelWorkbookTransport(temp_workdir / "sheets").read_sheet("demo", "DuAn")
    assert rows[0] == ["TenDuAn", "ChuDauTu", "DiaChi", "TrangThai", "MaDuAn", "SoTangMax", "SoTrucMax"]
    assert rows[1][:4] == [VGP, "Vingroup", "Quận 9", "active"]


def test_logs_command(write_config, mock_mode, capsys):
    code = cli_main(["logs", "--direction", "pull", "--limit", "5"])
    out = capsys.readouterr().out
    assert code == 0
    assert "INFO page=1/0 total=0" in out


def test_debug_flag(write_config, demo_workbook, mock_mode, capsys):
    cli_main(["--debug", "pull", "demo"])
    out = capsys.readouterr().out
    assert "DEBUG debug mode enabled" in out
    assert "DEBUG DB connect disabled via DISABLE_DB_CONNECT=1 -> mock mode" in out


def test_config_option(temp_workdir: Path, demo_workbook, mock_mode, capsys):
    alt = temp_workdir / "alt.yml"
    alt.write_text("source_directory: ./sheets\nworkers: 1\n", encoding="utf-8")
    assert cli_main(["--config", str(alt), "pull", "demo"]) == 0


def test_env_file_is_loaded(temp_workdir: Path, write_config, demo_workbook, monkeypatch, capsys):
    monkeypatch.setenv("DISABLE_DB_CONNECT", "0")
    (temp_workdir / ".env").write_text("DISABLE_DB_CONNECT=1\n", encoding="utf-8")
    with patch("interior_sync.cli.__main__.create_pool") as create_pool:
        code = cli_main(["pull", "demo"])
    assert code == 0
    create_pool.assert_not_called()
    assert "INFO mode=mock" in capsys.readouterr().out


def test_db_failure_falls_back_to_mock(write_config, demo_workbook, monkeypatch, capsys):
    monkeypatch.delenv("DISABLE_DB_CONNECT", raising=False)
    monkeypatch.delenv("SUPPRESS_DB_WARNING", raising=False)
    with patch("interior_sync.cli.__main__.create_pool", side_effect=psycopg2.OperationalError("could not connect")):
        code = cli_main(["pull", "demo"])
    out = capsys.readouterr().out
    assert code == 0
    assert "INFO DB connection failed -> fallback to mock mode: could not connect" in out
    assert "INFO mode=mock" in out


def test_live_mode_closes_pool(write_config, demo_workbook, monkeypatch, capsys):
    monkeypatch.delenv("DISABLE_DB_CONNECT", raising=False)
    pool = MagicMock()
    with patch("interior_sync.cli.__main__.create_pool", return_value=pool), \
            patch("interior_sync.cli.__main__.ensure_schema") as ensure_schema, \
            patch("interior_sync.cli.__main__.PostgresRepository", return_value=InMemoryRepository()), \
            patch("interior_sync.cli.__main__.PostgresSyncLogStore", return_value=InMemorySyncLogStore()):
        code = cli_main(["pull", "demo"])
    assert code == 0
    ensure_schema.assert_called_once_with(pool)
    pool.closeall.assert_called_once()
    assert "INFO mode=live" in capsys.readouterr().out


def test_unknown_tab_rejected_by_parser(write_config, mock_mode):
    with pytest.raises(SystemExit) as exc:
        cli_main(["pull", "demo", "--tab", "Units"])
    assert exc.value.code == 2
