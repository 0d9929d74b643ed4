# Shared pytest fixtures
from __future__ import annotations

import tempfile
import threading
from pathlib import Path

import pandas as pd
import pytest

from interior_sync.db.repository import InMemoryRepository
from interior_sync.db.sync_log_store import InMemorySyncLogStore
from interior_sync.errors import TransportError
from interior_sync.logging.error_log import ErrorLogBuffer
from interior_sync.logging.init import reset_logging
from interior_sync.models.config_models import SheetTabConfig, SyncConfig
from interior_sync.services.orchestrator import SyncOrchestrator

DUAN_HEADER = ["TenDuAn", "ChuDauTu", "DiaChi", "TrangThai"]
LAYOUT_HEADER = ["TenDuAn", "ApartmentType", "DienTich", "Gia"]


class FakeTransport:
    """In-memory SheetTransport: {(sheet_id, range): rows}."""

    def __init__(self) -> None:
        self.sheets: dict[tuple[str, str], list[list[str]]] = {}
        self.writes: list[tuple[str, str, list[list[str]]]] = []
        self.fail_read: set[str] = set()  # range names whose read raises
        self.fail_write: set[str] = set()
        self._lock = threading.Lock()

    def set_rows(self, sheet_id: str, range: str, rows: list[list[str]]) -> None:
        self.sheets[(sheet_id, range)] = [list(r) for r in rows]

    def rows(self, sheet_id: str, range: str) -> list[list[str]]:
        return self.sheets.get((sheet_id, range), [])

    def read_sheet(self, sheet_id: str, range: str) -> list[list[str]]:
        if range in self.fail_read:
            raise TransportError(f"rate limited reading {range}", error_type="SHEET_READ_ERROR")
        with self._lock:
            return [list(r) for r in self.sheets.get((sheet_id, range), [])]

    def write_sheet(self, sheet_id: str, range: str, rows: list[list[str]]) -> None:
        if range in self.fail_write:
            raise TransportError(f"write rejected for {range}", error_type="SHEET_WRITE_ERROR")
        with self._lock:
            self.sheets[(sheet_id, range)] = [list(r) for r in rows]
            self.writes.append((sheet_id, range, [list(r) for r in rows]))


@pytest.fixture(autouse=True)
def _fresh_logging():
    reset_logging()
    yield
    reset_logging()


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "sheets").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        yield p


@pytest.fixture()
def sample_config_yaml() -> str:
    return """source_directory: ./sheets
sheets:
  DuAn:
    range: DuAn
  LayoutIDs:
    range: LayoutIDs
workers: 4
row_timeout_seconds: 10
run_timeout_seconds: 60
database:
  host: localhost
  port: 5432
  user: appuser
  password: secret
  database: interior
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "sync.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


@pytest.fixture()
def write_workbook(temp_workdir: Path):
    """Write sheets/<sheet_id>.xlsx with the given {tab: rows} (no pandas header)."""

    def _write(sheet_id: str, tabs: dict[str, list[list[str]]]) -> Path:
        path = temp_workdir / "sheets" / f"{sheet_id}.xlsx"
        with pd.ExcelWriter(path, engine="openpyxl") as writer:
            for name, rows in tabs.items():
                pd.DataFrame(rows).to_excel(writer, sheet_name=name, header=False, index=False)
        return path

    return _write


@pytest.fixture()
def sync_config() -> SyncConfig:
    return SyncConfig(
        source_directory=".",
        sheets={
            "DuAn": SheetTabConfig("DuAn", "DuAn"),
            "LayoutIDs": SheetTabConfig("LayoutIDs", "LayoutIDs"),
        },
        workers=4,
        row_timeout_seconds=10.0,
        run_timeout_seconds=60.0,
    )


@pytest.fixture()
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture()
def repository() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture()
def log_store() -> InMemorySyncLogStore:
    return InMemorySyncLogStore()


@pytest.fixture()
def error_log(tmp_path: Path) -> ErrorLogBuffer:
    return ErrorLogBuffer(logs_dir=tmp_path / "logs")


@pytest.fixture()
def orchestrator(transport, repository, log_store, sync_config, error_log) -> SyncOrchestrator:
    return SyncOrchestrator(transport, repository, log_store, sync_config, error_log=error_log, poll_interval=0.01)


@pytest.fixture()
def seeded_sheet(transport: FakeTransport) -> str:
    """Sheet "demo" with two projects and three layouts (header rows included)."""
    transport.set_rows("demo", "DuAn", [
        DUAN_HEADER,
        ["Vinhomes Grand Park", "Vingroup", "Quận 9, TP.HCM", "active"],
        ["Masteri Thảo Điền", "Masterise Homes", "Quận 2, TP.HCM", "1"],
    ])
    transport.set_rows("demo", "LayoutIDs", [
        LAYOUT_HEADER,
        ["Vinhomes Grand Park", "1pn", "55", "2.500.000.000"],
        ["Vinhomes Grand Park", " STUDIO ", "28", "1,800,000,000"],
        ["Masteri Thảo Điền", "2PN", "72,5", "4500000000"],
    ])
    return "demo"
