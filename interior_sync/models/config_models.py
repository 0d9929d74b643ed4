from __future__ import annotations

from dataclasses import dataclass, field

"""Config dataclasses for the interior sync engine.

Built by interior_sync.config.loader from config/sync.yml after JSON schema
validation; everything downstream (orchestrator, CLI, transports) reads these.
"""

DUAN_SHEET = "DuAn"
LAYOUT_IDS_SHEET = "LayoutIDs"
SHEET_ORDER = (DUAN_SHEET, LAYOUT_IDS_SHEET)  # 親 (DuAn) を先に処理


@dataclass(frozen=True)
class DatabaseConfig:
    """Database connection configuration.

    Used as fallback when environment variables are not set.
    Environment variables take precedence over these values.
    """
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None


@dataclass(frozen=True)
class SheetTabConfig:
    """Where a logical sheet (DuAn / LayoutIDs) lives inside the spreadsheet."""
    sheet_name: str  # DuAn / LayoutIDs
    range: str  # transport range (tab name for workbook transport)


@dataclass(frozen=True)
class SyncConfig:
    """Root configuration object for sync runs."""
    source_directory: str  # workbook directory for ExcelWorkbookTransport
    sheets: dict[str, SheetTabConfig] = field(default_factory=dict)
    workers: int = 4  # bounded row worker pool
    row_timeout_seconds: float = 30.0
    run_timeout_seconds: float = 600.0
    database: DatabaseConfig = field(default_factory=DatabaseConfig)

    def tab(self, sheet_name: str) -> SheetTabConfig:
        # 未設定タブはタブ名そのままを range とする
        return self.sheets.get(sheet_name) or SheetTabConfig(sheet_name=sheet_name, range=sheet_name)
