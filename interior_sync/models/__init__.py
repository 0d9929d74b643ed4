"""Domain models for the interior sheet sync engine.

This package contains the dataclasses and enums passed between the parser,
orchestrator, persistence layer and audit log.
"""

from .config_models import DatabaseConfig, SheetTabConfig, SyncConfig
from .records import LayoutRecord, ProjectRecord, UpsertAction
from .sheet_row import ParsedDuAnData, ParsedLayoutData, SheetRow
from .sync_error import SyncError
from .sync_log import Page, SyncDirection, SyncLogEntry, SyncLogStatus
from .sync_result import (
    DiffKind,
    OutcomeKind,
    PreviewResult,
    PreviewRow,
    PullResult,
    PushResult,
    RowOutcome,
    SheetPushResult,
    SheetSyncResult,
)

__all__ = [
    # Configuration models
    "DatabaseConfig",
    "SheetTabConfig",
    "SyncConfig",
    # Sheet / persistence models
    "SheetRow",
    "ParsedDuAnData",
    "ParsedLayoutData",
    "ProjectRecord",
    "LayoutRecord",
    "UpsertAction",
    # Run models
    "SyncError",
    "SyncDirection",
    "SyncLogStatus",
    "SyncLogEntry",
    "Page",
    "OutcomeKind",
    "RowOutcome",
    "SheetSyncResult",
    "SheetPushResult",
    "PullResult",
    "PushResult",
    "DiffKind",
    "PreviewRow",
    "PreviewResult",
]
