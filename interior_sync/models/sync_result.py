from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .sync_error import SEVERITY_WARNING, SyncError
from .sync_log import SyncDirection, SyncLogEntry

"""Result models for pull / push / preview runs.

RowOutcome is the per-row accumulator: every row pipeline returns exactly one
tagged outcome instead of raising, and the run aggregates outcomes keyed by
(sheet, row_index) so reports do not depend on worker completion order.
"""

__all__ = [
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


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class RowOutcome:
    """Success(record) | Skipped(reason) | Failed(error) for a single row."""
    sheet: str
    row_index: int
    kind: OutcomeKind
    record: Any = None
    action: str | None = None  # created / updated / unchanged / written
    error: SyncError | None = None

    @staticmethod
    def success(sheet: str, row_index: int, record: Any, action: str | None = None) -> RowOutcome:
        return RowOutcome(sheet, row_index, OutcomeKind.SUCCESS, record=record, action=action)

    @staticmethod
    def skipped(sheet: str, row_index: int, error: SyncError, record: Any = None) -> RowOutcome:
        if error.severity != SEVERITY_WARNING:
            error = SyncError(
                row_index=error.row_index,
                message=error.message,
                column=error.column,
                sheet=error.sheet,
                error_type=error.error_type,
                severity=SEVERITY_WARNING,
            )
        return RowOutcome(sheet, row_index, OutcomeKind.SKIPPED, record=record, error=error)

    @staticmethod
    def failed(sheet: str, row_index: int, error: SyncError) -> RowOutcome:
        return RowOutcome(sheet, row_index, OutcomeKind.FAILED, error=error)


@dataclass(frozen=True)
class SheetSyncResult:
    """Per-tab counters of a pull run."""
    sheet: str
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    failed: int = 0

    @property
    def succeeded(self) -> int:
        return self.created + self.updated + self.unchanged


@dataclass(frozen=True)
class SheetPushResult:
    """Per-tab counters of a push run."""
    sheet: str
    written: int = 0
    conflicts: int = 0
    failed: int = 0
    preserved_sheet_rows: int = 0  # sheet-only rows kept as-is


@dataclass(frozen=True)
class PullResult:
    success: bool
    log: SyncLogEntry
    sheets: list[SheetSyncResult] = field(default_factory=list)
    error: str | None = None  # operation-level failure summary


@dataclass(frozen=True)
class PushResult:
    success: bool
    log: SyncLogEntry
    sheets: list[SheetPushResult] = field(default_factory=list)
    error: str | None = None


class DiffKind(str, Enum):
    ADD = "add"
    UPDATE = "update"
    UNCHANGED = "unchanged"
    CONFLICT = "conflict"


@dataclass(frozen=True)
class PreviewRow:
    """Classification of one row in a dry run.

    current is the value on the target side (database for pull, sheet for push),
    incoming the value that the real run would write.
    """
    row_index: int
    sheet: str
    diff_kind: DiffKind
    incoming: dict[str, str]
    current: dict[str, str] | None = None
    changes: tuple[str, ...] = ()  # column labels that differ


@dataclass(frozen=True)
class PreviewResult:
    direction: SyncDirection
    rows: list[PreviewRow]
    summary: dict[DiffKind, int]
    log: SyncLogEntry | None = None

    @staticmethod
    def summarize(rows: list[PreviewRow]) -> dict[DiffKind, int]:
        summary = {kind: 0 for kind in DiffKind}
        for r in rows:
            summary[r.diff_kind] += 1
        return summary
