from __future__ import annotations

import math
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from .sync_error import SyncError

"""SyncLogEntry domain model and its status/direction enums.

State transitions: RUNNING -> (SUCCESS | PARTIAL | FAILED)

An entry is created RUNNING when a run starts, patched only by the run that owns
it and frozen once it reaches a terminal status. Entries are never deleted.
"""

__all__ = [
    "SyncDirection",
    "SyncLogStatus",
    "SyncLogEntry",
    "Page",
]


class SyncDirection(str, Enum):
    PULL = "pull"  # sheet -> database
    PUSH = "push"  # database -> sheet


class SyncLogStatus(str, Enum):
    RUNNING = "running"
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not SyncLogStatus.RUNNING


@dataclass(frozen=True)
class SyncLogEntry:
    """Audit record for one sync invocation (pull, push or preview)."""
    id: str
    direction: SyncDirection
    status: SyncLogStatus
    sheet_id: str
    started_at: datetime
    completed_at: datetime | None = None
    rows_total: int = 0
    rows_succeeded: int = 0
    rows_skipped: int = 0
    rows_failed: int = 0
    errors: tuple[SyncError, ...] = ()
    dry_run: bool = False  # preview run (nothing committed)
    triggered_by: str | None = None

    @staticmethod
    def start(
        direction: SyncDirection,
        sheet_id: str,
        *,
        dry_run: bool = False,
        triggered_by: str | None = None,
    ) -> SyncLogEntry:
        return SyncLogEntry(
            id=str(uuid.uuid4()),
            direction=direction,
            status=SyncLogStatus.RUNNING,
            sheet_id=sheet_id,
            started_at=datetime.now(UTC),
            dry_run=dry_run,
            triggered_by=triggered_by,
        )

    @property
    def counts_balanced(self) -> bool:
        return self.rows_total == self.rows_succeeded + self.rows_skipped + self.rows_failed

    @property
    def elapsed_seconds(self) -> float:
        if self.completed_at is None:
            return 0.0
        return (self.completed_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "direction": self.direction.value,
            "status": self.status.value,
            "sheet_id": self.sheet_id,
            "started_at": self.started_at.isoformat().replace("+00:00", "Z"),
            "completed_at": (
                self.completed_at.isoformat().replace("+00:00", "Z") if self.completed_at else None
            ),
            "rows_total": self.rows_total,
            "rows_succeeded": self.rows_succeeded,
            "rows_skipped": self.rows_skipped,
            "rows_failed": self.rows_failed,
            "errors": [e.to_dict() for e in self.errors],
            "dry_run": self.dry_run,
            "triggered_by": self.triggered_by,
        }


@dataclass(frozen=True)
class Page:
    """One page of SyncLogEntry results (newest first)."""
    items: list[SyncLogEntry] = field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 20

    @property
    def total_pages(self) -> int:
        if self.limit <= 0:
            return 0
        return math.ceil(self.total / self.limit)
