from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from typing import Any

"""SyncError model: one row-attributable problem found during a sync run.

row_index is the 1-based spreadsheet line. -1 is reserved for operation-level
errors (e.g. the sheet could not be read) where no single line is to blame.
"""

__all__ = [
    "SyncError",
    "SEVERITY_ERROR",
    "SEVERITY_WARNING",
]

SEVERITY_ERROR = "error"
SEVERITY_WARNING = "warning"


@dataclass(frozen=True)
class SyncError:
    """Structured, JSON-serializable sync error.

    Attributes:
        row_index: Spreadsheet line (1-based). -1 for operation-level errors
        message: Human readable description
        column: Sheet column label, when the problem is tied to one cell
        sheet: Tab name (DuAn / LayoutIDs)
        error_type: Classification in UPPER_SNAKE_CASE
        severity: "error" or "warning" (skipped rows are warnings)
    """
    row_index: int
    message: str
    column: str | None = None
    sheet: str | None = None
    error_type: str = "SYNC_ERROR"
    severity: str = SEVERITY_ERROR

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_dict(data: dict[str, Any]) -> SyncError:
        return SyncError(
            row_index=int(data["row_index"]),
            message=str(data["message"]),
            column=data.get("column"),
            sheet=data.get("sheet"),
            error_type=data.get("error_type", "SYNC_ERROR"),
            severity=data.get("severity", SEVERITY_ERROR),
        )

    def to_json_line(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)
