from __future__ import annotations

from .models.sync_error import SEVERITY_ERROR, SEVERITY_WARNING, SyncError

"""Error taxonomy of the sync engine.

Row-scoped (caught at the row boundary, converted to SyncError):
    ParseError, MappingError, PersistenceError, ConflictError
Operation-scoped (abort the remaining batch, finalize the run):
    TransportError
"""

__all__ = [
    "SyncEngineError",
    "ParseError",
    "MappingError",
    "TransportError",
    "PersistenceError",
    "ConflictError",
]


class SyncEngineError(Exception):
    """Base class. row_index=-1 means the error is not tied to a sheet line."""

    error_type = "SYNC_ERROR"
    severity = SEVERITY_ERROR

    def __init__(
        self,
        message: str,
        *,
        row_index: int = -1,
        column: str | None = None,
        sheet: str | None = None,
        error_type: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.row_index = row_index
        self.column = column
        self.sheet = sheet
        if error_type is not None:
            self.error_type = error_type

    def to_sync_error(self, sheet: str | None = None) -> SyncError:
        return SyncError(
            row_index=self.row_index,
            message=self.message,
            column=self.column,
            sheet=sheet or self.sheet,
            error_type=self.error_type,
            severity=self.severity,
        )


class ParseError(SyncEngineError):
    """Malformed or missing required cell value."""
    error_type = "PARSE_ERROR"


class MappingError(SyncEngineError):
    """Apartment type label not in the alias table (row skipped)."""
    error_type = "INVALID_APARTMENT_TYPE"
    severity = SEVERITY_WARNING


class TransportError(SyncEngineError):
    """Spreadsheet unreachable, rate limited or rejected a write."""
    error_type = "SHEET_READ_ERROR"


class PersistenceError(SyncEngineError):
    """Database write/read failure for a single row."""
    error_type = "PERSISTENCE_ERROR"


class ConflictError(SyncEngineError):
    """Both sheet and database changed since the last recorded sync."""
    error_type = "CONFLICT"
    severity = SEVERITY_WARNING
