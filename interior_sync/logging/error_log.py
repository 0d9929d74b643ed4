from __future__ import annotations

import threading
from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path

from ..models.sync_error import SyncError

"""Sync error log buffering.

- JSON Lines 固定スキーマ (SyncError.to_dict のキーのみ)
- 起動ごとに `logs/sync-errors-YYYYMMDD-HHMMSS.log` (UTC) を生成 (エラーがある時のみ)
- 実行中はメモリに溜め、CLI 終了時に flush で一括追記
"""

__all__ = [
    "ErrorLogBuffer",
    "LOGS_DIR",
]

LOGS_DIR = Path("./logs")
TIMESTAMP_FMT = "%Y%m%d-%H%M%S"


class ErrorLogBuffer:
    """In-memory buffer of SyncError records. flush() writes JSON Lines."""

    def __init__(self, logs_dir: Path | None = None) -> None:
        self._logs_dir = logs_dir or LOGS_DIR
        self._records: list[SyncError] = []
        self._file_path: Path | None = None
        self._lock = threading.Lock()

    @property
    def file_path(self) -> Path:
        if self._file_path is None:
            self._logs_dir.mkdir(parents=True, exist_ok=True)
            stamp = datetime.now(UTC).strftime(TIMESTAMP_FMT)
            self._file_path = self._logs_dir / f"sync-errors-{stamp}.log"
        return self._file_path

    def append(self, record: SyncError) -> None:
        with self._lock:
            self._records.append(record)

    def extend(self, records: Iterable[SyncError]) -> None:
        with self._lock:
            self._records.extend(records)

    def __len__(self) -> int:
        return len(self._records)

    def flush(self) -> Path | None:
        """Append buffered records to the log file. Returns None when empty."""
        with self._lock:
            if not self._records:
                return None
            fp = self.file_path
            with fp.open("a", encoding="utf-8") as f:
                for r in self._records:
                    f.write(r.to_json_line() + "\n")
            self._records.clear()
        return fp
