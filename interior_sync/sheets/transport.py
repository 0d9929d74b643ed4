from __future__ import annotations

import re
import threading
import zipfile
from pathlib import Path
from typing import Protocol

import pandas as pd

from ..errors import TransportError

"""Spreadsheet transport.

The sync core only needs raw row read/write; retry, backoff and authentication
belong to the transport implementation, not the core.

ExcelWorkbookTransport keeps each spreadsheet as <source_directory>/<sheet_id>.xlsx
and uses the tab name as range. Cells are always returned as strings
("" for empty cells) so the parser sees exactly what an editor typed.
"""

__all__ = [
    "SheetTransport",
    "ExcelWorkbookTransport",
]

_SHEET_ID_RE = re.compile(r"^[A-Za-z0-9_\-]+$")


class SheetTransport(Protocol):
    def read_sheet(self, sheet_id: str, range: str) -> list[list[str]]: ...

    def write_sheet(self, sheet_id: str, range: str, rows: list[list[str]]) -> None: ...


class ExcelWorkbookTransport:
    """Workbook-backed transport (pandas + openpyxl)."""

    def __init__(self, source_directory: Path | str) -> None:
        self.source_directory = Path(source_directory)
        self._lock = threading.Lock()  # 同一ブックへの読み書きを直列化

    def workbook_path(self, sheet_id: str) -> Path:
        # 英数字 / _ / - 以外は拒否 (パス traversal 防止)
        if not _SHEET_ID_RE.match(sheet_id or ""):
            raise TransportError(f"invalid sheet id: {sheet_id!r}", error_type="SHEET_READ_ERROR")
        return self.source_directory / f"{sheet_id}.xlsx"

    def read_sheet(self, sheet_id: str, range: str) -> list[list[str]]:
        """Read every row of tab `range`. A missing tab reads as an empty sheet."""
        path = self.workbook_path(sheet_id)
        if not path.exists():
            raise TransportError(f"spreadsheet not found: {path}", error_type="SHEET_READ_ERROR")
        with self._lock:
            try:
                with pd.ExcelFile(path, engine="openpyxl") as xls:
                    if range not in [str(n) for n in xls.sheet_names]:
                        return []
                    df = xls.parse(range, header=None, dtype=str, keep_default_na=False)
            except (OSError, ValueError, KeyError, zipfile.BadZipFile) as e:
                raise TransportError(
                    f"failed reading {path.name}!{range}: {e}", error_type="SHEET_READ_ERROR"
                ) from e
        df = df.fillna("")
        return [[str(v) for v in row] for row in df.values.tolist()]

    def write_sheet(self, sheet_id: str, range: str, rows: list[list[str]]) -> None:
        """Replace tab `range` with `rows` (other tabs are left untouched)."""
        path = self.workbook_path(sheet_id)
        df = pd.DataFrame(rows)
        with self._lock:
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                if path.exists():
                    writer = pd.ExcelWriter(path, engine="openpyxl", mode="a", if_sheet_exists="replace")
                else:
                    writer = pd.ExcelWriter(path, engine="openpyxl", mode="w")
                with writer:
                    df.to_excel(writer, sheet_name=range, header=False, index=False)
            except (OSError, ValueError, KeyError, zipfile.BadZipFile) as e:
                raise TransportError(
                    f"failed writing {path.name}!{range}: {e}", error_type="SHEET_WRITE_ERROR"
                ) from e
