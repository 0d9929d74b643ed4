from __future__ import annotations

import json
import threading
from collections.abc import Mapping
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any, Protocol

import psycopg2
from psycopg2.extras import Json
from psycopg2.pool import ThreadedConnectionPool

from ..models.sync_error import SyncError
from ..models.sync_log import Page, SyncDirection, SyncLogEntry, SyncLogStatus
from .postgres import pooled_cursor

"""Append-only audit log of sync runs.

Contract:
- append(entry): 新規 RUNNING エントリを追加
- update(id, patch): 自分の run のみが patch する。終端状態 (SUCCESS/PARTIAL/FAILED)
  になったエントリは以後変更不可。終端 patch では
  rows_total == rows_succeeded + rows_skipped + rows_failed を必須とする。
- list(...): started_at 降順、page は 1 始まり、limit 既定 20 / 上限 100。
- エントリは削除しない。
"""

__all__ = [
    "SyncLogError",
    "SyncLogStore",
    "InMemorySyncLogStore",
    "PostgresSyncLogStore",
    "apply_patch",
    "DEFAULT_PAGE_LIMIT",
    "MAX_PAGE_LIMIT",
]

DEFAULT_PAGE_LIMIT = 20
MAX_PAGE_LIMIT = 100

_PATCHABLE_FIELDS = {
    "status",
    "completed_at",
    "rows_total",
    "rows_succeeded",
    "rows_skipped",
    "rows_failed",
    "errors",
}


class SyncLogError(Exception):
    pass


class SyncLogStore(Protocol):
    def append(self, entry: SyncLogEntry) -> SyncLogEntry: ...

    def update(self, entry_id: str, patch: Mapping[str, Any]) -> SyncLogEntry: ...

    def get(self, entry_id: str) -> SyncLogEntry | None: ...

    def list(
        self,
        *,
        direction: SyncDirection | None = None,
        status: SyncLogStatus | None = None,
        sheet_id: str | None = None,
        page: int = 1,
        limit: int = DEFAULT_PAGE_LIMIT,
    ) -> Page: ...


def _clamp_paging(page: int, limit: int) -> tuple[int, int]:
    return max(1, int(page)), min(MAX_PAGE_LIMIT, max(1, int(limit)))


def apply_patch(entry: SyncLogEntry, patch: Mapping[str, Any]) -> SyncLogEntry:
    """Return `entry` with `patch` applied, enforcing the lifecycle rules.

    Raises:
        SyncLogError: entry already terminal, unknown field, or unbalanced counts
    """
    if entry.status.is_terminal:
        raise SyncLogError(f"sync log {entry.id} is already {entry.status.value}")
    unknown = set(patch) - _PATCHABLE_FIELDS
    if unknown:
        raise SyncLogError(f"fields not patchable: {', '.join(sorted(unknown))}")
    values = dict(patch)
    if "status" in values:
        values["status"] = SyncLogStatus(values["status"])
    if "errors" in values:
        values["errors"] = tuple(values["errors"])
    updated = replace(entry, **values)
    if updated.status.is_terminal:
        if not updated.counts_balanced:
            raise SyncLogError(
                f"unbalanced counts for {entry.id}: total={updated.rows_total} "
                f"succeeded={updated.rows_succeeded} skipped={updated.rows_skipped} "
                f"failed={updated.rows_failed}"
            )
        if updated.completed_at is None:
            updated = replace(updated, completed_at=datetime.now(UTC))
    return updated


class InMemorySyncLogStore:
    """Process-local store (mock mode / tests)."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[str, SyncLogEntry] = {}

    def append(self, entry: SyncLogEntry) -> SyncLogEntry:
        with self._lock:
            if entry.id in self._entries:
                raise SyncLogError(f"duplicate sync log id: {entry.id}")
            self._entries[entry.id] = entry
        return entry

    def update(self, entry_id: str, patch: Mapping[str, Any]) -> SyncLogEntry:
        with self._lock:
            entry = self._entries.get(entry_id)
            if entry is None:
                raise SyncLogError(f"sync log not found: {entry_id}")
            updated = apply_patch(entry, patch)
            self._entries[entry_id] = updated
        return updated

    def get(self, entry_id: str) -> SyncLogEntry | None:
        with self._lock:
            return self._entries.get(entry_id)

    def list(
        self,
        *,
        direction: SyncDirection | None = None,
        status: SyncLogStatus | None = None,
        sheet_id: str | None = None,
        page: int = 1,
        limit: int = DEFAULT_PAGE_LIMIT,
    ) -> Page:
        page, limit = _clamp_paging(page, limit)
        with self._lock:
            entries = list(self._entries.values())
        if direction is not None:
            entries = [e for e in entries if e.direction == direction]
        if status is not None:
            entries = [e for e in entries if e.status == status]
        if sheet_id is not None:
            entries = [e for e in entries if e.sheet_id == sheet_id]
        entries.sort(key=lambda e: e.started_at, reverse=True)
        start = (page - 1) * limit
        return Page(items=entries[start : start + limit], total=len(entries), page=page, limit=limit)


_LOG_COLUMNS = (
    "id, direction, status, sheet_id, started_at, completed_at, rows_total, rows_succeeded, "
    "rows_skipped, rows_failed, errors, dry_run, triggered_by"
)


def _entry_from_row(row: tuple) -> SyncLogEntry:
    (
        entry_id,
        direction,
        status,
        sheet_id,
        started_at,
        completed_at,
        rows_total,
        rows_succeeded,
        rows_skipped,
        rows_failed,
        errors,
        dry_run,
        triggered_by,
    ) = row
    if isinstance(errors, str):
        errors = json.loads(errors)
    return SyncLogEntry(
        id=entry_id,
        direction=SyncDirection(direction),
        status=SyncLogStatus(status),
        sheet_id=sheet_id,
        started_at=started_at,
        completed_at=completed_at,
        rows_total=rows_total,
        rows_succeeded=rows_succeeded,
        rows_skipped=rows_skipped,
        rows_failed=rows_failed,
        errors=tuple(SyncError.from_dict(e) for e in (errors or [])),
        dry_run=bool(dry_run),
        triggered_by=triggered_by,
    )


class PostgresSyncLogStore:
    """interior_sync_logs table backed store."""

    def __init__(self, pool: ThreadedConnectionPool) -> None:
        self._pool = pool

    def append(self, entry: SyncLogEntry) -> SyncLogEntry:
        try:
            with pooled_cursor(self._pool) as cur:
                cur.execute(
                    f"INSERT INTO interior_sync_logs ({_LOG_COLUMNS}) "
                    "VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)",
                    (
                        entry.id,
                        entry.direction.value,
                        entry.status.value,
                        entry.sheet_id,
                        entry.started_at,
                        entry.completed_at,
                        entry.rows_total,
                        entry.rows_succeeded,
                        entry.rows_skipped,
                        entry.rows_failed,
                        Json([e.to_dict() for e in entry.errors]),
                        entry.dry_run,
                        entry.triggered_by,
                    ),
                )
        except psycopg2.Error as e:
            raise SyncLogError(f"append failed: {e}") from e
        return entry

    def update(self, entry_id: str, patch: Mapping[str, Any]) -> SyncLogEntry:
        try:
            with pooled_cursor(self._pool) as cur:
                cur.execute(
                    f"SELECT {_LOG_COLUMNS} FROM interior_sync_logs WHERE id = %s FOR UPDATE",
                    (entry_id,),
                )
                row = cur.fetchone()
                if row is None:
                    raise SyncLogError(f"sync log not found: {entry_id}")
                updated = apply_patch(_entry_from_row(row), patch)
                cur.execute(
                    "UPDATE interior_sync_logs SET status = %s, completed_at = %s, rows_total = %s, "
                    "rows_succeeded = %s, rows_skipped = %s, rows_failed = %s, errors = %s "
                    "WHERE id = %s",
                    (
                        updated.status.value,
                        updated.completed_at,
                        updated.rows_total,
                        updated.rows_succeeded,
                        updated.rows_skipped,
                        updated.rows_failed,
                        Json([e.to_dict() for e in updated.errors]),
                        entry_id,
                    ),
                )
        except psycopg2.Error as e:
            raise SyncLogError(f"update failed: {e}") from e
        return updated

    def get(self, entry_id: str) -> SyncLogEntry | None:
        try:
            with pooled_cursor(self._pool) as cur:
                cur.execute(f"SELECT {_LOG_COLUMNS} FROM interior_sync_logs WHERE id = %s", (entry_id,))
                row = cur.fetchone()
        except psycopg2.Error as e:
            raise SyncLogError(f"get failed: {e}") from e
        return _entry_from_row(row) if row else None

    def list(
        self,
        *,
        direction: SyncDirection | None = None,
        status: SyncLogStatus | None = None,
        sheet_id: str | None = None,
        page: int = 1,
        limit: int = DEFAULT_PAGE_LIMIT,
    ) -> Page:
        page, limit = _clamp_paging(page, limit)
        clauses: list[str] = []
        params: list[Any] = []
        if direction is not None:
            clauses.append("direction = %s")
            params.append(SyncDirection(direction).value)
        if status is not None:
            clauses.append("status = %s")
            params.append(SyncLogStatus(status).value)
        if sheet_id is not None:
            clauses.append("sheet_id = %s")
            params.append(sheet_id)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        try:
            with pooled_cursor(self._pool) as cur:
                cur.execute(f"SELECT COUNT(*) FROM interior_sync_logs{where}", params)
                total = cur.fetchone()[0]
                cur.execute(
                    f"SELECT {_LOG_COLUMNS} FROM interior_sync_logs{where} "
                    "ORDER BY started_at DESC LIMIT %s OFFSET %s",
                    [*params, limit, (page - 1) * limit],
                )
                rows = cur.fetchall()
        except psycopg2.Error as e:
            raise SyncLogError(f"list failed: {e}") from e
        return Page(items=[_entry_from_row(r) for r in rows], total=int(total), page=page, limit=limit)
