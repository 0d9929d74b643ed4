from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any

from ..db.repository import ProjectRepository
from ..db.sync_log_store import SyncLogStore
from ..errors import ConflictError, MappingError, SyncEngineError, TransportError
from ..logging.error_log import ErrorLogBuffer
from ..mapping.slug import unique_slug
from ..models.config_models import DUAN_SHEET, LAYOUT_IDS_SHEET, SHEET_ORDER, SyncConfig
from ..models.records import LayoutRecord, ProjectRecord
from ..models.sheet_row import ParsedDuAnData, ParsedLayoutData, SheetRow
from ..models.sync_error import SEVERITY_WARNING, SyncError
from ..models.sync_log import SyncDirection, SyncLogEntry, SyncLogStatus
from ..models.sync_result import (
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
from ..sheets.columns import (
    cells_to_row,
    columns_for,
    fingerprint,
    labels_for,
    layout_cells,
    project_cells,
)
from ..sheets.parser import parse_duan_sheet, parse_layout_ids_sheet, resolve_columns
from ..sheets.transport import SheetTransport
from .diff import classify
from .locks import RunLockRegistry
from .progress import RowProgressTracker

logger = logging.getLogger(__name__)

"""Sync orchestration: pull (sheet -> DB), push (DB -> sheet) and preview.

全操作は同じ行パイプライン (parse -> map -> validate -> act) から構成される。

- 1 呼び出し = 1 SyncLogEntry (RUNNING で開始し、戻る前に終端状態へ)
- 行は有界スレッドプールで並列処理。各行は RowOutcome を返し例外を外に出さない
- 集計は (タブ順, row_index) でソートするため完了順に依存しない
- 行の外で起きたエラー (TransportError 等) だけが run 全体を止める (行スコープのエラーは兄弟行に影響しない)
- 行タイムアウト超過 -> ROW_TIMEOUT (書き込み自体は後から成立しうる: at-least-once)
- run タイムアウト超過 -> 未完了行を RUN_TIMEOUT として打ち切り、コミット済みの行はそのまま
- 同一 (sheet_id, direction) の run は RunLockRegistry で直列化
"""

__all__ = [
    "SyncOrchestrator",
    "terminal_status",
]

POLL_INTERVAL_SECONDS = 0.05


@dataclass
class _RunState:
    """Mutable accumulator of one run (owned by the calling thread)."""
    deadline: float
    outcomes: list[RowOutcome] = field(default_factory=list)
    op_errors: list[SyncError] = field(default_factory=list)
    timed_out: bool = False

    @property
    def stopped(self) -> bool:
        return self.timed_out or bool(self.op_errors)

    def abort(self, exc: SyncEngineError, sheet: str) -> None:
        err = exc.to_sync_error(sheet=sheet)
        self.op_errors.append(replace(err, row_index=-1))
        logger.error("sheet=%s aborted: %s", sheet, exc.message)


@dataclass
class _PushPlan:
    sheet: str
    rows: list[list[str]]  # header 付きの書き込み内容
    writes: list[tuple[int, Any, dict[str, str]]]  # (row_index, record, cells)
    conflicts: list[RowOutcome]
    preview_rows: list[PreviewRow]
    preserved: int


def terminal_status(succeeded: int, skipped: int, failed: int, *, aborted: bool = False) -> SyncLogStatus:
    """Terminal status of a run from its row counters.

    aborted: an operation-level error (transport) stopped the run.
    """
    if aborted:
        return SyncLogStatus.PARTIAL if succeeded else SyncLogStatus.FAILED
    if failed == 0 and skipped == 0:
        return SyncLogStatus.SUCCESS
    if succeeded:
        return SyncLogStatus.PARTIAL
    return SyncLogStatus.FAILED


def _sheet_order(sheet: str | None) -> int:
    return SHEET_ORDER.index(sheet) if sheet in SHEET_ORDER else len(SHEET_ORDER)


def _ordered_tabs(tabs: Iterable[str]) -> list[str]:
    requested = list(dict.fromkeys(tabs))
    unknown = [t for t in requested if t not in SHEET_ORDER]
    if unknown:
        raise ValueError(f"unknown sheet tab(s): {', '.join(unknown)}")
    return [t for t in SHEET_ORDER if t in requested]


def _row_error(exc: SyncEngineError, sheet: str, row_index: int) -> SyncError:
    return replace(exc.to_sync_error(sheet=sheet), row_index=row_index)


def _unexpected(exc: Exception, sheet: str) -> SyncEngineError:
    """Operation-level error outside the SyncEngineError taxonomy (run is finalized as aborted)."""
    logger.exception("sheet=%s unexpected error", sheet)
    return SyncEngineError(f"unexpected error: {exc!r}", sheet=sheet, error_type="UNEXPECTED_ERROR")


def _split_duplicates(items: Sequence[Any], key: Callable[[Any], Any]) -> tuple[list[Any], list[Any]]:
    """First occurrence (sheet order) wins. key() returning None never collides."""
    seen: set[Any] = set()
    unique: list[Any] = []
    dupes: list[Any] = []
    for item in items:
        k = key(item)
        if k is not None and k in seen:
            dupes.append(item)
            continue
        if k is not None:
            seen.add(k)
        unique.append(item)
    return unique, dupes


def _layout_key(p: ParsedLayoutData) -> tuple[str, str] | None:
    return p.natural_key if p.layout_code else None


class SyncOrchestrator:
    """Runs pull / push / preview against injected collaborators.

    Args:
        transport: SheetTransport (read_sheet / write_sheet)
        repository: ProjectRepository (natural key upserts, one transaction per row)
        log_store: SyncLogStore receiving exactly one entry per invocation
        config: SyncConfig (worker count, timeouts, tab ranges)
        error_log: optional ErrorLogBuffer collecting every SyncError of a run
        locks: RunLockRegistry shared by orchestrators that touch the same sheets
    """

    def __init__(
        self,
        transport: SheetTransport,
        repository: ProjectRepository,
        log_store: SyncLogStore,
        config: SyncConfig,
        *,
        error_log: ErrorLogBuffer | None = None,
        locks: RunLockRegistry | None = None,
        poll_interval: float = POLL_INTERVAL_SECONDS,
    ) -> None:
        self.transport = transport
        self.repository = repository
        self.log_store = log_store
        self.config = config
        self.error_log = error_log
        self.locks = locks or RunLockRegistry()
        self._poll_interval = poll_interval
        self._slug_lock = threading.Lock()  # 新規 slug の採番と INSERT を一体化

    # ------------------------------------------------------------------
    # public operations
    # ------------------------------------------------------------------
    def pull_from_sheet(
        self,
        sheet_id: str,
        tabs: Iterable[str] = SHEET_ORDER,
        triggered_by: str | None = None,
    ) -> PullResult:
        """Sheet -> database. Upserts every valid row by natural key.

        PULL never deletes database rows missing from the sheet.
        """
        tab_names = _ordered_tabs(tabs)
        with self.locks.hold(sheet_id, SyncDirection.PULL):
            entry = self._start(SyncDirection.PULL, sheet_id, dry_run=False, triggered_by=triggered_by)
            state = self._new_state()
            for tab in tab_names:
                if state.stopped:
                    break
                try:
                    rows = self._read_tab(sheet_id, tab)
                    if tab == DUAN_SHEET:
                        self._pull_projects(state, rows)
                    else:
                        self._pull_layouts(state, rows)
                except SyncEngineError as e:
                    state.abort(e, tab)
                    break
                except Exception as e:
                    state.abort(_unexpected(e, tab), tab)
                    break
            final = self._finalize(entry, state)

        return PullResult(
            success=final.status is not SyncLogStatus.FAILED,
            log=final,
            sheets=[self._pull_counters(tab, state.outcomes) for tab in tab_names],
            error=state.op_errors[0].message if state.op_errors else None,
        )

    def push_to_sheet(
        self,
        sheet_id: str,
        tabs: Iterable[str] = SHEET_ORDER,
        triggered_by: str | None = None,
    ) -> PushResult:
        """Database -> sheet.

        Each tab is rewritten in one write_sheet call: matched rows take the
        database values, CONFLICT rows keep the sheet's row, sheet-only rows are
        kept as they are and database-only records are appended.
        """
        tab_names = _ordered_tabs(tabs)
        plans: dict[str, _PushPlan] = {}
        with self.locks.hold(sheet_id, SyncDirection.PUSH):
            entry = self._start(SyncDirection.PUSH, sheet_id, dry_run=False, triggered_by=triggered_by)
            state = self._new_state()
            for tab in tab_names:
                if state.stopped:
                    break
                try:
                    plan = self._plan_push(sheet_id, tab)
                    plans[tab] = plan
                    state.outcomes.extend(plan.conflicts)
                    self._write_tab(sheet_id, tab, plan.rows)
                except SyncEngineError as e:
                    state.abort(e, tab)
                    break
                except Exception as e:
                    state.abort(_unexpected(e, tab), tab)
                    break
                logger.info(
                    "push sheet=%s tab=%s rows=%d conflicts=%d preserved=%d",
                    sheet_id, tab, len(plan.writes), len(plan.conflicts), plan.preserved,
                )
                self._run_rows(
                    state,
                    tab,
                    [(row_index, (row_index, record, cells)) for row_index, record, cells in plan.writes],
                    self._mark_synced_row(tab),
                    label="push",
                )
            final = self._finalize(entry, state)

        return PushResult(
            success=final.status is not SyncLogStatus.FAILED,
            log=final,
            sheets=[self._push_counters(tab, state.outcomes, plans.get(tab)) for tab in tab_names],
            error=state.op_errors[0].message if state.op_errors else None,
        )

    def preview_sync(
        self,
        sheet_id: str,
        direction: SyncDirection | str,
        tabs: Iterable[str] = SHEET_ORDER,
        triggered_by: str | None = None,
    ) -> PreviewResult:
        """Dry run of pull or push. Writes nothing except its own dry_run log entry."""
        direction = SyncDirection(direction)
        tab_names = _ordered_tabs(tabs)
        with self.locks.hold(sheet_id, direction):
            entry = self._start(direction, sheet_id, dry_run=True, triggered_by=triggered_by)
            state = self._new_state()
            pending_projects: set[str] = set()
            for tab in tab_names:
                if state.stopped:
                    break
                try:
                    if direction is SyncDirection.PULL:
                        rows = self._read_tab(sheet_id, tab)
                        if tab == DUAN_SHEET:
                            self._preview_pull_projects(state, rows)
                            pending_projects = {
                                o.record.incoming["TenDuAn"]
                                for o in state.outcomes
                                if o.sheet == DUAN_SHEET and isinstance(o.record, PreviewRow)
                            }
                        else:
                            self._preview_pull_layouts(state, rows, pending_projects)
                    else:
                        plan = self._plan_push(sheet_id, tab)
                        state.outcomes.extend(plan.conflicts)
                        state.outcomes.extend(
                            RowOutcome.success(tab, r.row_index, r, r.diff_kind.value)
                            for r in plan.preview_rows
                            if r.diff_kind is not DiffKind.CONFLICT
                        )
                except SyncEngineError as e:
                    state.abort(e, tab)
                    break
                except Exception as e:
                    state.abort(_unexpected(e, tab), tab)
                    break
            final = self._finalize(entry, state)

        preview_rows = [o.record for o in self._sorted(state.outcomes) if isinstance(o.record, PreviewRow)]
        return PreviewResult(
            direction=direction,
            rows=preview_rows,
            summary=PreviewResult.summarize(preview_rows),
            log=final,
        )

    # ------------------------------------------------------------------
    # run lifecycle
    # ------------------------------------------------------------------
    def _new_state(self) -> _RunState:
        return _RunState(deadline=time.monotonic() + self.config.run_timeout_seconds)

    def _start(
        self, direction: SyncDirection, sheet_id: str, *, dry_run: bool, triggered_by: str | None
    ) -> SyncLogEntry:
        entry = SyncLogEntry.start(direction, sheet_id, dry_run=dry_run, triggered_by=triggered_by)
        self.log_store.append(entry)
        logger.info(
            "%s%s start sheet=%s id=%s",
            direction.value, " (preview)" if dry_run else "", sheet_id, entry.id,
        )
        return entry

    @staticmethod
    def _sorted(outcomes: Iterable[RowOutcome]) -> list[RowOutcome]:
        return sorted(outcomes, key=lambda o: (_sheet_order(o.sheet), o.row_index))

    def _finalize(self, entry: SyncLogEntry, state: _RunState) -> SyncLogEntry:
        outcomes = self._sorted(state.outcomes)
        succeeded = sum(1 for o in outcomes if o.kind is OutcomeKind.SUCCESS)
        skipped = sum(1 for o in outcomes if o.kind is OutcomeKind.SKIPPED)
        failed = sum(1 for o in outcomes if o.kind is OutcomeKind.FAILED)
        errors = sorted(
            [o.error for o in outcomes if o.error is not None] + state.op_errors,
            key=lambda e: (_sheet_order(e.sheet), e.row_index),
        )
        status = terminal_status(succeeded, skipped, failed, aborted=bool(state.op_errors))
        final = self.log_store.update(
            entry.id,
            {
                "status": status,
                "completed_at": datetime.now(UTC),
                "rows_total": len(outcomes),
                "rows_succeeded": succeeded,
                "rows_skipped": skipped,
                "rows_failed": failed,
                "errors": errors,
            },
        )
        if self.error_log is not None:
            self.error_log.extend(errors)
        logger.info(
            "%s finished sheet=%s status=%s succeeded=%d skipped=%d failed=%d",
            entry.direction.value, entry.sheet_id, status.value, succeeded, skipped, failed,
        )
        return final

    def _read_tab(self, sheet_id: str, tab: str) -> list[SheetRow]:
        range_name = self.config.tab(tab).range
        try:
            values = self.transport.read_sheet(sheet_id, range_name)
        except SyncEngineError:
            raise
        except Exception as e:
            # 任意のトランスポート例外 (接続断, API エラー等) は TransportError として扱う
            raise TransportError(
                f"failed reading {sheet_id}!{range_name}: {e!r}", sheet=tab, error_type="SHEET_READ_ERROR"
            ) from e
        if not values:
            logger.warning("sheet=%s tab=%s is empty or missing", sheet_id, tab)
        return [SheetRow.from_values(i, row) for i, row in enumerate(values, start=1)]

    def _write_tab(self, sheet_id: str, tab: str, rows: list[list[str]]) -> None:
        range_name = self.config.tab(tab).range
        try:
            self.transport.write_sheet(sheet_id, range_name, rows)
        except SyncEngineError:
            raise
        except Exception as e:
            raise TransportError(
                f"failed writing {sheet_id}!{range_name}: {e!r}", sheet=tab, error_type="SHEET_WRITE_ERROR"
            ) from e

    # ------------------------------------------------------------------
    # bounded worker pool
    # ------------------------------------------------------------------
    def _run_rows(
        self,
        state: _RunState,
        sheet: str,
        items: list[tuple[int, Any]],
        fn: Callable[[Any], RowOutcome],
        *,
        label: str,
    ) -> None:
        """Run fn(payload) for each (row_index, payload) on the worker pool.

        Every item contributes exactly one outcome to state.outcomes.
        """
        if not items:
            return
        started: dict[int, float] = {}
        started_lock = threading.Lock()

        def guarded(row_index: int, payload: Any) -> RowOutcome:
            with started_lock:
                started[row_index] = time.monotonic()
            try:
                return fn(payload)
            except SyncEngineError as e:
                err = _row_error(e, sheet, row_index)
                if err.severity == SEVERITY_WARNING:
                    return RowOutcome.skipped(sheet, row_index, err)
                logger.warning("sheet=%s row=%d failed: %s", sheet, row_index, e.message)
                return RowOutcome.failed(sheet, row_index, err)
            except Exception as e:
                logger.exception("sheet=%s row=%d unexpected error", sheet, row_index)
                return RowOutcome.failed(
                    sheet,
                    row_index,
                    SyncError(row_index, f"unexpected error: {e}", sheet=sheet, error_type="UNEXPECTED_ERROR"),
                )

        row_timeout = self.config.row_timeout_seconds
        executor = ThreadPoolExecutor(max_workers=self.config.workers, thread_name_prefix="interior-sync")
        futures = {executor.submit(guarded, idx, payload): idx for idx, payload in items}
        pending = set(futures)
        with RowProgressTracker(len(items), description=f"{label} {sheet}") as progress:
            try:
                while pending:
                    remaining = state.deadline - time.monotonic()
                    if remaining <= 0:
                        state.timed_out = True
                        break
                    done, pending = wait(
                        pending, timeout=min(self._poll_interval, remaining), return_when=FIRST_COMPLETED
                    )
                    for fut in done:
                        state.outcomes.append(fut.result())
                        progress.advance()

                    now = time.monotonic()
                    with started_lock:
                        snapshot = dict(started)
                    for fut in list(pending):
                        row_index = futures[fut]
                        t0 = snapshot.get(row_index)
                        if t0 is None or now - t0 <= row_timeout or fut.done():
                            continue
                        # 結果は待たない (書き込みは後から成立しうる)
                        pending.discard(fut)
                        state.outcomes.append(
                            RowOutcome.failed(
                                sheet,
                                row_index,
                                SyncError(
                                    row_index,
                                    f"row exceeded {row_timeout:g}s timeout",
                                    sheet=sheet,
                                    error_type="ROW_TIMEOUT",
                                ),
                            )
                        )
                        progress.advance()
                        logger.warning("sheet=%s row=%d timed out", sheet, row_index)

                if pending:
                    logger.error("sheet=%s run timeout: %d row(s) not finished", sheet, len(pending))
                    for fut in sorted(pending, key=lambda f: futures[f]):
                        if not fut.cancel() and fut.done():
                            # 最後の wait() 以降に完了した行はその結果を採用する
                            state.outcomes.append(fut.result())
                            progress.advance()
                            continue
                        row_index = futures[fut]
                        state.outcomes.append(
                            RowOutcome.failed(
                                sheet,
                                row_index,
                                SyncError(
                                    row_index,
                                    f"run exceeded {self.config.run_timeout_seconds:g}s timeout",
                                    sheet=sheet,
                                    error_type="RUN_TIMEOUT",
                                ),
                            )
                        )
            finally:
                executor.shutdown(wait=False, cancel_futures=True)

    # ------------------------------------------------------------------
    # pull
    # ------------------------------------------------------------------
    def _record_parse_errors(self, state: _RunState, sheet: str, errors: list[SyncError]) -> None:
        state.outcomes.extend(RowOutcome.failed(sheet, e.row_index, e) for e in errors)

    def _record_duplicates(self, state: _RunState, sheet: str, dupes: list[Any], describe) -> None:
        for p in dupes:
            state.outcomes.append(
                RowOutcome.failed(
                    sheet,
                    p.row_index,
                    SyncError(
                        p.row_index,
                        f"Duplicate key in sheet: {describe(p)}",
                        sheet=sheet,
                        error_type="DUPLICATE_KEY",
                    ),
                )
            )

    def _pull_projects(self, state: _RunState, rows: list[SheetRow]) -> None:
        parsed, errors = parse_duan_sheet(rows)
        self._record_parse_errors(state, DUAN_SHEET, errors)
        unique, dupes = _split_duplicates(parsed, lambda p: p.name)
        self._record_duplicates(state, DUAN_SHEET, dupes, lambda p: p.name)
        logger.info("tab=%s rows=%d parsed=%d errors=%d", DUAN_SHEET, len(rows), len(parsed), len(errors))
        self._run_rows(state, DUAN_SHEET, [(p.row_index, p) for p in unique], self._pull_project_row, label="pull")

    def _pull_project_row(self, parsed: ParsedDuAnData) -> RowOutcome:
        cells = project_cells(parsed)
        existing = self.repository.get_project(parsed.name)
        if existing is not None:
            record = self._project_record(parsed, existing.slug, fingerprint(cells))
            action = self.repository.upsert_project(record)
        else:
            with self._slug_lock:
                slug = unique_slug(parsed.slug, self.repository.slug_exists)
                record = self._project_record(parsed, slug, fingerprint(cells))
                action = self.repository.upsert_project(record)
        return RowOutcome.success(DUAN_SHEET, parsed.row_index, record, action.value)

    @staticmethod
    def _project_record(parsed: ParsedDuAnData, slug: str, synced_hash: str) -> ProjectRecord:
        return ProjectRecord(
            name=parsed.name,
            slug=slug,
            developer=parsed.developer,
            address=parsed.address,
            is_active=parsed.is_active,
            extra=dict(parsed.extra),
            synced_hash=synced_hash,
        )

    def _pull_layouts(self, state: _RunState, rows: list[SheetRow]) -> None:
        parsed, errors = parse_layout_ids_sheet(rows)
        self._record_parse_errors(state, LAYOUT_IDS_SHEET, errors)
        unique, dupes = _split_duplicates(parsed, _layout_key)
        self._record_duplicates(state, LAYOUT_IDS_SHEET, dupes, lambda p: "/".join(p.natural_key))
        logger.info(
            "tab=%s rows=%d parsed=%d errors=%d", LAYOUT_IDS_SHEET, len(rows), len(parsed), len(errors)
        )
        self._run_rows(
            state, LAYOUT_IDS_SHEET, [(p.row_index, p) for p in unique], self._pull_layout_row, label="pull"
        )

    def _check_layout(
        self, parsed: ParsedLayoutData, project_known: Callable[[str], bool]
    ) -> RowOutcome | None:
        """Skip outcome for unmapped types / unknown parents, None when the row may proceed."""
        if parsed.unit_type is None:
            err = MappingError(
                f"Invalid apartment type: {parsed.apartment_type_raw!r}",
                row_index=parsed.row_index,
                column="ApartmentType",
            ).to_sync_error(sheet=LAYOUT_IDS_SHEET)
            logger.warning("sheet=%s row=%d skipped: %s", LAYOUT_IDS_SHEET, parsed.row_index, err.message)
            return RowOutcome.skipped(LAYOUT_IDS_SHEET, parsed.row_index, err)
        if not project_known(parsed.project_name):
            err = SyncError(
                parsed.row_index,
                f"Project not found: {parsed.project_name}",
                column="TenDuAn",
                sheet=LAYOUT_IDS_SHEET,
                error_type="PROJECT_NOT_FOUND",
                severity=SEVERITY_WARNING,
            )
            logger.warning("sheet=%s row=%d skipped: %s", LAYOUT_IDS_SHEET, parsed.row_index, err.message)
            return RowOutcome.skipped(LAYOUT_IDS_SHEET, parsed.row_index, err)
        return None

    def _pull_layout_row(self, parsed: ParsedLayoutData) -> RowOutcome:
        skip = self._check_layout(parsed, lambda name: self.repository.get_project(name) is not None)
        if skip is not None:
            return skip
        record = LayoutRecord(
            project_name=parsed.project_name,
            layout_code=parsed.layout_code,
            unit_type=parsed.unit_type,
            area=parsed.area,
            price=parsed.price,
            image_ids=parsed.image_ids,
            synced_hash=fingerprint(layout_cells(parsed)),
        )
        action = self.repository.upsert_layout(record)
        return RowOutcome.success(LAYOUT_IDS_SHEET, parsed.row_index, record, action.value)

    @staticmethod
    def _pull_counters(tab: str, outcomes: list[RowOutcome]) -> SheetSyncResult:
        mine = [o for o in outcomes if o.sheet == tab]
        return SheetSyncResult(
            sheet=tab,
            created=sum(1 for o in mine if o.kind is OutcomeKind.SUCCESS and o.action == "created"),
            updated=sum(1 for o in mine if o.kind is OutcomeKind.SUCCESS and o.action == "updated"),
            unchanged=sum(1 for o in mine if o.kind is OutcomeKind.SUCCESS and o.action == "unchanged"),
            skipped=sum(1 for o in mine if o.kind is OutcomeKind.SKIPPED),
            failed=sum(1 for o in mine if o.kind is OutcomeKind.FAILED),
        )

    # ------------------------------------------------------------------
    # push
    # ------------------------------------------------------------------
    def _plan_push(self, sheet_id: str, tab: str) -> _PushPlan:
        sheet_rows = self._read_tab(sheet_id, tab)
        labels = labels_for(tab)
        positions, data_rows = resolve_columns(sheet_rows, columns_for(tab))
        if tab == DUAN_SHEET:
            parsed, _errors = parse_duan_sheet(sheet_rows)
            records = self.repository.list_projects()
            record_key: Callable[[Any], Any] = lambda r: r.name
            sheet_key: Callable[[Any], Any] = lambda p: p.name
            render = project_cells
        else:
            parsed, _errors = parse_layout_ids_sheet(sheet_rows)
            records = self.repository.list_layouts()
            record_key = lambda r: r.natural_key
            sheet_key = _layout_key
            render = layout_cells
        parsed_by_row = {p.row_index: p for p in parsed}
        db_by_key = {record_key(r): r for r in records}

        out: list[list[str]] = [list(labels)]
        writes: list[tuple[int, Any, dict[str, str]]] = []
        conflicts: list[RowOutcome] = []
        preview_rows: list[PreviewRow] = []
        matched: set[Any] = set()
        preserved = 0

        for row in data_rows:
            if row.is_blank():
                # 空行も残して既存行の行番号をずらさない
                out.append([""] * len(labels))
                continue
            raw = [
                row.cells[positions[label]]
                if positions.get(label) is not None and positions[label] < len(row.cells)
                else ""
                for label in labels
            ]
            p = parsed_by_row.get(row.row_index)
            key = sheet_key(p) if p is not None else None
            record = db_by_key.get(key) if key is not None and key not in matched else None
            if record is None:
                # シートにしか無い行 / 解析不能行はそのまま残す
                out.append(raw)
                preserved += 1
                continue
            matched.add(key)
            row_index = row.row_index
            db_cells = render(record)
            sheet_cells = render(p)
            kind, changes = classify(db_cells, sheet_cells, record.synced_hash)
            preview = PreviewRow(row_index, tab, kind, incoming=db_cells, current=sheet_cells, changes=changes)
            preview_rows.append(preview)
            if kind is DiffKind.CONFLICT:
                out.append(raw)
                conflicts.append(self._preview_outcome(preview))
                logger.warning("sheet=%s row=%d conflict: %s", tab, row_index, ", ".join(changes))
                continue
            out.append(cells_to_row(tab, db_cells))
            writes.append((row_index, record, db_cells))

        for record in records:
            if record_key(record) in matched:
                continue
            # DB にしか無いレコードは書き込み後のシート上の行番号
            row_index = len(out) + 1
            db_cells = render(record)
            kind, changes = classify(db_cells, None)
            preview_rows.append(PreviewRow(row_index, tab, kind, incoming=db_cells, current=None, changes=changes))
            out.append(cells_to_row(tab, db_cells))
            writes.append((row_index, record, db_cells))

        return _PushPlan(
            sheet=tab,
            rows=out,
            writes=writes,
            conflicts=conflicts,
            preview_rows=preview_rows,
            preserved=preserved,
        )

    def _mark_synced_row(self, tab: str) -> Callable[[tuple[int, Any, dict[str, str]]], RowOutcome]:
        def mark(payload: tuple[int, Any, dict[str, str]]) -> RowOutcome:
            row_index, record, cells = payload
            synced_hash = fingerprint(cells)
            if tab == DUAN_SHEET:
                self.repository.mark_project_synced(record.name, synced_hash)
            else:
                self.repository.mark_layout_synced(record.project_name, record.layout_code, synced_hash)
            return RowOutcome.success(tab, row_index, replace(record, synced_hash=synced_hash), "written")

        return mark

    @staticmethod
    def _push_counters(tab: str, outcomes: list[RowOutcome], plan: _PushPlan | None) -> SheetPushResult:
        mine = [o for o in outcomes if o.sheet == tab]
        return SheetPushResult(
            sheet=tab,
            written=sum(1 for o in mine if o.kind is OutcomeKind.SUCCESS),
            conflicts=sum(1 for o in mine if o.kind is OutcomeKind.SKIPPED),
            failed=sum(1 for o in mine if o.kind is OutcomeKind.FAILED),
            preserved_sheet_rows=plan.preserved if plan is not None else 0,
        )

    # ------------------------------------------------------------------
    # preview (pull direction; push preview reuses _plan_push)
    # ------------------------------------------------------------------
    @staticmethod
    def _preview_outcome(row: PreviewRow) -> RowOutcome:
        if row.diff_kind is DiffKind.CONFLICT:
            err = ConflictError(
                f"Both sheet and database changed since last sync: {', '.join(row.changes)}",
                row_index=row.row_index,
                column=row.changes[0] if row.changes else None,
            ).to_sync_error(sheet=row.sheet)
            return RowOutcome.skipped(row.sheet, row.row_index, err, record=row)
        return RowOutcome.success(row.sheet, row.row_index, row, row.diff_kind.value)

    def _preview_pull_projects(self, state: _RunState, rows: list[SheetRow]) -> None:
        parsed, errors = parse_duan_sheet(rows)
        self._record_parse_errors(state, DUAN_SHEET, errors)
        unique, dupes = _split_duplicates(parsed, lambda p: p.name)
        self._record_duplicates(state, DUAN_SHEET, dupes, lambda p: p.name)

        def classify_row(p: ParsedDuAnData) -> RowOutcome:
            incoming = project_cells(p)
            existing = self.repository.get_project(p.name)
            current = project_cells(existing) if existing is not None else None
            kind, changes = classify(incoming, current, existing.synced_hash if existing else None)
            return self._preview_outcome(
                PreviewRow(p.row_index, DUAN_SHEET, kind, incoming=incoming, current=current, changes=changes)
            )

        self._run_rows(state, DUAN_SHEET, [(p.row_index, p) for p in unique], classify_row, label="preview")

    def _preview_pull_layouts(self, state: _RunState, rows: list[SheetRow], pending_projects: set[str]) -> None:
        parsed, errors = parse_layout_ids_sheet(rows)
        self._record_parse_errors(state, LAYOUT_IDS_SHEET, errors)
        unique, dupes = _split_duplicates(parsed, _layout_key)
        self._record_duplicates(state, LAYOUT_IDS_SHEET, dupes, lambda p: "/".join(p.natural_key))

        def project_known(name: str) -> bool:
            # 同じ preview の DuAn で追加予定のプロジェクトも親として扱う
            return name in pending_projects or self.repository.get_project(name) is not None

        def classify_row(p: ParsedLayoutData) -> RowOutcome:
            skip = self._check_layout(p, project_known)
            if skip is not None:
                return skip
            incoming = layout_cells(p)
            existing = self.repository.get_layout(p.project_name, p.layout_code)
            current = layout_cells(existing) if existing is not None else None
            kind, changes = classify(incoming, current, existing.synced_hash if existing else None)
            return self._preview_outcome(
                PreviewRow(p.row_index, LAYOUT_IDS_SHEET, kind, incoming=incoming, current=current, changes=changes)
            )

        self._run_rows(state, LAYOUT_IDS_SHEET, [(p.row_index, p) for p in unique], classify_row, label="preview")
