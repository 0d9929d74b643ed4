from __future__ import annotations

import argparse
import logging
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import psycopg2
from dotenv import load_dotenv

from interior_sync.config.loader import DEFAULT_CONFIG_PATH, ConfigError, load_config
from interior_sync.db.postgres import PostgresRepository, create_pool, ensure_schema, resolve_dsn
from interior_sync.db.repository import InMemoryRepository
from interior_sync.db.sync_log_store import (
    DEFAULT_PAGE_LIMIT,
    InMemorySyncLogStore,
    PostgresSyncLogStore,
    SyncLogError,
)
from interior_sync.errors import PersistenceError
from interior_sync.logging.error_log import ErrorLogBuffer
from interior_sync.logging.init import log_summary, set_debug, setup_logging
from interior_sync.models.config_models import SHEET_ORDER, SyncConfig
from interior_sync.models.sync_log import SyncDirection, SyncLogEntry, SyncLogStatus
from interior_sync.services.orchestrator import SyncOrchestrator
from interior_sync.services.summary import render_summary_line
from interior_sync.sheets.transport import ExcelWorkbookTransport

"""CLI entrypoint.

python -m interior_sync.cli [--config PATH] [--debug] <command>

    pull SHEET_ID [--tab DuAn --tab LayoutIDs] [--by USER]
    push SHEET_ID [--tab ...] [--by USER]
    preview SHEET_ID --direction pull|push [--tab ...]
    logs [--direction pull|push] [--status ...] [--sheet-id ID] [--page N] [--limit N]

Exit codes: 0 = SUCCESS, 2 = PARTIAL / FAILED run, 1 = fatal (config, arguments).
"""

EXIT_SUCCESS_ALL = 0
EXIT_PARTIAL_FAILURE = 2
EXIT_FATAL = 1


@contextmanager
def _backend(cfg: SyncConfig, logger: logging.Logger) -> Iterator[tuple[Any, Any, str]]:
    """Yield (repository, log_store, mode).

    DISABLE_DB_CONNECT=1 もしくは DB 接続失敗時は mock モード (プロセス内メモリ)。
    接続情報の優先順位は db.postgres.resolve_dsn を参照 (.env が最優先)。
    """
    if os.getenv("DISABLE_DB_CONNECT") == "1":
        logger.debug("DB connect disabled via DISABLE_DB_CONNECT=1 -> mock mode")
        yield InMemoryRepository(), InMemorySyncLogStore(), "mock"
        return

    pool = None
    try:
        pool = create_pool(resolve_dsn(cfg.database), maxconn=cfg.workers)
        ensure_schema(pool)
    except (psycopg2.Error, PersistenceError) as db_e:
        if pool is not None:
            pool.closeall()
            pool = None
        if os.getenv("SUPPRESS_DB_WARNING") == "1":
            logger.debug(f"DB connection failed (suppressed warn) -> fallback to mock mode: {db_e}")
        else:
            logger.info(f"DB connection failed -> fallback to mock mode: {db_e}")

    if pool is None:
        yield InMemoryRepository(), InMemorySyncLogStore(), "mock"
        return
    try:
        yield PostgresRepository(pool), PostgresSyncLogStore(pool), "live"
    finally:
        pool.closeall()


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env using python-dotenv (override=True: .env wins over the environment)."""
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _add_tab_option(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--tab",
        action="append",
        choices=list(SHEET_ORDER),
        help="Limit the run to a tab (repeatable, default: all tabs)",
    )


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="interior_sync", description="Interior project / layout spreadsheet <-> PostgreSQL sync"
    )
    p.add_argument("--config", type=Path, default=DEFAULT_CONFIG_PATH, help="Config YAML path")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    sub = p.add_subparsers(dest="command", required=True)

    pull = sub.add_parser("pull", help="Sheet -> database")
    pull.add_argument("sheet_id")
    _add_tab_option(pull)
    pull.add_argument("--by", dest="triggered_by", help="Who triggered the run (audit log)")

    push = sub.add_parser("push", help="Database -> sheet")
    push.add_argument("sheet_id")
    _add_tab_option(push)
    push.add_argument("--by", dest="triggered_by", help="Who triggered the run (audit log)")

    preview = sub.add_parser("preview", help="Dry run: classify rows without writing")
    preview.add_argument("sheet_id")
    preview.add_argument("--direction", choices=[d.value for d in SyncDirection], required=True)
    _add_tab_option(preview)
    preview.add_argument("--by", dest="triggered_by", help="Who triggered the run (audit log)")

    logs = sub.add_parser("logs", help="List sync history (newest first)")
    logs.add_argument("--direction", choices=[d.value for d in SyncDirection])
    logs.add_argument("--status", choices=[s.value for s in SyncLogStatus])
    logs.add_argument("--sheet-id", dest="sheet_id")
    logs.add_argument("--page", type=int, default=1)
    logs.add_argument("--limit", type=int, default=DEFAULT_PAGE_LIMIT)
    return p.parse_args(argv)


def _exit_code(entry: SyncLogEntry) -> int:
    if entry.status is SyncLogStatus.SUCCESS:
        return EXIT_SUCCESS_ALL
    return EXIT_PARTIAL_FAILURE


def _report(logger: logging.Logger, entry: SyncLogEntry, error_log: ErrorLogBuffer, diff_summary=None) -> None:
    for err in entry.errors:
        where = f"{err.sheet or '-'} row={err.row_index}"
        if err.severity == "warning":
            logger.warning(f"{where} {err.error_type}: {err.message}")
        else:
            logger.error(f"{where} {err.error_type}: {err.message}")
    path = error_log.flush()
    if path is not None:
        logger.info(f"error log written: {path}")
    summary_line = render_summary_line(entry, diff_summary)
    # log_summary が "SUMMARY " を付けるので取り除く
    log_summary(summary_line[len("SUMMARY "):])


def _run_logs(args: argparse.Namespace, log_store: Any, logger: logging.Logger) -> int:
    try:
        page = log_store.list(
            direction=SyncDirection(args.direction) if args.direction else None,
            status=SyncLogStatus(args.status) if args.status else None,
            sheet_id=args.sheet_id,
            page=args.page,
            limit=args.limit,
        )
    except SyncLogError as e:
        logger.error(f"logs: {e}")
        return EXIT_FATAL
    logger.info(f"page={page.page}/{page.total_pages} total={page.total}")
    for e in page.items:
        logger.info(
            f"{e.started_at.isoformat()} id={e.id} direction={e.direction.value} sheet={e.sheet_id} "
            f"status={e.status.value} rows={e.rows_total} succeeded={e.rows_succeeded} "
            f"skipped={e.rows_skipped} failed={e.rows_failed} dry_run={str(e.dry_run).lower()} "
            f"by={e.triggered_by or '-'}"
        )
    return EXIT_SUCCESS_ALL


def main(argv: list[str] | None = None) -> int:
    logger = setup_logging()

    # None のときのみシステム引数を読む (テストの cli_main([...]) に pytest 引数を混入させない)
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    # .env を最優先で読み込む (DB 接続パラメータ優先順位保証)
    _load_env_file(Path(".env"), override=True)

    if args.debug:
        set_debug(logger)

    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    if args.command != "logs" and not Path(cfg.source_directory).exists():
        logger.error(f"directory not found: {cfg.source_directory}")
        return EXIT_FATAL

    tabs = tuple(args.tab) if getattr(args, "tab", None) else SHEET_ORDER
    error_log = ErrorLogBuffer()

    with _backend(cfg, logger) as (repository, log_store, db_mode):
        logger.info(f"mode={db_mode}")
        if args.command == "logs":
            return _run_logs(args, log_store, logger)

        orchestrator = SyncOrchestrator(
            ExcelWorkbookTransport(cfg.source_directory),
            repository,
            log_store,
            cfg,
            error_log=error_log,
        )
        if args.command == "pull":
            result = orchestrator.pull_from_sheet(args.sheet_id, tabs=tabs, triggered_by=args.triggered_by)
            for s in result.sheets:
                logger.info(
                    f"{s.sheet}: created={s.created} updated={s.updated} unchanged={s.unchanged} "
                    f"skipped={s.skipped} failed={s.failed}"
                )
            _report(logger, result.log, error_log)
            return _exit_code(result.log)

        if args.command == "push":
            result = orchestrator.push_to_sheet(args.sheet_id, tabs=tabs, triggered_by=args.triggered_by)
            for s in result.sheets:
                logger.info(
                    f"{s.sheet}: written={s.written} conflicts={s.conflicts} failed={s.failed} "
                    f"preserved={s.preserved_sheet_rows}"
                )
            _report(logger, result.log, error_log)
            return _exit_code(result.log)

        preview = orchestrator.preview_sync(
            args.sheet_id, SyncDirection(args.direction), tabs=tabs, triggered_by=args.triggered_by
        )
        for row in preview.rows:
            changes = ",".join(row.changes) if row.changes else "-"
            logger.info(f"{row.sheet} row={row.row_index} {row.diff_kind.value} changes={changes}")
        _report(logger, preview.log, error_log, preview.summary)
        return _exit_code(preview.log)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
