from __future__ import annotations

from collections.abc import Mapping

from ..models.sync_log import SyncLogEntry
from ..models.sync_result import DiffKind

"""SUMMARY line rendering for a finished sync run.

Format:
SUMMARY direction={pull|push} sheet={id} status={status} rows={total}
succeeded={n} skipped={n} failed={n} dry_run={true|false} elapsed_sec={sec}
[add={n} update={n} unchanged={n} conflict={n}]   (preview only)
"""

__all__ = [
    "format_seconds",
    "render_summary_line",
]


def format_seconds(value: float) -> str:
    if value == 0:
        return "0"
    if value == int(value):
        return str(int(value))
    if value < 0.01:
        # 指数表記を避ける
        return f"{value:.6f}".rstrip("0").rstrip(".")
    return f"{value:.3f}".rstrip("0").rstrip(".")


def render_summary_line(entry: SyncLogEntry, diff_summary: Mapping[DiffKind, int] | None = None) -> str:
    """Render the SUMMARY line for `entry`.

    Examples:
        >>> from datetime import datetime, timezone
        >>> from interior_sync.models import SyncDirection, SyncLogStatus
        >>> start = datetime(2024, 1, 1, 10, 0, 0, tzinfo=timezone.utc)
        >>> end = datetime(2024, 1, 1, 10, 0, 2, tzinfo=timezone.utc)
        >>> entry = SyncLogEntry(
        ...     id="x", direction=SyncDirection.PULL, status=SyncLogStatus.SUCCESS,
        ...     sheet_id="demo", started_at=start, completed_at=end,
        ...     rows_total=2, rows_succeeded=2,
        ... )
        >>> render_summary_line(entry)
        'SUMMARY direction=pull sheet=demo status=success rows=2 succeeded=2 skipped=0 failed=0 dry_run=false elapsed_sec=2'
    """
    line = (
        f"SUMMARY direction={entry.direction.value} "
        f"sheet={entry.sheet_id} "
        f"status={entry.status.value} "
        f"rows={entry.rows_total} "
        f"succeeded={entry.rows_succeeded} "
        f"skipped={entry.rows_skipped} "
        f"failed={entry.rows_failed} "
        f"dry_run={'true' if entry.dry_run else 'false'} "
        f"elapsed_sec={format_seconds(entry.elapsed_seconds)}"
    )
    if diff_summary is not None:
        line += " " + " ".join(f"{kind.value}={diff_summary.get(kind, 0)}" for kind in DiffKind)
    return line
