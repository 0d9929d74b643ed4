from __future__ import annotations

from collections.abc import Mapping

from ..models.sync_result import DiffKind
from ..sheets.columns import fingerprint

"""Row classification shared by preview and push.

incoming: セル値 (書き込み側に流れる値)
current:  書き込み先の現在値 (pull なら DB, push ならシート)。無ければ None
synced_hash: 最後に同期した時点のセル fingerprint (records.synced_hash)

CONFLICT = 前回同期以降に両側とも変更され、かつ両側の値が一致しない。
synced_hash が無いレコードは CONFLICT にならない。
"""

__all__ = [
    "changed_labels",
    "is_conflict",
    "classify",
]


def changed_labels(incoming: Mapping[str, str], current: Mapping[str, str] | None) -> tuple[str, ...]:
    if current is None:
        return tuple(label for label, value in incoming.items() if value)
    labels = list(incoming) + [k for k in current if k not in incoming]
    return tuple(label for label in labels if incoming.get(label, "") != current.get(label, ""))


def is_conflict(
    incoming: Mapping[str, str], current: Mapping[str, str] | None, synced_hash: str | None
) -> bool:
    if current is None or not synced_hash:
        return False
    if dict(incoming) == dict(current):
        return False
    return fingerprint(dict(incoming)) != synced_hash and fingerprint(dict(current)) != synced_hash


def classify(
    incoming: Mapping[str, str], current: Mapping[str, str] | None, synced_hash: str | None = None
) -> tuple[DiffKind, tuple[str, ...]]:
    """Return (diff kind, changed column labels)."""
    if current is None:
        return DiffKind.ADD, changed_labels(incoming, None)
    changes = changed_labels(incoming, current)
    if not changes:
        return DiffKind.UNCHANGED, ()
    if is_conflict(incoming, current, synced_hash):
        return DiffKind.CONFLICT, changes
    return DiffKind.UPDATE, changes
