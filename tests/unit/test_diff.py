from __future__ import annotations

from interior_sync.models.sync_result import DiffKind
from interior_sync.services.diff import changed_labels, classify, is_conflict
from interior_sync.sheets.columns import fingerprint

BASE = {"TenDuAn": "Vinhomes", "ChuDauTu": "Vingroup", "DiaChi": ""}


def test_add_lists_non_empty_cells():
    kind, changes = classify(BASE, None)
    assert kind is DiffKind.ADD
    assert changes == ("TenDuAn", "ChuDauTu")


def test_unchanged():
    assert classify(BASE, dict(BASE), fingerprint({"other": "x"})) == (DiffKind.UNCHANGED, ())


def test_update_when_only_one_side_moved():
    synced = fingerprint(BASE)
    incoming = {**BASE, "ChuDauTu": "Other"}
    # current は前回同期時のまま
    assert classify(incoming, BASE, synced) == (DiffKind.UPDATE, ("ChuDauTu",))
    # incoming が前回同期時のまま (current 側だけ編集された)
    assert classify(BASE, incoming, synced) == (DiffKind.UPDATE, ("ChuDauTu",))


def test_conflict_when_both_sides_moved():
    synced = fingerprint(BASE)
    incoming = {**BASE, "ChuDauTu": "A"}
    current = {**BASE, "DiaChi": "Q9"}
    kind, changes = classify(incoming, current, synced)
    assert kind is DiffKind.CONFLICT
    assert changes == ("ChuDauTu", "DiaChi")
    assert is_conflict(incoming, current, synced)


def test_no_conflict_without_synced_hash():
    assert classify({**BASE, "ChuDauTu": "A"}, {**BASE, "DiaChi": "Q9"}, None)[0] is DiffKind.UPDATE


def test_changed_labels_includes_keys_missing_on_one_side():
    assert changed_labels({"a": "1"}, {"a": "1", "b": "2"}) == ("b",)
    assert changed_labels({"a": "1", "b": ""}, {"a": "1"}) == ()
