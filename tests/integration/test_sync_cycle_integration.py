from __future__ import annotations

from pathlib import Path

import pytest

from interior_sync.db.repository import InMemoryRepository
from interior_sync.db.sync_log_store import InMemorySyncLogStore
from interior_sync.mapping.apartment_type import UnitType
from interior_sync.models.config_models import SheetTabConfig, SyncConfig
from interior_sync.models.records import ProjectRecord
from interior_sync.models.sync_log import SyncDirection, SyncLogStatus
from interior_sync.models.sync_result import DiffKind
from interior_sync.services.orchestrator import SyncOrchestrator
from interior_sync.sheets.transport import ExcelWorkbookTransport

"""End-to-end pull / push / preview cycles.

Uses a real workbook on disk (ExcelWorkbookTransport) where the file format
matters, FakeTransport elsewhere.
"""

VGP = "Vinhomes Grand Park"


def test_layout_rows_without_header_pull_cleanly(orchestrator, transport, repository):
    repository.upsert_project(ProjectRecord(name=VGP, slug="vinhomes-grand-park"))
    transport.set_rows("demo", "LayoutIDs", [
        [VGP, "1pn", "55", "2500000000"],
        [VGP, " STUDIO ", "28", "1800000000"],
    ])

    result = orchestrator.pull_from_sheet("demo", tabs=("LayoutIDs",))

    assert result.log.errors == ()
    assert result.log.status is SyncLogStatus.SUCCESS
    assert result.log.rows_succeeded == 2
    assert [r.unit_type for r in repository.list_layouts()] == [UnitType.ONE_BEDROOM, UnitType.STUDIO]


def test_unknown_apartment_type_makes_run_partial(orchestrator, transport, repository):
    repository.upsert_project(ProjectRecord(name=VGP, slug="vinhomes-grand-park"))
    transport.set_rows("demo", "LayoutIDs", [
        [VGP, "1pn", "55", "2500000000"],
        [VGP, "apartment", "60", "2000000000"],
    ])

    result = orchestrator.pull_from_sheet("demo", tabs=("LayoutIDs",))

    assert result.log.rows_skipped == 1
    assert result.log.rows_succeeded == 1
    assert result.log.status is SyncLogStatus.PARTIAL


def test_only_unknown_types_is_failed(orchestrator, transport, repository):
    repository.upsert_project(ProjectRecord(name=VGP, slug="vinhomes-grand-park"))
    transport.set_rows("demo", "LayoutIDs", [[VGP, "apartment", "60", "2000000000"]])

    result = orchestrator.pull_from_sheet("demo", tabs=("LayoutIDs",))

    assert result.log.status is SyncLogStatus.FAILED
    assert result.success is False


def test_repeated_preview_after_pull_is_unchanged(orchestrator, seeded_sheet):
    orchestrator.pull_from_sheet(seeded_sheet)

    for direction in (SyncDirection.PULL, SyncDirection.PULL, SyncDirection.PUSH, SyncDirection.PUSH):
        preview = orchestrator.preview_sync(seeded_sheet, direction)
        assert len(preview.rows) == 5
        assert {r.diff_kind for r in preview.rows} == {DiffKind.UNCHANGED}
        assert preview.log.status is SyncLogStatus.SUCCESS


def test_preview_leaves_both_sides_untouched(orchestrator, transport, repository, seeded_sheet):
    before = {k: [list(r) for r in v] for k, v in transport.sheets.items()}
    orchestrator.preview_sync(seeded_sheet, SyncDirection.PULL)
    orchestrator.preview_sync(seeded_sheet, SyncDirection.PUSH)
    assert repository.list_projects() == []
    assert transport.sheets == before


def test_workbook_round_trip(temp_workdir: Path, write_workbook):
    write_workbook("demo", {
        "DuAn": [
            ["Tên dự án", "Chủ đầu tư", "Địa chỉ", "Trạng thái"],
            [VGP, "Vingroup", "Quận 9", "Đang bán"],
            ["Masteri Thảo Điền", "Masterise Homes", "Quận 2", "ngừng bán"],
        ],
        "LayoutIDs": [
            ["TenDuAn", "ApartmentType", "DienTich", "Gia", "HinhAnh"],
            [VGP, "1PN+", "50,5", "2.100.000.000", "img-1; img-2"],
            ["Masteri Thảo Điền", "penthouse", "210", "15000000000", ""],
        ],
    })
    transport = ExcelWorkbookTransport(temp_workdir / "sheets")
    repository = InMemoryRepository()
    log_store = InMemorySyncLogStore()
    config = SyncConfig(
        source_directory=str(temp_workdir / "sheets"),
        sheets={"DuAn": SheetTabConfig("DuAn", "DuAn"), "LayoutIDs": SheetTabConfig("LayoutIDs", "LayoutIDs")},
        workers=2,
    )
    orch = SyncOrchestrator(transport, repository, log_store, config, poll_interval=0.01)

    assert orch.pull_from_sheet("demo").log.status is SyncLogStatus.SUCCESS
    assert repository.get_project("Masteri Thảo Điền").is_active is False
    push = orch.push_to_sheet("demo")
    assert push.log.status is SyncLogStatus.SUCCESS

    layouts = transport.read_sheet("demo", "LayoutIDs")
    assert layouts[0] == ["TenDuAn", "ApartmentType", "DienTich", "Gia", "HinhAnh", "MaLayout"]
    assert layouts[1] == [VGP, "1pn", "50.5", "2100000000", "img-1, img-2", "1pn-50-5"]
    duan = transport.read_sheet("demo", "DuAn")
    assert duan[2][3] == "inactive"

    again = orch.pull_from_sheet("demo")
    assert [(s.created, s.updated, s.unchanged) for s in again.sheets] == [(0, 0, 2), (0, 0, 2)]
    assert log_store.list(page=1, limit=10).total == 3


@pytest.mark.parametrize("tab", ["DuAn", "LayoutIDs"])
def test_every_run_is_logged_once(orchestrator, log_store, seeded_sheet, tab):
    orchestrator.pull_from_sheet(seeded_sheet, tabs=(tab,))
    orchestrator.push_to_sheet(seeded_sheet, tabs=(tab,))
    orchestrator.preview_sync(seeded_sheet, "push", tabs=(tab,))
    page = log_store.list()
    assert page.total == 3
    assert all(e.status.is_terminal and e.counts_balanced for e in page.items)
    assert [e.dry_run for e in page.items].count(True) == 1
