from __future__ import annotations

import re

import pytest

from interior_sync.cli.__main__ import main as cli_main

"""CLI output contract: labeled lines and exactly one SUMMARY line per run."""

LABEL_RE = re.compile(r"^(INFO|WARN|ERROR|SUMMARY) ")
SUMMARY_RE = re.compile(
    r"^SUMMARY direction=(pull|push) sheet=[A-Za-z0-9_\-]+ status=(success|partial|failed) "
    r"rows=(\d+) succeeded=(\d+) skipped=(\d+) failed=(\d+) dry_run=(true|false) elapsed_sec=\d+(\.\d+)?"
    r"( add=\d+ update=\d+ unchanged=\d+ conflict=\d+)?$"
)


@pytest.fixture()
def workbook(write_config, write_workbook, monkeypatch):
    monkeypatch.setenv("DISABLE_DB_CONNECT", "1")
    write_workbook("demo", {
        "DuAn": [["TenDuAn", "ChuDauTu"], ["Vinhomes Grand Park", "Vingroup"]],
        "LayoutIDs": [
            ["TenDuAn", "ApartmentType", "DienTich", "Gia"],
            ["Vinhomes Grand Park", "1pn", "55", "1"],
            ["Vinhomes Grand Park", "apartment", "40", "1"],
        ],
    })


@pytest.mark.parametrize(
    "argv,direction,dry_run",
    [
        (["pull", "demo"], "pull", "false"),
        (["push", "demo"], "push", "false"),
        (["preview", "demo", "--direction", "pull"], "pull", "true"),
        (["preview", "demo", "--direction", "push"], "push", "true"),
    ],
)
def test_single_summary_line(workbook, capsys, argv, direction, dry_run):
    cli_main(argv)
    lines = capsys.readouterr().out.splitlines()

    assert lines
    assert all(LABEL_RE.match(line) for line in lines)
    summaries = [line for line in lines if line.startswith("SUMMARY ")]
    assert len(summaries) == 1
    m = SUMMARY_RE.match(summaries[0])
    assert m is not None
    assert m.group(1) == direction
    assert m.group(7) == dry_run
    rows, succeeded, skipped, failed = (int(m.group(i)) for i in (3, 4, 5, 6))
    assert rows == succeeded + skipped + failed
    assert (m.group(9) is not None) == (dry_run == "true")


def test_pull_summary_counts(workbook, capsys):
    cli_main(["pull", "demo"])
    summary = [line for line in capsys.readouterr().out.splitlines() if line.startswith("SUMMARY ")][0]
    assert "status=partial rows=3 succeeded=2 skipped=1 failed=0" in summary
