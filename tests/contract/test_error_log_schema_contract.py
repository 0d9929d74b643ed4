from __future__ import annotations

import json
from dataclasses import replace
from pathlib import Path

import jsonschema

from interior_sync.logging.error_log import ErrorLogBuffer

"""Every flushed error log line must validate against error_log_schema.json."""

PROJECT_ROOT = Path(__file__).resolve().parents[2]
SCHEMA = json.loads(
    (PROJECT_ROOT / "interior_sync" / "logging" / "error_log_schema.json").read_text(encoding="utf-8")
)


def _flushed_lines(path: Path) -> list[dict]:
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


def test_schema_itself_is_valid():
    jsonschema.Draft7Validator.check_schema(SCHEMA)


def test_row_errors_match_schema(orchestrator, transport, error_log: ErrorLogBuffer, seeded_sheet):
    layouts = transport.rows(seeded_sheet, "LayoutIDs")
    layouts.append(["Vinhomes Grand Park", "apartment", "40", "1"])
    layouts.append(["Vinhomes Grand Park", "2pn", "abc", "1"])
    layouts.append(["Không tồn tại", "2pn", "60", "1"])
    orchestrator.pull_from_sheet(seeded_sheet)

    lines = _flushed_lines(error_log.flush())

    assert {line["error_type"] for line in lines} == {"INVALID_APARTMENT_TYPE", "PARSE_ERROR", "PROJECT_NOT_FOUND"}
    for line in lines:
        jsonschema.validate(line, SCHEMA)
        assert line["row_index"] >= 1


def test_operation_error_uses_unknown_row(orchestrator, transport, error_log: ErrorLogBuffer, seeded_sheet):
    transport.fail_read.add("DuAn")
    orchestrator.pull_from_sheet(seeded_sheet)

    (line,) = _flushed_lines(error_log.flush())

    jsonschema.validate(line, SCHEMA)
    assert line["row_index"] == -1
    assert line["sheet"] == "DuAn"
    assert line["error_type"] == "SHEET_READ_ERROR"
    assert line["severity"] == "error"


def test_conflict_lines_are_warnings(orchestrator, transport, repository, error_log: ErrorLogBuffer, seeded_sheet):
    orchestrator.pull_from_sheet(seeded_sheet)
    transport.rows(seeded_sheet, "DuAn")[1][1] = "Sheet Dev"
    project = repository.get_project("Vinhomes Grand Park")
    repository.upsert_project(replace(project, developer="DB Dev", synced_hash=None))
    orchestrator.push_to_sheet(seeded_sheet, tabs=("DuAn",))

    (line,) = _flushed_lines(error_log.flush())
    jsonschema.validate(line, SCHEMA)
    assert (line["error_type"], line["severity"], line["column"]) == ("CONFLICT", "warning", "ChuDauTu")
