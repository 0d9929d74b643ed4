from __future__ import annotations

import json
from pathlib import Path

import jsonschema
import yaml

from interior_sync.config.loader import SCHEMA_PATH, load_config

"""The shipped sample config and the config schema stay in sync."""

PROJECT_ROOT = Path(__file__).resolve().parents[2]


def test_schema_is_valid_draft7():
    jsonschema.Draft7Validator.check_schema(json.loads(SCHEMA_PATH.read_text(encoding="utf-8")))


def test_repository_sample_config_validates():
    sample = PROJECT_ROOT / "config" / "sync.yml"
    data = yaml.safe_load(sample.read_text(encoding="utf-8"))
    jsonschema.validate(data, json.loads(SCHEMA_PATH.read_text(encoding="utf-8")))
    cfg = load_config(sample)
    assert cfg.workers >= 1
    assert set(cfg.sheets) == {"DuAn", "LayoutIDs"}


def test_fixture_config_validates(write_config: Path):
    assert load_config(write_config).database.database == "interior"
