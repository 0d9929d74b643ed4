from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from ..models.config_models import (
    DUAN_SHEET,
    LAYOUT_IDS_SHEET,
    DatabaseConfig,
    SheetTabConfig,
    SyncConfig,
)

"""Config loader.

Responsibilities:
- Load YAML config/sync.yml
- Validate against sync_schema.json (shipped next to this module)
- Apply defaults (tab range = tab name, workers=4, timeouts 30s / 600s)
"""

__all__ = [
    "ConfigError",
    "DEFAULT_CONFIG_PATH",
    "SCHEMA_PATH",
    "load_config",
]

DEFAULT_CONFIG_PATH = Path("config/sync.yml")
SCHEMA_PATH = Path(__file__).with_name("sync_schema.json")


class ConfigError(Exception):
    pass


def _validate_config_schema(data: Any) -> None:
    """Validate config data against the JSON schema.

    Raises:
        ConfigError: schema file missing / not JSON, or the data violates it
            (missing keys, wrong types, out-of-range worker count ...)
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")
    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        where = "/".join(str(p) for p in e.absolute_path)
        raise ConfigError(f"config validation failed{f' at {where}' if where else ''}: {e.message}") from e


def load_config(path: Path = DEFAULT_CONFIG_PATH) -> SyncConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e

    _validate_config_schema(data)

    sheets_raw = data.get("sheets") or {}
    sheets = {
        name: SheetTabConfig(sheet_name=name, range=(sheets_raw.get(name) or {}).get("range", name))
        for name in (DUAN_SHEET, LAYOUT_IDS_SHEET)
    }
    db_raw = data.get("database") or {}
    db = DatabaseConfig(
        host=db_raw.get("host"),
        port=db_raw.get("port"),
        user=db_raw.get("user"),
        password=db_raw.get("password"),
        database=db_raw.get("database"),
        dsn=db_raw.get("dsn"),
    )
    return SyncConfig(
        source_directory=data["source_directory"],
        sheets=sheets,
        workers=int(data.get("workers", 4)),
        row_timeout_seconds=float(data.get("row_timeout_seconds", 30.0)),
        run_timeout_seconds=float(data.get("run_timeout_seconds", 600.0)),
        database=db,
    )
