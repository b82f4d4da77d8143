from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from ..models.config_models import (
    DEFAULT_ALLOWED_EXTENSIONS,
    DatabaseConfig,
    ImportConfig,
    LimitsConfig,
)

"""Config loader.

Responsibilities:
- Load YAML config (default location config/import.yml)
- Validate against the bundled JSON schema (schemas/config.json)
- Apply defaults for every missing key
"""

__all__ = [
    "CONFIG_PATH",
    "SCHEMA_PATH",
    "ConfigError",
    "default_config",
    "load_config",
]

CONFIG_PATH = Path("config/import.yml")
SCHEMA_PATH = Path(__file__).parent / "schemas" / "config.json"


class ConfigError(Exception):
    pass


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate config data against JSON schema.

    Raises:
        ConfigError: schema file missing or invalid, or data violating the schema
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")
    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        raise ConfigError(f"config validation failed: {e.message}") from e


def default_config() -> ImportConfig:
    return ImportConfig()


def load_config(path: Path = CONFIG_PATH) -> ImportConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError("config root must be a mapping")

    _validate_config_schema(data)

    defaults = ImportConfig()
    limits_raw = data.get("limits") or {}
    base_limits = defaults.limits
    limits = LimitsConfig(
        max_file_rows=limits_raw.get("max_file_rows", base_limits.max_file_rows),
        max_clipboard_rows=limits_raw.get("max_clipboard_rows", base_limits.max_clipboard_rows),
        max_columns=limits_raw.get("max_columns", base_limits.max_columns),
        max_upload_bytes=limits_raw.get("max_upload_bytes", base_limits.max_upload_bytes),
        max_clipboard_chars=limits_raw.get("max_clipboard_chars", base_limits.max_clipboard_chars),
    )
    db_raw = data.get("database") or {}
    db = DatabaseConfig(
        host=db_raw.get("host"),
        port=db_raw.get("port"),
        user=db_raw.get("user"),
        password=db_raw.get("password"),
        database=db_raw.get("database"),
        dsn=db_raw.get("dsn"),
    )
    extensions = data.get("allowed_extensions") or list(DEFAULT_ALLOWED_EXTENSIONS)
    return ImportConfig(
        session_directory=data.get("session_directory", defaults.session_directory),
        session_ttl_minutes=data.get("session_ttl_minutes", defaults.session_ttl_minutes),
        upload_directory=data.get("upload_directory", defaults.upload_directory),
        limits=limits,
        allowed_extensions=tuple(e.lower() for e in extensions),
        database=db,
    )
