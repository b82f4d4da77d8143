from __future__ import annotations

import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest

from cashflow_import.config.loader import ConfigError, _validate_config_schema, default_config, load_config


def test_load_config_success(write_config: Path):
    cfg = load_config(write_config)
    assert cfg.session_directory == "./storage/sessions"
    assert cfg.session_ttl_minutes == 120
    assert cfg.limits.max_upload_bytes == 1048576
    assert cfg.limits.max_clipboard_chars == 5000
    assert cfg.allowed_extensions == ("xlsx", "xls", "csv", "txt", "xlsm")
    assert cfg.database.user == "appuser"
    assert cfg.database.dsn is None


def test_load_config_applies_defaults(temp_workdir: Path):
    path = temp_workdir / "config" / "minimal.yml"
    path.write_text("allowed_extensions: [XLSX, Csv]\nlimits:\n  max_columns: 10\n", encoding="utf-8")
    cfg = load_config(path)
    defaults = default_config()
    assert cfg.allowed_extensions == ("xlsx", "csv")
    assert cfg.limits.max_columns == 10
    assert cfg.limits.max_file_rows == defaults.limits.max_file_rows
    assert cfg.session_directory == defaults.session_directory


def test_empty_file_is_default_config(temp_workdir: Path):
    path = temp_workdir / "config" / "empty.yml"
    path.write_text("", encoding="utf-8")
    assert load_config(path) == default_config()


def test_load_config_missing_file(temp_workdir: Path):
    with pytest.raises(ConfigError, match="not found"):
        load_config(temp_workdir / "config" / "not_exists.yml")


def test_load_config_invalid_yaml(temp_workdir: Path):
    path = temp_workdir / "config" / "broken.yml"
    path.write_text("limits: [unclosed\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="invalid yaml"):
        load_config(path)


def test_load_config_root_must_be_mapping(temp_workdir: Path):
    path = temp_workdir / "config" / "list.yml"
    path.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="mapping"):
        load_config(path)


def test_load_config_extra_field(write_config: Path):
    text = write_config.read_text(encoding="utf-8") + "\nextra_field: not_allowed\n"
    write_config.write_text(text, encoding="utf-8")
    with pytest.raises(ConfigError) as e:
        load_config(write_config)
    assert "config validation failed" in str(e.value)


@pytest.mark.parametrize(
    "data",
    [
        {"session_ttl_minutes": 0},
        {"session_ttl_minutes": "2h"},
        {"allowed_extensions": []},
        {"allowed_extensions": [".xlsx"]},
        {"limits": {"max_rows": 5}},
        {"database": {"port": "5432"}},
    ],
)
def test_validate_config_schema_rejects(data):
    with pytest.raises(ConfigError, match="config validation failed"):
        _validate_config_schema(data)


def test_validate_config_schema_missing_schema_file():
    with patch("cashflow_import.config.loader.SCHEMA_PATH", Path("/nonexistent/schema.json")):
        with pytest.raises(ConfigError) as e:
            _validate_config_schema({})
        assert "config schema not found" in str(e.value)


def test_validate_config_schema_invalid_json_schema():
    with tempfile.NamedTemporaryFile(mode="w", suffix=".json", delete=False) as f:
        f.write("{ invalid json }")
        temp_path = Path(f.name)
    try:
        with patch("cashflow_import.config.loader.SCHEMA_PATH", temp_path):
            with pytest.raises(ConfigError) as e:
                _validate_config_schema({})
            assert "invalid schema file" in str(e.value)
    finally:
        temp_path.unlink()
