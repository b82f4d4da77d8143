from __future__ import annotations

from dataclasses import dataclass, field

"""Config dataclasses for the cashflow import pipeline.

Populated by ``cashflow_import.config.loader``; every field has a default so
the pipeline also runs without a config file.
"""

__all__ = [
    "DatabaseConfig",
    "LimitsConfig",
    "ImportConfig",
    "DEFAULT_ALLOWED_EXTENSIONS",
]

DEFAULT_ALLOWED_EXTENSIONS = ("xlsx", "xls", "csv", "txt", "xlsm")


@dataclass(frozen=True)
class DatabaseConfig:
    """Database connection configuration.

    Used as fallback when environment variables are not set.
    Environment variables take precedence over these values.
    """
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None


@dataclass(frozen=True)
class LimitsConfig:
    """Input bounds that keep per-request time and memory bounded."""
    max_file_rows: int = 10000
    max_clipboard_rows: int = 2000
    max_columns: int = 50
    max_upload_bytes: int = 20 * 1024 * 1024
    max_clipboard_chars: int = 200000


@dataclass(frozen=True)
class ImportConfig:
    """Root configuration object for the import pipeline."""
    session_directory: str = "./storage/cashflow_imports"
    session_ttl_minutes: int = 120
    upload_directory: str = "./storage/cashflow_import_uploads"
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    allowed_extensions: tuple[str, ...] = DEFAULT_ALLOWED_EXTENSIONS
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
