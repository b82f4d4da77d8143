from __future__ import annotations

import argparse
import json
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date
from pathlib import Path
from typing import Any

import psycopg2
from dotenv import load_dotenv

from ..config.loader import CONFIG_PATH, ConfigError, default_config, load_config
from ..config.request import MappingError
from ..db.ledger import LedgerError, PostgresDirectory, PostgresLedger
from ..excel.reader import SpreadsheetReadError, read_spreadsheet
from ..logging.error_log import ErrorLogBuffer, ErrorRecord
from ..logging.init import enable_debug, log_summary, setup_logging
from ..models.config_models import ImportConfig
from ..services.analyzer import analyze
from ..services.orchestrator import ImportOrchestrator, ProcessingError, ProcessOutcome
from ..services.processor import CashflowImportProcessor
from ..services.progress import ProgressTracker, is_tty_enabled
from ..services.session_store import ImportSessionManager, ImportSessionNotFoundError
from ..services.summary import render_summary_line

"""CLI entrypoint for the cashflow import workflow.

Subcommands mirror the import wizard steps:
- upload FILE / paste [FILE|-]: analyze input, open an import session
- transform IMPORT_ID --request R.json: dry run
- commit IMPORT_ID --request R.json: persist
- inspect FILE: print grid + analysis without opening a session

Results are printed as JSON on stdout; logs go to stderr.
"""

EXIT_SUCCESS_ALL = 0
EXIT_PARTIAL_FAILURE = 2
EXIT_FATAL = 1

# rows above which transform/commit show a progress bar (TTY only)
PROGRESS_MIN_ROWS = 500


@contextmanager
def _db_connection(cfg: ImportConfig) -> Iterator[Any]:  # pragma: no cover (thin wrapper)
    """Provide a psycopg2 cursor.

    Connection settings, highest priority first:
        1. DATABASE_URL / PGDSN (whole DSN)
        2. PGHOST / PGPORT / PGUSER / PGPASSWORD / PGDATABASE
        3. the ``database`` section of config/import.yml
    ``.env`` is loaded into the environment before this runs.
    """
    db_cfg = cfg.database
    dsn = os.getenv("DATABASE_URL") or os.getenv("PGDSN") or db_cfg.dsn
    if not dsn:
        host = os.getenv("PGHOST", db_cfg.host or "localhost")
        port = os.getenv("PGPORT", str(db_cfg.port) if db_cfg.port else "5432")
        user = os.getenv("PGUSER", db_cfg.user or "postgres")
        password = os.getenv("PGPASSWORD", db_cfg.password or "")
        database = os.getenv("PGDATABASE", db_cfg.database or "postgres")
        dsn = f"host={host} port={port} user={user} dbname={database}"
        if password:
            dsn += f" password={password}"

    conn = psycopg2.connect(dsn)
    # transactions are driven explicitly by PostgresLedger.atomic()
    conn.autocommit = True
    cur = conn.cursor()
    try:
        yield cur
    finally:
        cur.close()
        conn.close()


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env using python-dotenv (its values win over the process environment)."""
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="cashflow_import", description="Bank statement / spreadsheet importer")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    p.add_argument("--config", type=Path, default=None, help=f"Config file (default: {CONFIG_PATH})")
    p.add_argument("--user-id", type=int, default=None, help="Owner of the import (default: $CASHFLOW_USER_ID)")
    sub = p.add_subparsers(dest="command", required=True)

    up = sub.add_parser("upload", help="Analyze a spreadsheet file and open an import session")
    up.add_argument("file", type=Path)
    up.add_argument("--name", default=None, help="Original file name, if FILE is a temporary path")

    paste = sub.add_parser("paste", help="Analyze pasted tab-separated text and open an import session")
    paste.add_argument("file", nargs="?", default="-", help="Text file with the pasted content, '-' for stdin")

    for name, text in (("transform", "Dry-run an import"), ("commit", "Persist an import")):
        cmd = sub.add_parser(name, help=text)
        cmd.add_argument("import_id")
        cmd.add_argument("--request", type=Path, required=True, help="JSON request with the column mapping")

    inspect = sub.add_parser("inspect", help="Print grid + analysis of a file without opening a session")
    inspect.add_argument("file", type=Path)
    return p.parse_args(argv)


def _print_json(data: Any) -> None:
    json.dump(data, sys.stdout, ensure_ascii=False, indent=2, default=str)
    sys.stdout.write("\n")


def _resolve_config(path: Path | None) -> ImportConfig:
    if path is not None:
        return load_config(path)
    if CONFIG_PATH.exists():
        return load_config(CONFIG_PATH)
    return default_config()


def _resolve_user_id(value: int | None) -> int:
    if value is not None:
        return value
    env = os.getenv("CASHFLOW_USER_ID")
    if env is None or not env.strip().isdigit():
        raise ConfigError("a user id is required (--user-id or CASHFLOW_USER_ID)")
    return int(env)


def _read_request(path: Path) -> dict[str, Any]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise MappingError(f"request file not found: {path}") from e
    except json.JSONDecodeError as e:
        raise MappingError(f"request file is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise MappingError("request file must contain a JSON object")
    return data


def _read_paste(source: str) -> str:
    if source == "-":
        return sys.stdin.read()
    return Path(source).read_text(encoding="utf-8")


def _inspect(cfg: ImportConfig, path: Path) -> int:
    dataset = read_spreadsheet(path, max_rows=cfg.limits.max_file_rows, max_columns=cfg.limits.max_columns)
    analysis = analyze(dataset.rows, dataset.total_columns, reference=date.today())
    _print_json(
        {
            "meta": {"total_rows": dataset.total_rows, "total_columns": dataset.total_columns},
            **analysis.to_dict(),
        }
    )
    return EXIT_SUCCESS_ALL


def _report_outcome(outcome: ProcessOutcome, error_log: ErrorLogBuffer) -> int:
    result = outcome.result
    _print_json(outcome.to_dict())
    summary_line = render_summary_line(result.summary, result.errors)
    # log_summary adds the "SUMMARY " prefix
    log_summary(summary_line[len("SUMMARY "):])
    if not result.errors:
        return EXIT_SUCCESS_ALL
    error_log.extend_row_errors(outcome.import_id, result.errors)
    path = error_log.flush()
    setup_logging().warning("%d row(s) rejected; details in %s", len(result.errors), path)
    return EXIT_PARTIAL_FAILURE


def _progress_factory(rows: int) -> ProgressTracker:
    return ProgressTracker(rows, enabled=rows >= PROGRESS_MIN_ROWS and is_tty_enabled())


def main(argv: list[str] | None = None) -> int:
    logger = setup_logging()

    # None only: an explicit [] must not fall back to sys.argv (pytest args)
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    if args.debug:
        enable_debug()
    _load_env_file(Path(".env"), override=True)

    error_log = ErrorLogBuffer()
    import_id = getattr(args, "import_id", None) or "-"
    try:
        cfg = _resolve_config(args.config)
        if args.command == "inspect":
            return _inspect(cfg, args.file)

        user_id = _resolve_user_id(args.user_id)
        sessions = ImportSessionManager(Path(cfg.session_directory), ttl_minutes=cfg.session_ttl_minutes)

        if args.command in ("upload", "paste"):
            # analysis needs no database
            orchestrator = ImportOrchestrator(cfg, sessions)
            if args.command == "upload":
                upload = orchestrator.upload(user_id, args.file, original_name=args.name)
            else:
                upload = orchestrator.paste(user_id, _read_paste(args.file))
            _print_json(upload.to_dict())
            logger.info("import_id=%s expires_at=%s", upload.import_id, upload.session.expires_at.isoformat())
            return EXIT_SUCCESS_ALL

        request_data = _read_request(args.request)
        with _db_connection(cfg) as cur:
            orchestrator = ImportOrchestrator(
                cfg, sessions, PostgresDirectory(cur), CashflowImportProcessor(PostgresLedger(cur))
            )
            if args.command == "transform":
                outcome = orchestrator.transform(user_id, args.import_id, request_data, progress=_progress_factory)
            else:
                outcome = orchestrator.commit(user_id, args.import_id, request_data, progress=_progress_factory)
        return _report_outcome(outcome, error_log)

    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL
    except ImportSessionNotFoundError as e:
        logger.error(str(e))
        error_log.append(ErrorRecord.create(import_id, -1, "SESSION_NOT_FOUND", str(e)))
    except MappingError as e:
        logger.error(f"request: {e}")
        error_log.append(ErrorRecord.create(import_id, -1, "INVALID_REQUEST", str(e)))
    except (ProcessingError, SpreadsheetReadError) as e:
        logger.error(f"input: {e}")
    except LedgerError as e:
        logger.error(f"commit rolled back: {e}")
        error_log.append(ErrorRecord.create(import_id, -1, "TRANSACTION_ERROR", str(e)))
    except psycopg2.Error as e:
        logger.error(f"database: {e}")
    error_log.flush()
    return EXIT_FATAL


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
