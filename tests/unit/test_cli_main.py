from __future__ import annotations

import io
import json
from contextlib import contextmanager
from datetime import date
from pathlib import Path

import pytest

import cashflow_import.cli.__main__ as cli
from cashflow_import.db.ledger import LedgerError
from cashflow_import.logging.init import reset_logging

CSV = "Date,Description,Amount\n2024-02-01,Salary,10000\n2024-02-03,Supermarket,-350.45\n"


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.delenv("CASHFLOW_USER_ID", raising=False)
    reset_logging()
    yield
    reset_logging()


@pytest.fixture()
def backends(monkeypatch, ledger, directory):
    """Route transform/commit to the in-memory ledger and directory."""

    @contextmanager
    def fake_connection(cfg):
        yield object()

    monkeypatch.setattr(cli, "_db_connection", fake_connection)
    monkeypatch.setattr(cli, "PostgresLedger", lambda cur: ledger)
    monkeypatch.setattr(cli, "PostgresDirectory", lambda cur: directory)
    return ledger


def _write_request(path: Path, assignments: dict) -> Path:
    path.write_text(
        json.dumps(
            {
                "mapping": {
                    "date": {"column": 0},
                    "description": {"column": 1},
                    "amount": {"mode": "single", "column": 2},
                },
                "header_row_index": 0,
                "row_assignments": assignments,
            }
        ),
        encoding="utf-8",
    )
    return path


def _upload(temp_workdir: Path, capsys) -> str:
    statement = temp_workdir / "data" / "statement.csv"
    statement.write_text(CSV, encoding="utf-8")
    assert cli.main(["--user-id", "7", "upload", str(statement)]) == cli.EXIT_SUCCESS_ALL
    return json.loads(capsys.readouterr().out)["import_id"]


def _error_log_lines(temp_workdir: Path) -> list[dict]:
    lines = []
    for path in sorted((temp_workdir / "logs").glob("import-errors-*.log")):
        lines += [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
    return lines


def test_inspect_prints_analysis(temp_workdir: Path, capsys):
    path = temp_workdir / "data" / "statement.csv"
    path.write_text(CSV, encoding="utf-8")

    code = cli.main(["inspect", str(path)])

    assert code == 0
    out = json.loads(capsys.readouterr().out)
    assert out["meta"] == {"total_rows": 3, "total_columns": 3}
    assert out["columns"][0]["header_guess"] == "Date"
    assert len(out["rows"]) == 3


def test_upload_requires_user_id(write_config, temp_workdir: Path, capsys):
    path = temp_workdir / "data" / "statement.csv"
    path.write_text(CSV, encoding="utf-8")
    code = cli.main(["upload", str(path)])
    assert code == cli.EXIT_FATAL
    assert "ERROR config: a user id is required" in capsys.readouterr().err


def test_upload_opens_session(write_config, temp_workdir: Path, capsys, monkeypatch):
    monkeypatch.setenv("CASHFLOW_USER_ID", "7")
    path = temp_workdir / "data" / "statement.csv"
    path.write_text(CSV, encoding="utf-8")

    code = cli.main(["upload", str(path)])

    captured = capsys.readouterr()
    assert code == 0
    out = json.loads(captured.out)
    assert out["source"] == "file"
    assert out["file"] == {"name": "statement.csv", "extension": "csv", "size": len(CSV.encode())}
    assert (temp_workdir / "storage" / "sessions" / "7" / f"{out['import_id']}.json").exists()
    assert list((temp_workdir / "storage" / "uploads" / "7").iterdir()) == []
    assert f"INFO import_id={out['import_id']}" in captured.err


def test_upload_rejects_extension(write_config, temp_workdir: Path, capsys):
    path = temp_workdir / "data" / "statement.pdf"
    path.write_bytes(b"%PDF")
    assert cli.main(["--user-id", "7", "upload", str(path)]) == cli.EXIT_FATAL
    assert "ERROR input: unsupported file type .pdf" in capsys.readouterr().err


def test_paste_from_stdin(write_config, temp_workdir: Path, capsys, monkeypatch):
    monkeypatch.setattr("sys.stdin", io.StringIO("Date\tAmount\n01/02/2024\t5\n"))
    assert cli.main(["--user-id", "7", "paste"]) == 0
    out = json.loads(capsys.readouterr().out)
    assert out["source"] == "clipboard"
    assert out["meta"] == {"total_rows": 2, "total_columns": 2}


def test_paste_empty_is_fatal(write_config, temp_workdir: Path, capsys):
    path = temp_workdir / "data" / "paste.txt"
    path.write_text("   \n", encoding="utf-8")
    assert cli.main(["--user-id", "7", "paste", str(path)]) == cli.EXIT_FATAL
    assert "no pasted data was recognized" in capsys.readouterr().err


def test_transform_success(write_config, temp_workdir: Path, capsys, backends):
    import_id = _upload(temp_workdir, capsys)
    request = _write_request(
        temp_workdir / "request.json",
        {"1": {"category_id": 1, "cash_flow_source_id": 10}, "2": {"category_id": 2, "cash_flow_source_id": 20}},
    )

    code = cli.main(["--user-id", "7", "transform", import_id, "--request", str(request)])

    captured = capsys.readouterr()
    assert code == cli.EXIT_SUCCESS_ALL
    out = json.loads(captured.out)
    assert out["status"] == 200
    assert out["summary"]["count"] == 2
    assert "SUMMARY rows=2 income=10000 expense=350.45 errors=0 months=2024-02" in captured.err
    assert backends.records == []


def test_transform_partial_failure(write_config, temp_workdir: Path, capsys, backends):
    import_id = _upload(temp_workdir, capsys)
    request = _write_request(temp_workdir / "request.json", {"1": {"category_id": 2}})

    code = cli.main(["--user-id", "7", "transform", import_id, "--request", str(request)])

    captured = capsys.readouterr()
    assert code == cli.EXIT_PARTIAL_FAILURE
    assert json.loads(captured.out)["status"] == 422
    assert "errors=1" in captured.err
    records = _error_log_lines(temp_workdir)
    assert [(r["import_id"], r["row"], r["field"]) for r in records] == [(import_id, 1, "category_id")]


def test_commit_persists_and_deletes_session(write_config, temp_workdir: Path, capsys, backends):
    import_id = _upload(temp_workdir, capsys)
    request = _write_request(temp_workdir / "request.json", {})

    code = cli.main(["--user-id", "7", "commit", import_id, "--request", str(request)])

    assert code == 0
    out = json.loads(capsys.readouterr().out)
    assert out["committed"] is True
    assert out["created_ids"] == [1, 2]
    assert len(backends.records) == 2
    assert not (temp_workdir / "storage" / "sessions" / "7" / f"{import_id}.json").exists()


def test_unknown_session(write_config, temp_workdir: Path, capsys, backends):
    request = _write_request(temp_workdir / "request.json", {})
    missing = "0b6f1d2e-0000-4000-8000-000000000000"

    code = cli.main(["--user-id", "7", "transform", missing, "--request", str(request)])

    assert code == cli.EXIT_FATAL
    assert "has expired" in capsys.readouterr().err
    assert [r["field"] for r in _error_log_lines(temp_workdir)] == ["SESSION_NOT_FOUND"]


def test_invalid_request(write_config, temp_workdir: Path, capsys, backends):
    import_id = _upload(temp_workdir, capsys)
    request = temp_workdir / "request.json"
    request.write_text(json.dumps({"mapping": {"date": {"column": 0}}}), encoding="utf-8")

    code = cli.main(["--user-id", "7", "transform", import_id, "--request", str(request)])

    assert code == cli.EXIT_FATAL
    assert "ERROR request: invalid import request" in capsys.readouterr().err
    assert [r["row"] for r in _error_log_lines(temp_workdir)] == [-1]


def test_commit_failure_is_fatal(write_config, temp_workdir: Path, capsys, backends):
    import_id = _upload(temp_workdir, capsys)
    request = _write_request(temp_workdir / "request.json", {})
    backends.fail_on_insert = True

    code = cli.main(["--user-id", "7", "commit", import_id, "--request", str(request)])

    assert code == cli.EXIT_FATAL
    assert "ERROR commit rolled back:" in capsys.readouterr().err
    assert [r["field"] for r in _error_log_lines(temp_workdir)] == ["TRANSACTION_ERROR"]
    assert (temp_workdir / "storage" / "sessions" / "7" / f"{import_id}.json").exists()


def test_debug_flag(temp_workdir: Path, capsys):
    path = temp_workdir / "data" / "statement.csv"
    path.write_text(CSV, encoding="utf-8")
    assert cli.main(["--debug", "inspect", str(path)]) == 0
    assert "DEBUG debug mode enabled" in capsys.readouterr().err


def test_invalid_config_is_fatal(write_config, temp_workdir: Path, capsys):
    write_config.write_text("unknown_key: 1\n", encoding="utf-8")
    assert cli.main(["--user-id", "7", "paste"]) == cli.EXIT_FATAL
    assert "ERROR config: config validation failed" in capsys.readouterr().err


def test_inspect_passes_reference_date(temp_workdir: Path, capsys, monkeypatch):
    path = temp_workdir / "data" / "statement.csv"
    path.write_text(CSV, encoding="utf-8")
    seen = {}
    real_analyze = cli.analyze

    def recording_analyze(rows, total_columns, reference=None):
        seen["reference"] = reference
        return real_analyze(rows, total_columns, reference=reference)

    monkeypatch.setattr(cli, "analyze", recording_analyze)
    assert cli.main(["inspect", str(path)]) == 0
    assert seen["reference"] == date.today()
