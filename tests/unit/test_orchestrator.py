from __future__ import annotations

from datetime import date
from pathlib import Path

import pytest

from cashflow_import.config.loader import load_config
from cashflow_import.config.request import MappingError
from cashflow_import.excel.reader import SpreadsheetReadError
from cashflow_import.models.config_models import ImportConfig, LimitsConfig
from cashflow_import.services.orchestrator import (
    ClipboardEmptyError,
    ClipboardTooLargeError,
    ImportOrchestrator,
    ProcessingError,
    UploadRejectedError,
)
from cashflow_import.services.processor import CashflowImportProcessor
from cashflow_import.services.session_store import ImportSessionNotFoundError

CSV = "Date,Description,Amount\n2024-02-01,Salary,10000\n2024-02-03,Supermarket,-350.45\n"

REQUEST = {
    "mapping": {
        "date": {"column": 0},
        "description": {"column": 1},
        "amount": {"mode": "single", "column": 2},
    },
    "header_row_index": 0,
}


@pytest.fixture()
def config(write_config: Path) -> ImportConfig:
    return load_config(write_config)


@pytest.fixture()
def orchestrator(config, session_store, directory, ledger) -> ImportOrchestrator:
    return ImportOrchestrator(
        config, session_store, directory, CashflowImportProcessor(ledger), today=lambda: date(2024, 3, 1)
    )


@pytest.fixture()
def statement_file(temp_workdir: Path) -> Path:
    path = temp_workdir / "data" / "statement.csv"
    path.write_text(CSV, encoding="utf-8")
    return path


def test_upload_creates_session(orchestrator, statement_file, session_store, temp_workdir):
    result = orchestrator.upload(7, statement_file)

    session = session_store.get(7, result.import_id)
    assert session is not None
    assert session.payload["meta"] == {"total_rows": 3, "total_columns": 3}
    assert session.payload["file"]["name"] == "statement.csv"
    data = result.to_dict()
    assert data["import_id"] == result.import_id
    assert data["header_candidates"][0] == 0
    assert len(data["rows"]) == 3
    assert data["detected_date_range"] == {"min": "2024-02-01", "max": "2024-02-03"}
    # the transient copy is gone
    assert list((temp_workdir / "storage" / "uploads" / "7").iterdir()) == []


def test_upload_uses_original_name_for_extension(orchestrator, temp_workdir):
    path = temp_workdir / "data" / "php-upload-tmp"
    path.write_text(CSV, encoding="utf-8")
    result = orchestrator.upload(7, path, original_name="export.CSV")
    assert result.to_dict()["file"] == {"name": "export.CSV", "extension": "csv", "size": len(CSV)}


def test_upload_rejections(orchestrator, temp_workdir):
    with pytest.raises(UploadRejectedError, match="not found"):
        orchestrator.upload(7, temp_workdir / "data" / "missing.csv")

    pdf = temp_workdir / "data" / "statement.pdf"
    pdf.write_bytes(b"%PDF")
    with pytest.raises(UploadRejectedError, match="unsupported file type"):
        orchestrator.upload(7, pdf)

    big = temp_workdir / "data" / "big.csv"
    big.write_bytes(b"a" * (1024 * 1024 + 1))
    with pytest.raises(UploadRejectedError, match="too large"):
        orchestrator.upload(7, big)


def test_corrupt_upload_leaves_no_copy(orchestrator, temp_workdir):
    broken = temp_workdir / "data" / "broken.xlsx"
    broken.write_bytes(b"garbage")
    with pytest.raises(SpreadsheetReadError):
        orchestrator.upload(7, broken)
    assert list((temp_workdir / "storage" / "uploads" / "7").iterdir()) == []


def test_paste(orchestrator, session_store):
    result = orchestrator.paste(7, "Date\tDescription\tAmount\n01/02/2024\tSalary\t10000\n")
    assert result.session.payload["source"] == "clipboard"
    assert "file" not in result.to_dict()
    assert session_store.get(7, result.import_id) is not None


def test_paste_limits(orchestrator):
    with pytest.raises(ClipboardEmptyError):
        orchestrator.paste(7, " \n\t ")
    with pytest.raises(ClipboardTooLargeError):
        orchestrator.paste(7, "x" * 5001)


def test_transform_then_commit(orchestrator, statement_file, session_store, ledger, directory):
    upload = orchestrator.upload(7, statement_file)

    preview = orchestrator.transform(7, upload.import_id, REQUEST)
    assert preview.ok
    assert preview.status == 200
    assert preview.to_dict()["summary"]["count"] == 2
    assert session_store.get(7, upload.import_id) is not None

    outcome = orchestrator.commit(7, upload.import_id, REQUEST)
    assert outcome.ok
    assert outcome.result.created_ids == [1, 2]
    assert [r.posting_date for r in ledger.records] == [r.transaction_date for r in ledger.records]
    assert session_store.get(7, upload.import_id) is None
    # one directory lookup per request
    assert directory.calls == 2


def test_failed_commit_keeps_session(orchestrator, statement_file, session_store, ledger):
    upload = orchestrator.upload(7, statement_file)
    request = dict(REQUEST, row_assignments={"1": {"category_id": 2}})

    outcome = orchestrator.commit(7, upload.import_id, request)

    assert not outcome.ok
    assert outcome.status == 422
    assert outcome.to_dict()["committed"] is False
    assert ledger.records == []
    assert session_store.get(7, upload.import_id) is not None


def test_other_users_session_is_not_found(orchestrator, statement_file):
    upload = orchestrator.upload(7, statement_file)
    with pytest.raises(ImportSessionNotFoundError):
        orchestrator.transform(8, upload.import_id, REQUEST)


def test_bad_request_is_mapping_error(orchestrator, statement_file):
    upload = orchestrator.upload(7, statement_file)
    with pytest.raises(MappingError):
        orchestrator.transform(7, upload.import_id, {"mapping": {}})


def test_progress_factory_gets_row_count(orchestrator, statement_file):
    upload = orchestrator.upload(7, statement_file)
    seen = []

    class Tracker:
        def __init__(self, total):
            seen.append(total)
            self.advanced = 0

        def advance(self, count=1):
            self.advanced += count

        def __enter__(self):
            return self

        def __exit__(self, *exc):
            return None

    orchestrator.transform(7, upload.import_id, REQUEST, progress=Tracker)
    assert seen == [3]


def test_transform_without_backends(config, session_store, statement_file):
    orchestrator = ImportOrchestrator(config, session_store)
    upload = orchestrator.upload(7, statement_file)
    with pytest.raises(ProcessingError, match="directory and a processor"):
        orchestrator.transform(7, upload.import_id, REQUEST)


def test_row_cap_from_config(session_store, statement_file, tmp_path):
    config = ImportConfig(upload_directory=str(tmp_path / "uploads"), limits=LimitsConfig(max_file_rows=2))
    result = ImportOrchestrator(config, session_store).upload(7, statement_file)
    assert result.session.payload["meta"]["total_rows"] == 2
