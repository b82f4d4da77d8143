from __future__ import annotations

import logging
import shutil
import uuid
from collections.abc import Callable, Mapping
from contextlib import nullcontext
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Any

from ..config.request import parse_import_request
from ..db.ledger import Directory
from ..excel.clipboard import parse_clipboard
from ..excel.reader import read_spreadsheet
from ..models.config_models import ImportConfig
from ..models.grid import TabularDataset
from ..models.processing_result import STATUS_OK, CommitResult, TransformResult
from ..models.session import ImportSession, build_payload
from .analyzer import analyze
from .processor import CashflowImportProcessor
from .progress import ProgressTracker
from .session_store import ImportSessionManager

"""Import workflow orchestration.

Coordinates the four steps of the import wizard for one user request each:

- ``upload``: transient copy of the file -> reader -> analyzer -> session
- ``paste``: clipboard text -> parser -> analyzer -> session
- ``transform``: session + request -> processor dry run
- ``commit``: session + request -> processor commit, session deleted on success

Request-level problems raise (``ProcessingError`` subclasses,
``SpreadsheetReadError``, ``ImportSessionNotFoundError``, ``MappingError``,
``LedgerError``); row-level problems come back inside ``ProcessOutcome``.
"""

__all__ = [
    "ProcessingError",
    "UploadRejectedError",
    "ClipboardEmptyError",
    "ClipboardTooLargeError",
    "UploadResult",
    "ProcessOutcome",
    "ImportOrchestrator",
]

logger = logging.getLogger(__name__)

MSG_CLIPBOARD_EMPTY = "no pasted data was recognized; copy a table from a spreadsheet and try again"

ProgressFactory = Callable[[int], ProgressTracker]


class ProcessingError(Exception):
    """Base exception for request-level import failures."""
    pass


class UploadRejectedError(ProcessingError):
    """File refused before reading (missing, extension, size)."""


class ClipboardEmptyError(ProcessingError):
    def __init__(self) -> None:
        super().__init__(MSG_CLIPBOARD_EMPTY)


class ClipboardTooLargeError(ProcessingError):
    pass


@dataclass(frozen=True)
class UploadResult:
    """Outcome of upload/paste: the new session and its analysis."""
    session: ImportSession

    @property
    def import_id(self) -> str:
        return self.session.id

    def to_dict(self) -> dict[str, Any]:
        payload = self.session.payload
        data: dict[str, Any] = {
            "import_id": self.session.id,
            "source": payload.get("source"),
            "meta": dict(payload.get("meta", {})),
            "expires_at": self.session.expires_at.isoformat(),
            "rows": list(payload.get("rows", [])),
        }
        if "file" in payload:
            data["file"] = dict(payload["file"])
        data.update(self.session.analysis)
        return data


@dataclass(frozen=True)
class ProcessOutcome:
    """Transform/commit result plus the status a transport would return (200/422)."""
    import_id: str
    result: TransformResult | CommitResult

    @property
    def status(self) -> int:
        return self.result.status

    @property
    def ok(self) -> bool:
        return self.status == STATUS_OK

    def to_dict(self) -> dict[str, Any]:
        data = {"import_id": self.import_id, "status": self.status}
        data.update(self.result.to_dict())
        return data


class ImportOrchestrator:
    """Runs the import workflow against a session store, directory and processor.

    Args:
        config: limits, allowed extensions and the transient upload directory
        sessions: user-scoped import session store
        directory: category / cash-flow-source lookup (queried once per request);
            only needed for transform/commit
        processor: transform/commit engine bound to a ledger; only needed for
            transform/commit
        today: reference-date provider for partial free-form dates
    """

    def __init__(
        self,
        config: ImportConfig,
        sessions: ImportSessionManager,
        directory: Directory | None = None,
        processor: CashflowImportProcessor | None = None,
        *,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.config = config
        self.sessions = sessions
        self.directory = directory
        self.processor = processor
        self._today = today

    # ------------------------------------------------------------------
    # upload / paste
    # ------------------------------------------------------------------
    def _check_upload(self, path: Path, extension: str) -> int:
        if not path.is_file():
            raise UploadRejectedError(f"file not found: {path}")
        if extension not in self.config.allowed_extensions:
            allowed = ", ".join(self.config.allowed_extensions)
            raise UploadRejectedError(f"unsupported file type .{extension} (allowed: {allowed})")
        size = path.stat().st_size
        if size > self.config.limits.max_upload_bytes:
            limit_mb = self.config.limits.max_upload_bytes // (1024 * 1024)
            raise UploadRejectedError(f"file is too large ({size} bytes, limit {limit_mb}MB)")
        return size

    def upload(self, user_id: int, path: Path, original_name: str | None = None) -> UploadResult:
        """Read and analyze a spreadsheet file and open an import session for it.

        The file is read from a transient per-user copy that is always removed
        afterwards; only the analyzed grid is kept (in the session).

        Raises:
            UploadRejectedError: missing file, disallowed extension or too large
            SpreadsheetReadError: unreadable or corrupt workbook
        """
        name = original_name or path.name
        extension = Path(name).suffix.lower().lstrip(".")
        size = self._check_upload(path, extension)

        staging_dir = Path(self.config.upload_directory) / str(int(user_id))
        staging_dir.mkdir(parents=True, exist_ok=True)
        staged = staging_dir / f"{uuid.uuid4()}.{extension}"
        shutil.copyfile(path, staged)
        try:
            dataset = read_spreadsheet(
                staged,
                max_rows=self.config.limits.max_file_rows,
                max_columns=self.config.limits.max_columns,
            )
        finally:
            staged.unlink(missing_ok=True)

        file_info = {"name": name, "extension": extension, "size": size}
        session = self._open_session(user_id, dataset, source="file", file_info=file_info)
        logger.info(
            "upload import_id=%s file=%s rows=%d columns=%d",
            session.id,
            name,
            dataset.total_rows,
            dataset.total_columns,
        )
        return UploadResult(session=session)

    def paste(self, user_id: int, content: str) -> UploadResult:
        """Parse pasted tab-separated text and open an import session for it.

        Raises:
            ClipboardTooLargeError: content exceeds the character cap
            ClipboardEmptyError: nothing tabular was found
        """
        limit = self.config.limits.max_clipboard_chars
        if len(content) > limit:
            raise ClipboardTooLargeError(f"pasted content is too large ({len(content)} characters, limit {limit})")
        dataset = parse_clipboard(
            content,
            max_rows=self.config.limits.max_clipboard_rows,
            max_columns=self.config.limits.max_columns,
        )
        if dataset.total_rows == 0:
            raise ClipboardEmptyError()
        session = self._open_session(user_id, dataset, source="clipboard")
        logger.info(
            "paste import_id=%s rows=%d columns=%d", session.id, dataset.total_rows, dataset.total_columns
        )
        return UploadResult(session=session)

    def _open_session(
        self,
        user_id: int,
        dataset: TabularDataset,
        *,
        source: str,
        file_info: Mapping[str, Any] | None = None,
    ) -> ImportSession:
        analysis = analyze(dataset.rows, dataset.total_columns, reference=self._today())
        payload = build_payload(
            analysis, dataset.total_rows, dataset.total_columns, source=source, file_info=file_info
        )
        return self.sessions.create(user_id, payload)

    # ------------------------------------------------------------------
    # transform / commit
    # ------------------------------------------------------------------
    def transform(
        self,
        user_id: int,
        import_id: str,
        request_data: Mapping[str, Any],
        *,
        progress: ProgressFactory | None = None,
    ) -> ProcessOutcome:
        """Dry run. Raises ImportSessionNotFoundError / MappingError for request-level failures."""
        directory, processor = self._backends()
        session = self.sessions.require(user_id, import_id)
        request = parse_import_request(request_data)
        categories, sources = directory.lookup(user_id)
        with self._progress(progress, session) as tracker:
            result = processor.transform(
                session, user_id, request, categories, sources, progress=tracker, reference=self._today()
            )
        return ProcessOutcome(import_id=session.id, result=result)

    def commit(
        self,
        user_id: int,
        import_id: str,
        request_data: Mapping[str, Any],
        *,
        progress: ProgressFactory | None = None,
    ) -> ProcessOutcome:
        """Persist the batch; the session is deleted only when the commit succeeded.

        Raises:
            ImportSessionNotFoundError: session missing or expired
            MappingError: malformed request
            LedgerError: persistence failed and was rolled back
        """
        directory, processor = self._backends()
        session = self.sessions.require(user_id, import_id)
        request = parse_import_request(request_data)
        categories, sources = directory.lookup(user_id)
        with self._progress(progress, session) as tracker:
            result = processor.commit(
                session, user_id, request, categories, sources, progress=tracker, reference=self._today()
            )
        if result.committed:
            self.sessions.delete(user_id, session.id)
            logger.debug("import session deleted after commit id=%s", session.id)
        return ProcessOutcome(import_id=session.id, result=result)

    def _backends(self) -> tuple[Directory, CashflowImportProcessor]:
        if self.directory is None or self.processor is None:
            raise ProcessingError("transform/commit need a directory and a processor")
        return self.directory, self.processor

    def _progress(self, factory: ProgressFactory | None, session: ImportSession) -> Any:
        if factory is None:
            return nullcontext()
        return factory(len(session.payload.get("rows", [])))
