from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path

from ..models.error_record import ErrorRecord, RowError

"""Row error log buffering.

Rejected rows (and request-level failures) of a CLI run are buffered and
flushed as JSON Lines with a fixed key set
(timestamp, import_id, row, field, message) to
``logs/import-errors-YYYYMMDD-HHMMSS.log`` (UTC). The file is only created
when there is something to write.
"""

__all__ = [
    "ErrorRecord",
    "ErrorLogBuffer",
    "LOGS_DIR",
]

LOGS_DIR = Path("./logs")
TIMESTAMP_FMT = "%Y%m%d-%H%M%S"


class ErrorLogBuffer:
    """In-memory buffer for error records. Flush appends JSON Lines.

    The file path is fixed on first access; execution is serial so no locking.
    """

    def __init__(self, logs_dir: Path = LOGS_DIR) -> None:
        self.logs_dir = logs_dir
        self._records: list[ErrorRecord] = []
        self._file_path: Path | None = None

    @property
    def file_path(self) -> Path:
        if self._file_path is None:
            stamp = datetime.now(UTC).strftime(TIMESTAMP_FMT)
            self._file_path = self.logs_dir / f"import-errors-{stamp}.log"
        return self._file_path

    def append(self, record: ErrorRecord) -> None:
        self._records.append(record)

    def extend_row_errors(self, import_id: str, errors: Iterable[RowError]) -> None:
        for error in errors:
            self._records.append(ErrorRecord.from_row_error(import_id, error))

    def __len__(self) -> int:  # pragma: no cover (trivial)
        return len(self._records)

    def flush(self) -> Path | None:
        """Write buffered records; returns the log path, or None when nothing was buffered."""
        if not self._records:
            return None
        self.logs_dir.mkdir(parents=True, exist_ok=True)
        fp = self.file_path
        with fp.open("a", encoding="utf-8") as f:
            for r in self._records:
                f.write(r.to_json_line() + "\n")
        self._records.clear()
        return fp
