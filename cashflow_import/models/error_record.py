from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any

from .grid import values_from_json

"""Row-level error models.

``RowError`` is the diagnostic returned to the caller for every rejected row
(one per row; the batch keeps going). ``ErrorRecord`` is its JSON Lines log
form, written by ``ErrorLogBuffer`` with a fixed key set.
"""

__all__ = [
    "RowError",
    "ErrorRecord",
]


@dataclass(frozen=True)
class RowError:
    """Per-row validation failure, addressable by grid row index.

    Attributes:
        row_index: 0-based grid index of the rejected row
        field: mapping field that failed (date, amount, type, posting_date,
            description, category_id, cash_flow_source_id)
        message: user-facing explanation
        values: the row's raw values, for display next to the error
    """
    row_index: int
    field: str
    message: str
    values: dict[int, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "row_index": self.row_index,
            "field": self.field,
            "message": self.message,
            "values": {str(k): v for k, v in self.values.items()},
        }

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> RowError:
        return RowError(
            row_index=int(data["row_index"]),
            field=str(data["field"]),
            message=str(data["message"]),
            values=values_from_json(data.get("values")),
        )


@dataclass(frozen=True)
class ErrorRecord:
    """Structured error log line.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        import_id: import session the row belongs to
        row: grid row index. Use -1 for request-level failures
        field: failing mapping field, or an UPPER_SNAKE code for request-level failures
        message: description
    """
    timestamp: str
    import_id: str
    row: int
    field: str
    message: str

    @staticmethod
    def create(import_id: str, row: int, field: str, message: str) -> ErrorRecord:
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return ErrorRecord(timestamp=ts, import_id=import_id, row=row, field=field, message=message)

    @staticmethod
    def from_row_error(import_id: str, error: RowError) -> ErrorRecord:
        return ErrorRecord.create(import_id, error.row_index, error.field, error.message)

    def to_json_line(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False)
