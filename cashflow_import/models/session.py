from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

from .analysis import DatasetAnalysis, RowInsight

"""Import session record.

Bridges the upload/paste step and the transform/commit steps of the import
wizard. ``payload`` holds JSON-ready data only (rows, analysis, meta and the
source description) so any keyed store can persist it.
"""

__all__ = [
    "ImportSession",
    "build_payload",
]


def build_payload(
    analysis: DatasetAnalysis,
    total_rows: int,
    total_columns: int,
    *,
    source: str,
    file_info: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "source": source,
        "meta": {"total_rows": total_rows, "total_columns": total_columns},
        "rows": [r.to_dict() for r in analysis.rows],
        "analysis": analysis.analysis_dict(),
    }
    if file_info is not None:
        payload["file"] = dict(file_info)
    return payload


@dataclass(frozen=True)
class ImportSession:
    id: str
    user_id: int
    created_at: datetime
    expires_at: datetime
    payload: dict[str, Any] = field(default_factory=dict)
    updated_at: datetime | None = None

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def row_insights(self) -> list[RowInsight]:
        return [RowInsight.from_dict(r) for r in self.payload.get("rows", [])]

    @property
    def analysis(self) -> dict[str, Any]:
        return self.payload.get("analysis", {})

    def with_payload(self, payload: dict[str, Any], updated_at: datetime) -> ImportSession:
        return replace(self, payload=payload, updated_at=updated_at)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "user_id": self.user_id,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "payload": self.payload,
        }
        if self.updated_at is not None:
            data["updated_at"] = self.updated_at.isoformat()
        return data

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> ImportSession:
        updated = data.get("updated_at")
        return ImportSession(
            id=str(data["id"]),
            user_id=int(data["user_id"]),
            created_at=datetime.fromisoformat(data["created_at"]),
            expires_at=datetime.fromisoformat(data["expires_at"]),
            payload=dict(data.get("payload") or {}),
            updated_at=datetime.fromisoformat(updated) if updated else None,
        )
