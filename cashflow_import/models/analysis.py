from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from .grid import values_from_json

"""Dataset analysis models.

Produced by the dataset analyzer and stored verbatim in the import session so
that later transform/commit calls never re-read the source file.
"""

__all__ = [
    "ColumnProfile",
    "RowInsight",
    "DateRange",
    "DatasetAnalysis",
    "SKIP_EMPTY_ROW",
    "SKIP_SUMMARY_ROW",
    "SKIP_SHORT_SINGLE_VALUE",
    "SKIP_METADATA_ROW",
]

SKIP_EMPTY_ROW = "empty_row"
SKIP_SUMMARY_ROW = "summary_row"
SKIP_SHORT_SINGLE_VALUE = "short_single_value"
SKIP_METADATA_ROW = "metadata_row"


@dataclass(frozen=True)
class ColumnProfile:
    """Per-column type distribution and samples."""
    index: int
    label: str  # spreadsheet-style letter label ("A", "B", ..., "AA")
    sample_values: list[Any] = field(default_factory=list)  # up to 5 non-null raw values
    detected_types: list[str] = field(default_factory=list)  # subset of date/number/text, first-seen order
    header_guess: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "label": self.label,
            "sample_values": list(self.sample_values),
            "detected_types": list(self.detected_types),
            "header_guess": self.header_guess,
        }

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> ColumnProfile:
        return ColumnProfile(
            index=int(data["index"]),
            label=str(data["label"]),
            sample_values=list(data.get("sample_values") or []),
            detected_types=list(data.get("detected_types") or []),
            header_guess=data.get("header_guess"),
        )


@dataclass(frozen=True)
class RowInsight:
    """Grid row enriched with noise/header heuristics."""
    index: int
    original_index: int
    values: dict[int, Any]
    non_empty_count: int
    skip_reasons: list[str]
    header_like_score: float  # in [0, 1]
    auto_skip: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "original_index": self.original_index,
            "values": {str(k): v for k, v in self.values.items()},
            "non_empty_count": self.non_empty_count,
            "skip_reasons": list(self.skip_reasons),
            "header_like_score": self.header_like_score,
            "auto_skip": self.auto_skip,
        }

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> RowInsight:
        return RowInsight(
            index=int(data["index"]),
            original_index=int(data.get("original_index", int(data["index"]) + 1)),
            values=values_from_json(data.get("values")),
            non_empty_count=int(data.get("non_empty_count", 0)),
            skip_reasons=list(data.get("skip_reasons") or []),
            header_like_score=float(data.get("header_like_score", 0.0)),
            auto_skip=bool(data.get("auto_skip", False)),
        )


@dataclass(frozen=True)
class DateRange:
    """Inclusive ISO date range; both ends are None when no dates were found."""
    min: str | None = None
    max: str | None = None

    def to_dict(self) -> dict[str, str | None]:
        return {"min": self.min, "max": self.max}

    @staticmethod
    def from_dict(data: Mapping[str, Any] | None) -> DateRange:
        if not data:
            return DateRange()
        return DateRange(min=data.get("min"), max=data.get("max"))


@dataclass(frozen=True)
class DatasetAnalysis:
    """Full analyzer output."""
    columns: list[ColumnProfile]
    rows: list[RowInsight]
    header_candidates: list[int]  # row indices, best candidate first
    detected_date_range: DateRange
    numeric_columns: list[int]

    def analysis_dict(self) -> dict[str, Any]:
        """Column-level part of the analysis, as stored under ``payload.analysis``."""
        return {
            "columns": [c.to_dict() for c in self.columns],
            "header_candidates": list(self.header_candidates),
            "detected_date_range": self.detected_date_range.to_dict(),
            "numeric_columns": list(self.numeric_columns),
        }

    def to_dict(self) -> dict[str, Any]:
        data = self.analysis_dict()
        data["rows"] = [r.to_dict() for r in self.rows]
        return data
