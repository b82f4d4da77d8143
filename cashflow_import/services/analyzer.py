from __future__ import annotations

import logging
import re
from collections.abc import Mapping, Sequence
from datetime import date
from typing import Any

from ..models.analysis import (
    SKIP_EMPTY_ROW,
    SKIP_METADATA_ROW,
    SKIP_SHORT_SINGLE_VALUE,
    SKIP_SUMMARY_ROW,
    ColumnProfile,
    DatasetAnalysis,
    DateRange,
    RowInsight,
)
from ..models.grid import GridRow
from .value_parser import normalize_number, try_parse_date

"""Dataset analyzer: infers the structure of an unknown grid.

Given the raw grid it builds, without any curated schema:

- a per-column profile (samples, detected value types, header guess)
- per-row insights (noise reasons, header-likeness, auto-skip flag)
- header row candidates, the global date range and the numeric columns

The analyzer is pure; rows are scanned strictly in grid order so the
first-candidate-wins header guessing is reproducible.
"""

__all__ = [
    "SUMMARY_KEYWORDS",
    "HEADER_SCORE_SKIP_THRESHOLD",
    "MAX_HEADER_CANDIDATES",
    "analyze",
    "column_label",
    "header_like_score",
    "detect_skip_reasons",
    "count_non_empty",
]

logger = logging.getLogger(__name__)

# Matched case-insensitively anywhere in the row's concatenated text.
SUMMARY_KEYWORDS: tuple[str, ...] = (
    'סה\\"כ', 'סה"כ', "סה״כ", "סיכום", "יתרה", "עמלה", "הודעה", "פירוט", "פרטי חשבון",
    "דף חשבון", "יתרת פתיחה", "יתרת סגירה", "סך הכל",
    "total", "balance", "summary",
)

HEADER_SCORE_SKIP_THRESHOLD = 0.3
MAX_HEADER_CANDIDATES = 5
MAX_SAMPLES = 5
MAX_HEADER_CELL_CHARS = 40
MAX_HEADER_GUESS_CHARS = 80
SHORT_SINGLE_VALUE_CHARS = 4

_DIGIT = re.compile(r"\d")


def column_label(col_index: int) -> str:
    """Spreadsheet-style label: 0 -> A, 25 -> Z, 26 -> AA."""
    letters = ""
    index = col_index
    while True:
        letters = chr(index % 26 + 65) + letters
        index = index // 26 - 1
        if index < 0:
            return letters


def _is_blank(value: Any) -> bool:
    return value is None or value == ""


def _text(value: Any) -> str:
    return value if isinstance(value, str) else str(value)


def count_non_empty(values: Mapping[int, Any]) -> int:
    count = 0
    for value in values.values():
        if value is None:
            continue
        if isinstance(value, str) and value.strip() == "":
            continue
        count += 1
    return count


def detect_skip_reasons(values: Mapping[int, Any]) -> list[str]:
    """Classify a row as structural noise; empty list for regular rows."""
    non_empty = [v for v in values.values() if not _is_blank(v)]
    if not non_empty:
        return [SKIP_EMPTY_ROW]

    concatenated = " ".join(_text(v) for v in non_empty).lower()
    for keyword in SUMMARY_KEYWORDS:
        if keyword.lower() in concatenated:
            return [SKIP_SUMMARY_ROW]

    if len(non_empty) == 1 and len(_text(non_empty[0])) <= SHORT_SINGLE_VALUE_CHARS:
        return [SKIP_SHORT_SINGLE_VALUE]

    if all(isinstance(v, str) and not _DIGIT.search(v) for v in non_empty):
        return [SKIP_METADATA_ROW]

    return []


def header_like_score(values: Mapping[int, Any]) -> float:
    """Fraction of non-empty cells that are short, lettered and digit-free."""
    non_empty = count_non_empty(values)
    if non_empty == 0:
        return 0.0

    textual = 0
    for value in values.values():
        if _is_blank(value):
            continue
        text = _text(value).strip()
        if (
            len(text) <= MAX_HEADER_CELL_CHARS
            and not _DIGIT.search(text)
            and any(ch.isalpha() for ch in text)
        ):
            textual += 1
    return textual / non_empty


def _classify(value: Any, reference: date | None) -> tuple[str, date | None]:
    parsed = try_parse_date(value, reference)
    if parsed is not None:
        return "date", parsed
    if normalize_number(value) is not None:
        return "number", None
    return "text", None


def _profile_columns(
    rows: Sequence[GridRow], total_columns: int, reference: date | None
) -> tuple[list[dict[str, Any]], list[date]]:
    profiles: list[dict[str, Any]] = []
    all_dates: list[date] = []
    for col in range(total_columns):
        samples: list[Any] = []
        types: list[str] = []
        for row in rows:
            value = row.values.get(col)
            if _is_blank(value):
                continue
            if len(samples) < MAX_SAMPLES:
                samples.append(value)
            kind, parsed = _classify(value, reference)
            if parsed is not None:
                all_dates.append(parsed)
            if kind not in types:
                types.append(kind)
        profiles.append({
            "index": col,
            "label": column_label(col),
            "sample_values": samples,
            "detected_types": types,
            "header_guess": None,
        })
    return profiles, all_dates


def _insight(row: GridRow) -> RowInsight:
    reasons = detect_skip_reasons(row.values)
    score = header_like_score(row.values)
    return RowInsight(
        index=row.index,
        original_index=row.original_index,
        values=dict(row.values),
        non_empty_count=count_non_empty(row.values),
        skip_reasons=reasons,
        header_like_score=score,
        auto_skip=bool(reasons) and score < HEADER_SCORE_SKIP_THRESHOLD,
    )


def _header_candidates(insights: Sequence[RowInsight]) -> list[int]:
    eligible = [r for r in insights if r.non_empty_count >= 2]
    # sorted() is stable: equal scores keep grid order
    ranked = sorted(eligible, key=lambda r: r.header_like_score, reverse=True)
    return [r.index for r in ranked[:MAX_HEADER_CANDIDATES]]


def _attach_header_guesses(
    profiles: list[dict[str, Any]], insights: Sequence[RowInsight], candidates: Sequence[int]
) -> None:
    by_index = {r.index: r for r in insights}
    for row_index in candidates:
        row = by_index.get(row_index)
        if row is None:
            continue
        for col, value in row.values.items():
            if col >= len(profiles):
                continue
            if isinstance(value, str) and value and len(value) <= MAX_HEADER_GUESS_CHARS:
                if profiles[col]["header_guess"] is None:
                    profiles[col]["header_guess"] = value


def analyze(rows: Sequence[GridRow], total_columns: int, reference: date | None = None) -> DatasetAnalysis:
    """Infer column types, noise rows, header candidates and the date range of a grid.

    Args:
        rows: grid rows in source order
        total_columns: widest row of the grid
        reference: date used to complete partial free-form dates; without it
            only free-form dates carrying day, month and year are recognized

    Returns:
        DatasetAnalysis with one ColumnProfile per column and one RowInsight per row
    """
    profiles, all_dates = _profile_columns(rows, total_columns, reference)
    insights = [_insight(row) for row in rows]
    candidates = _header_candidates(insights)
    _attach_header_guesses(profiles, insights, candidates)

    date_range = DateRange()
    if all_dates:
        date_range = DateRange(min=min(all_dates).isoformat(), max=max(all_dates).isoformat())

    columns = [ColumnProfile(**p) for p in profiles]
    numeric = [c.index for c in columns if "number" in c.detected_types]

    logger.debug(
        "analyzed rows=%d columns=%d auto_skip=%d header_candidates=%s numeric=%s",
        len(insights), total_columns, sum(1 for r in insights if r.auto_skip), candidates, numeric,
    )
    return DatasetAnalysis(
        columns=columns,
        rows=insights,
        header_candidates=candidates,
        detected_date_range=date_range,
        numeric_columns=numeric,
    )
