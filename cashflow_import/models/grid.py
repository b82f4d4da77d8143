from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

"""Grid model shared by the tabular source readers.

A grid is the uniform in-memory shape of an uploaded spreadsheet or a pasted
clipboard table: an ordered list of rows, each carrying its position in the
grid (``index``), its 1-based line/row number in the source
(``original_index``) and a column-index -> raw scalar mapping.

Rows are ragged: a row never holds a key beyond its last non-null column.
"""

__all__ = [
    "GridRow",
    "TabularDataset",
    "trim_trailing_empty",
    "values_from_json",
]


def trim_trailing_empty(values: Iterable[Any]) -> dict[int, Any]:
    """Convert a positional cell list into a column mapping without trailing nulls.

    Interior nulls are kept so column indices stay aligned with the source.
    """
    cells = list(values)
    last = -1
    for pos, value in enumerate(cells):
        if value is not None:
            last = pos
    return {pos: cells[pos] for pos in range(last + 1)}


@dataclass(frozen=True)
class GridRow:
    """One row of a loaded grid."""
    index: int  # 0-based position after load
    original_index: int  # 1-based source line / spreadsheet row number
    values: dict[int, Any] = field(default_factory=dict)

    @property
    def width(self) -> int:
        return len(self.values)

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "original_index": self.original_index,
            "values": {str(k): v for k, v in self.values.items()},
        }

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> GridRow:
        return GridRow(
            index=int(data["index"]),
            original_index=int(data["original_index"]),
            values=values_from_json(data.get("values")),
        )


def values_from_json(raw: Any) -> dict[int, Any]:
    """Rebuild a column mapping whose keys were stringified by JSON."""
    if not raw:
        return {}
    if isinstance(raw, list):
        return {pos: v for pos, v in enumerate(raw)}
    return {int(k): v for k, v in raw.items()}


@dataclass(frozen=True)
class TabularDataset:
    """Reader output contract: rows plus totals."""
    rows: list[GridRow]
    total_rows: int
    total_columns: int

    @property
    def is_empty(self) -> bool:
        return self.total_rows == 0
