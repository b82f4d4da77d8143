from __future__ import annotations

import csv
import logging
import re

from ..models.grid import GridRow, TabularDataset, trim_trailing_empty
from .reader import normalize_cell

"""Clipboard reader: tab-separated text pasted from a spreadsheet.

Shares the grid output contract of the file reader. Lines may end with any
newline convention; cells honor quoted / escaped tab-separated values.
"""

__all__ = [
    "MAX_CLIPBOARD_ROWS",
    "parse_clipboard",
]

logger = logging.getLogger(__name__)

MAX_CLIPBOARD_ROWS = 2000
MAX_COLUMNS = 50

_NEWLINE = re.compile(r"\r\n|\n|\r")


def _split_line(line: str) -> list[str]:
    for cells in csv.reader([line], delimiter="\t"):
        return cells
    return []


def parse_clipboard(
    content: str, max_rows: int = MAX_CLIPBOARD_ROWS, max_columns: int = MAX_COLUMNS
) -> TabularDataset:
    """Parse pasted text into a grid; blank content yields ``total_rows == 0``."""
    text = content.strip()
    if not text:
        return TabularDataset(rows=[], total_rows=0, total_columns=0)

    rows: list[GridRow] = []
    total_columns = 0
    for line_number, line in enumerate(_NEWLINE.split(text)):
        if len(rows) >= max_rows:
            logger.warning("clipboard row cap reached: only the first %d lines were read", max_rows)
            break
        cells = [normalize_cell(c) for c in _split_line(line)[:max_columns]]
        values = trim_trailing_empty(cells)
        total_columns = max(total_columns, len(values))
        rows.append(GridRow(index=len(rows), original_index=line_number + 1, values=values))

    return TabularDataset(rows=rows, total_rows=len(rows), total_columns=total_columns)
