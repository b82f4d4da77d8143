from __future__ import annotations

import csv
import logging
from datetime import date, datetime, time
from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd

from ..models.grid import GridRow, TabularDataset, trim_trailing_empty
from ..services.value_parser import excel_serial_to_date, looks_like_excel_serial

"""Spreadsheet file reader.

Loads the first sheet of a workbook (xlsx / xlsm / xls) or a delimited text
file (csv / txt) into the uniform grid shape. pandas does the parsing; cells
are read as raw Python objects (``dtype=object``) so integers, floats, dates
and strings keep their spreadsheet identity until normalization.

Only literal / calculated values are read, formulas are never retained.
"""

__all__ = [
    "SpreadsheetReadError",
    "WORKBOOK_EXTENSIONS",
    "TEXT_EXTENSIONS",
    "MAX_FILE_ROWS",
    "MAX_COLUMNS",
    "normalize_cell",
    "read_spreadsheet",
]

logger = logging.getLogger(__name__)

MAX_FILE_ROWS = 10000
MAX_COLUMNS = 50

WORKBOOK_EXTENSIONS = {"xlsx", "xlsm", "xls"}
TEXT_EXTENSIONS = {"csv", "txt"}
CSV_DELIMITERS = ",;\t"


class SpreadsheetReadError(Exception):
    """Raised when the uploaded file cannot be opened or parsed."""


def normalize_cell(value: Any) -> Any:
    """Normalize one raw cell into str / int / float / bool / None.

    - strings are trimmed, empty strings become None
    - dates become ``YYYY-MM-DD``
    - floats in the spreadsheet date-serial range become ``YYYY-MM-DD``,
      other floats are rounded to 4 decimals
    """
    if value is None:
        return None
    if isinstance(value, np.datetime64):
        if pd.isna(value):
            return None
        value = pd.Timestamp(value).to_pydatetime()
    elif isinstance(value, np.generic):
        value = value.item()
    if not isinstance(value, str) and pd.isna(value):
        return None
    if isinstance(value, str):
        stripped = value.strip()
        return stripped if stripped else None
    if isinstance(value, bool):
        return value
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, time):
        return value.isoformat()
    if isinstance(value, float):
        if looks_like_excel_serial(value):
            try:
                return excel_serial_to_date(value).isoformat()
            except OverflowError:
                pass
        return round(value, 4)
    if isinstance(value, int):
        return value
    return str(value).strip() or None


def _sniff_delimiter(path: Path) -> str:
    with path.open("r", encoding="utf-8-sig", errors="replace") as f:
        sample = f.read(4096)
    try:
        return csv.Sniffer().sniff(sample, delimiters=CSV_DELIMITERS).delimiter
    except csv.Error:
        pass
    # single-column or irregular samples
    if "\t" in sample:
        return "\t"
    if sample.count(";") > sample.count(","):
        return ";"
    return ","


def _load_frame(path: Path, extension: str, max_rows: int, max_columns: int) -> pd.DataFrame:
    if extension in WORKBOOK_EXTENSIONS:
        with pd.ExcelFile(path) as xls:
            if not xls.sheet_names:
                raise SpreadsheetReadError(f"workbook has no sheets: {path.name}")
            # first sheet only, no header inference
            return xls.parse(xls.sheet_names[0], header=None, dtype=object, nrows=max_rows)

    delimiter = _sniff_delimiter(path)
    return pd.read_csv(
        path,
        header=None,
        names=list(range(max_columns)),
        dtype=str,
        keep_default_na=False,
        sep=delimiter,
        engine="python",
        on_bad_lines=lambda cells: cells[:max_columns],
        skip_blank_lines=False,
        nrows=max_rows,
        encoding="utf-8-sig",
    )


def read_spreadsheet(
    path: Path, max_rows: int = MAX_FILE_ROWS, max_columns: int = MAX_COLUMNS
) -> TabularDataset:
    """Read the first sheet of a spreadsheet file into a grid.

    Args:
        path: spreadsheet / csv path
        max_rows: hard cap on rows read
        max_columns: hard cap on columns kept per row

    Returns:
        TabularDataset with ragged rows (trailing empty cells trimmed)

    Raises:
        SpreadsheetReadError: unreadable, corrupt or unsupported file
    """
    if not path.exists():
        raise SpreadsheetReadError(f"file not found: {path}")
    extension = path.suffix.lower().lstrip(".")
    if extension not in WORKBOOK_EXTENSIONS | TEXT_EXTENSIONS:
        raise SpreadsheetReadError(f"unsupported file type: .{extension}")

    try:
        df = _load_frame(path, extension, max_rows, max_columns)
    except SpreadsheetReadError:
        raise
    except Exception as e:
        raise SpreadsheetReadError(f"cannot read {path.name}: {e}") from e

    rows: list[GridRow] = []
    total_columns = 0
    for position, raw in enumerate(df.itertuples(index=False, name=None)):
        cells = [normalize_cell(v) for v in raw[:max_columns]]
        values = trim_trailing_empty(cells)
        total_columns = max(total_columns, len(values))
        rows.append(GridRow(index=len(rows), original_index=position + 1, values=values))

    if len(rows) >= max_rows:
        logger.warning("row cap reached: only the first %d rows of %s were read", max_rows, path.name)
    logger.debug("read %s rows=%d columns=%d", path.name, len(rows), total_columns)
    return TabularDataset(rows=rows, total_rows=len(rows), total_columns=total_columns)
