from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from datetime import date, datetime, timedelta
from typing import Any, NamedTuple

from dateutil import parser as dateutil_parser

from ..models.mapping import (
    EXPENSE,
    INCOME,
    AmountMapping,
    ColumnDateMapping,
    ColumnTypeMapping,
    DateMapping,
    FixedDateMapping,
    FixedTypeMapping,
    PostingDateMapping,
    SameAsTransactionDate,
    SplitAmountMapping,
    TypeMapping,
)

"""Value parser: pure resolution of dates, amounts and types from raw cells.

Every public function returns a result tuple whose last member is an error
message (``None`` on success). Expected validation failures never raise, so
the processor can turn them into row errors and keep going.

Date detection is an ordered list of strategies (``DATE_STRATEGIES``); each
strategy returns a ``date`` or ``None`` and the first hit wins. The same list
is used by the dataset analyzer to classify column values.
"""

__all__ = [
    "ParseResult",
    "AmountResult",
    "DATE_FORMATS",
    "DATE_STRATEGIES",
    "EXCEL_SERIAL_MIN",
    "EXCEL_SERIAL_MAX",
    "ZERO_TOLERANCE",
    "excel_serial_to_date",
    "looks_like_excel_serial",
    "normalize_number",
    "to_strptime_format",
    "try_parse_date",
    "parse_date_value",
    "resolve_date",
    "resolve_amount",
    "resolve_type",
]

# Spreadsheet date serials: (10000, 500000) covers 1927 .. 3268
EXCEL_SERIAL_MIN = 10000
EXCEL_SERIAL_MAX = 500000
_EXCEL_EPOCH = date(1899, 12, 30)

ZERO_TOLERANCE = 0.0001

# Tried in order; day-first formats precede month-first ones.
DATE_FORMATS: tuple[str, ...] = (
    "d/m/Y", "d/m/y", "d-m-Y", "d-m-y",
    "Y-m-d", "Y/m/d", "Ymd",
    "d.m.Y", "d.m.y",
    "m/d/Y", "m/d/y",
    "d M Y", "d M y",
)

_FORMAT_TOKENS = {
    "d": "%d", "j": "%d",
    "m": "%m", "n": "%m",
    "Y": "%Y", "y": "%y",
    "M": "%b", "F": "%B",
    "H": "%H", "G": "%H", "i": "%M", "s": "%S",
}

_CURRENCY_SYMBOLS = ("₪", "$", "€", "£")
_COMMA_THOUSANDS = re.compile(r"^-?\d{1,3}(,\d{3})+(\.\d+)?$")
_DOT_THOUSANDS = re.compile(r"^-?\d{1,3}(\.\d{3})+(,\d+)?$")
_COMMA_DECIMAL = re.compile(r"^-?\d+,\d+$")
_PLAIN_NUMBER = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")
_DIGIT = re.compile(r"\d")


class ParseResult(NamedTuple):
    value: Any
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class AmountResult(NamedTuple):
    amount: float | None
    direction: str | None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


# ---------------------------------------------------------------------------
# numbers
# ---------------------------------------------------------------------------

def _plain_number(value: Any) -> float | None:
    """Numeric value of ints/floats and strictly numeric strings."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        stripped = value.strip()
        if _PLAIN_NUMBER.match(stripped):
            return float(stripped)
    return None


def normalize_number(value: Any) -> float | None:
    """Parse an amount tolerant of currency symbols and separator conventions.

    ``1,234.56`` and ``1.234,56`` and ``1234,56`` all give ``1234.56``.
    Returns None when the value is not numeric.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if not isinstance(value, str):
        return None

    normalized = value.strip()
    if not normalized:
        return None
    normalized = normalized.replace("\u00a0", "").replace(" ", "")
    for symbol in _CURRENCY_SYMBOLS:
        normalized = normalized.replace(symbol, "")

    if _COMMA_THOUSANDS.match(normalized):
        normalized = normalized.replace(",", "")
    elif _DOT_THOUSANDS.match(normalized):
        normalized = normalized.replace(".", "").replace(",", ".")
    elif _COMMA_DECIMAL.match(normalized):
        normalized = normalized.replace(",", ".")

    if _PLAIN_NUMBER.match(normalized):
        return float(normalized)
    return None


# ---------------------------------------------------------------------------
# dates
# ---------------------------------------------------------------------------

def looks_like_excel_serial(number: float) -> bool:
    return EXCEL_SERIAL_MIN < number < EXCEL_SERIAL_MAX


def excel_serial_to_date(number: float) -> date:
    return _EXCEL_EPOCH + timedelta(days=int(number))


def to_strptime_format(fmt: str) -> str:
    """Translate spreadsheet-style tokens (``d/m/Y``) into strptime directives.

    Formats that already contain ``%`` directives are returned unchanged.
    """
    if "%" in fmt:
        return fmt
    return "".join(_FORMAT_TOKENS.get(ch, ch) for ch in fmt)


def _strptime(text: str, fmt: str) -> date | None:
    try:
        return datetime.strptime(text, to_strptime_format(fmt)).date()
    except ValueError:
        return None


def _from_date_object(value: Any, reference: date | None) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return None


def _from_excel_serial(value: Any, reference: date | None) -> date | None:
    number = _plain_number(value)
    if number is None or not looks_like_excel_serial(number):
        return None
    try:
        return excel_serial_to_date(number)
    except OverflowError:
        return None


def _from_known_formats(value: Any, reference: date | None) -> date | None:
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    for fmt in DATE_FORMATS:
        parsed = _strptime(text, fmt)
        if parsed is not None:
            return parsed
    return None


def _from_free_form(value: Any, reference: date | None) -> date | None:
    """dateutil fallback.

    With a ``reference`` a missing year/month is taken from it; without one
    the text has to carry the full date. The day always comes from the text.
    """
    if not isinstance(value, str):
        return None
    text = value.strip()
    # amounts and digit-free text are never free-form dates
    if not text or normalize_number(text) is not None or not _DIGIT.search(text):
        return None
    if reference is not None:
        defaults = (datetime(reference.year, reference.month, 1), datetime(reference.year, reference.month, 2))
    else:
        # months with 31 days so a bare day-of-month never overflows
        defaults = (datetime(2000, 1, 1), datetime(2004, 3, 2))
    try:
        first, second = (dateutil_parser.parse(text, default=d) for d in defaults)
    except (ValueError, OverflowError):
        return None
    if first != second:
        return None
    return first.date()


DateStrategy = Callable[[Any, date | None], date | None]

DATE_STRATEGIES: tuple[DateStrategy, ...] = (
    _from_date_object,
    _from_excel_serial,
    _from_known_formats,
    _from_free_form,
)


def try_parse_date(value: Any, reference: date | None = None) -> date | None:
    """Run the date strategies in order; None when no strategy recognizes the value."""
    for strategy in DATE_STRATEGIES:
        parsed = strategy(value, reference)
        if parsed is not None:
            return parsed
    return None


def parse_date_value(raw: Any, fmt: str | None = None, reference: date | None = None) -> ParseResult:
    """Parse a single date cell, trying the explicit format first."""
    if raw is None or (isinstance(raw, str) and raw.strip() == ""):
        return ParseResult(None, "the row has no date value")

    direct = _from_date_object(raw, reference)
    if direct is not None:
        return ParseResult(direct)

    if fmt:
        text = raw
        if isinstance(raw, float) and raw.is_integer():
            text = str(int(raw))
        parsed = _strptime(str(text).strip(), fmt)
        if parsed is not None:
            return ParseResult(parsed)

    if not isinstance(raw, (str, int, float)) or isinstance(raw, bool):
        return ParseResult(None, "the value in the date column cannot be recognized")

    parsed = try_parse_date(raw, reference)
    if parsed is not None:
        return ParseResult(parsed)
    return ParseResult(None, f"cannot interpret the date value: {str(raw).strip()}")


def resolve_date(
    values: Mapping[int, Any],
    mapping: DateMapping | PostingDateMapping,
    fallback: date | None = None,
    reference: date | None = None,
) -> ParseResult:
    """Resolve a transaction or posting date from a row according to its mapping."""
    if isinstance(mapping, SameAsTransactionDate):
        if fallback is not None:
            return ParseResult(fallback)
        return ParseResult(None, "no transaction date to copy the posting date from")

    if isinstance(mapping, FixedDateMapping):
        if mapping.value is None or mapping.value == "":
            return ParseResult(None, "no fixed date was provided")
        return parse_date_value(mapping.value, mapping.format, reference)

    # DateMapping / ColumnDateMapping
    if mapping.column is None:
        return ParseResult(None, "no date column selected")
    return parse_date_value(values.get(mapping.column), mapping.format, reference)


# ---------------------------------------------------------------------------
# amounts
# ---------------------------------------------------------------------------

def _is_trivial(number: float | None) -> bool:
    return number is None or abs(number) < ZERO_TOLERANCE


def _resolve_split(values: Mapping[int, Any], mapping: SplitAmountMapping) -> AmountResult:
    if mapping.debit_column is None and mapping.credit_column is None:
        return AmountResult(None, None, "select at least one of the debit / credit columns")

    debit = normalize_number(values.get(mapping.debit_column)) if mapping.debit_column is not None else None
    credit = normalize_number(values.get(mapping.credit_column)) if mapping.credit_column is not None else None

    if _is_trivial(debit) and _is_trivial(credit):
        return AmountResult(None, None, "no debit / credit values found in the row")

    if not _is_trivial(debit) and not _is_trivial(credit):
        net = credit - debit  # type: ignore[operator]
        if abs(net) < ZERO_TOLERANCE:
            return AmountResult(None, None, "the row balances to zero (debit equals credit)")
        return AmountResult(abs(net), INCOME if net >= 0 else EXPENSE)

    if not _is_trivial(credit):
        return AmountResult(abs(credit), INCOME)  # type: ignore[arg-type]
    return AmountResult(abs(debit), EXPENSE)  # type: ignore[arg-type]


def resolve_amount(values: Mapping[int, Any], mapping: AmountMapping) -> AmountResult:
    """Resolve the absolute amount and its sign-derived direction (income/expense)."""
    if isinstance(mapping, SplitAmountMapping):
        return _resolve_split(values, mapping)

    if mapping.column is None:
        return AmountResult(None, None, "no amount column selected")

    number = normalize_number(values.get(mapping.column))
    if number is None:
        return AmountResult(None, None, "cannot interpret the amount in the row")
    if mapping.negate:
        number = -number
    if abs(number) < ZERO_TOLERANCE:
        return AmountResult(None, None, "the amount is zero")
    return AmountResult(abs(number), INCOME if number >= 0 else EXPENSE)


# ---------------------------------------------------------------------------
# type
# ---------------------------------------------------------------------------

def _normalized_set(items: tuple[str, ...]) -> set[str]:
    return {str(item).strip().lower() for item in items if item is not None and str(item).strip()}


def resolve_type(values: Mapping[int, Any], mapping: TypeMapping, direction: str | None) -> ParseResult:
    """Resolve income/expense from a fixed value, a marker column or the amount sign."""
    if isinstance(mapping, FixedTypeMapping):
        if mapping.fixed_value not in (INCOME, EXPENSE):
            return ParseResult(None, "choose whether the rows are income or expense")
        return ParseResult(mapping.fixed_value)

    if isinstance(mapping, ColumnTypeMapping):
        if mapping.column is None:
            return ParseResult(None, "no column selected for the transaction type")
        raw = values.get(mapping.column)
        if raw is None or str(raw).strip() == "":
            return ParseResult(None, "the transaction type column is empty")
        marker = str(raw).strip().lower()
        if marker in _normalized_set(mapping.income_values):
            return ParseResult(INCOME)
        if marker in _normalized_set(mapping.expense_values):
            return ParseResult(EXPENSE)
        return ParseResult(None, f"unrecognized value in the transaction type column: {str(raw).strip()}")

    if direction is not None:
        return ParseResult(direction)
    return ParseResult(None, "could not derive income/expense from the amount")
