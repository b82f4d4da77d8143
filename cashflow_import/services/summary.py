from __future__ import annotations

from collections.abc import Sequence

from ..models.error_record import RowError
from ..models.processing_result import ImportSummary

"""SUMMARY line rendering.

Format:
SUMMARY rows={count} income={income_total} expense={expense_total}
errors={error_count} months={YYYY-MM,...|-}
"""

__all__ = [
    "format_amount",
    "render_summary_line",
]


def format_amount(value: float) -> str:
    """Two-decimal amount without scientific notation or a trailing ``.00``.

    Examples:
        >>> format_amount(10000.0)
        '10000'
        >>> format_amount(350.45)
        '350.45'
        >>> format_amount(0.5)
        '0.5'
    """
    text = f"{value:.2f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"


def render_summary_line(summary: ImportSummary, errors: Sequence[RowError] = ()) -> str:
    """Render the SUMMARY line for a transform or commit result.

    Args:
        summary: aggregate of the accepted rows
        errors: rejected rows

    Returns:
        Line starting with ``SUMMARY ``
    """
    months = ",".join(summary.months) if summary.months else "-"
    return (
        f"SUMMARY rows={summary.count} "
        f"income={format_amount(summary.income_total)} "
        f"expense={format_amount(summary.expense_total)} "
        f"errors={len(errors)} "
        f"months={months}"
    )
