from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .analysis import DateRange
from .error_record import RowError

"""Processing result models for the cashflow import processor.

``TransformResult`` is the dry-run preview; ``CommitResult`` adds the ids of
the persisted ledger rows. Both expose ``status`` (200 clean / 422 with row
errors) so callers can surface them the same way regardless of transport.
"""

__all__ = [
    "STATUS_OK",
    "STATUS_ROW_ERRORS",
    "TransformedRow",
    "ImportSummary",
    "TransformResult",
    "CommitResult",
]

STATUS_OK = 200
STATUS_ROW_ERRORS = 422


@dataclass(frozen=True)
class TransformedRow:
    """A validated, categorized transaction ready to be persisted.

    ``amount`` is always positive and rounded to 2 decimals; the sign lives in ``type``.
    """
    row_index: int
    original_row_number: int
    transaction_date: str  # YYYY-MM-DD
    posting_date: str | None
    description: str
    amount: float
    type: str
    category_id: int | None = None
    category_name: str | None = None
    cash_flow_source_id: int | None = None
    cash_flow_source_name: str | None = None
    reference_number: str | None = None
    notes: str | None = None
    raw_values: dict[int, Any] = field(default_factory=dict)

    @property
    def transaction_year(self) -> int:
        return int(self.transaction_date[:4])

    @property
    def transaction_month(self) -> int:
        return int(self.transaction_date[5:7])

    def to_dict(self) -> dict[str, Any]:
        return {
            "row_index": self.row_index,
            "original_row_number": self.original_row_number,
            "transaction_date": self.transaction_date,
            "posting_date": self.posting_date,
            "transaction_month": f"{self.transaction_month:02d}",
            "transaction_year": f"{self.transaction_year:04d}",
            "description": self.description,
            "amount": self.amount,
            "type": self.type,
            "category_id": self.category_id,
            "category_name": self.category_name,
            "cash_flow_source_id": self.cash_flow_source_id,
            "cash_flow_source_name": self.cash_flow_source_name,
            "reference_number": self.reference_number,
            "notes": self.notes,
            "raw_values": {str(k): v for k, v in self.raw_values.items()},
        }


@dataclass(frozen=True)
class ImportSummary:
    """Aggregate view of the transformed rows."""
    count: int
    income_total: float
    expense_total: float
    date_range: DateRange
    months: list[str]  # distinct YYYY-MM, first-seen order

    def to_dict(self) -> dict[str, Any]:
        return {
            "count": self.count,
            "income_total": self.income_total,
            "expense_total": self.expense_total,
            "date_range": self.date_range.to_dict(),
            "months": list(self.months),
        }


@dataclass(frozen=True)
class TransformResult:
    rows: list[TransformedRow]
    errors: list[RowError]
    summary: ImportSummary
    analysis: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def status(self) -> int:
        return STATUS_OK if self.ok else STATUS_ROW_ERRORS

    def to_dict(self) -> dict[str, Any]:
        return {
            "rows": [r.to_dict() for r in self.rows],
            "errors": [e.to_dict() for e in self.errors],
            "summary": self.summary.to_dict(),
            "analysis": dict(self.analysis),
        }


@dataclass(frozen=True)
class CommitResult:
    rows: list[TransformedRow]
    errors: list[RowError]
    summary: ImportSummary
    created_ids: list[Any] = field(default_factory=list)
    committed: bool = False

    @property
    def ok(self) -> bool:
        return self.committed and not self.errors

    @property
    def status(self) -> int:
        return STATUS_OK if self.ok else STATUS_ROW_ERRORS

    def to_dict(self) -> dict[str, Any]:
        return {
            "rows": [r.to_dict() for r in self.rows],
            "errors": [e.to_dict() for e in self.errors],
            "summary": self.summary.to_dict(),
            "created_ids": list(self.created_ids),
            "committed": self.committed,
        }
