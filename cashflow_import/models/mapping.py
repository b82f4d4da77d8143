from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Union

"""Column mapping models.

The caller declares, per logical transaction field, how to extract it from a
grid row. Each field with more than one extraction mode is a tagged union:
one frozen dataclass per mode, discriminated by its ``mode`` attribute.
Raw request dicts are validated and converted into these types once, at the
boundary (see ``cashflow_import.config.request``).
"""

__all__ = [
    "INCOME",
    "EXPENSE",
    "ColumnRef",
    "DateMapping",
    "SingleAmountMapping",
    "SplitAmountMapping",
    "AmountMapping",
    "AutoTypeMapping",
    "FixedTypeMapping",
    "ColumnTypeMapping",
    "TypeMapping",
    "SameAsTransactionDate",
    "ColumnDateMapping",
    "FixedDateMapping",
    "PostingDateMapping",
    "ColumnMapping",
    "Assignment",
    "ImportRequest",
]

INCOME = "income"
EXPENSE = "expense"


@dataclass(frozen=True)
class ColumnRef:
    column: int | None = None


@dataclass(frozen=True)
class DateMapping:
    column: int | None
    format: str | None = None


@dataclass(frozen=True)
class SingleAmountMapping:
    column: int | None
    negate: bool = False
    mode: Literal["single"] = "single"


@dataclass(frozen=True)
class SplitAmountMapping:
    debit_column: int | None = None
    credit_column: int | None = None
    mode: Literal["split"] = "split"


AmountMapping = Union[SingleAmountMapping, SplitAmountMapping]


@dataclass(frozen=True)
class AutoTypeMapping:
    mode: Literal["auto_from_amount"] = "auto_from_amount"


@dataclass(frozen=True)
class FixedTypeMapping:
    fixed_value: str | None
    mode: Literal["fixed"] = "fixed"


@dataclass(frozen=True)
class ColumnTypeMapping:
    column: int | None
    income_values: tuple[str, ...] = ()
    expense_values: tuple[str, ...] = ()
    mode: Literal["column"] = "column"


TypeMapping = Union[AutoTypeMapping, FixedTypeMapping, ColumnTypeMapping]


@dataclass(frozen=True)
class SameAsTransactionDate:
    mode: Literal["same_as_transaction"] = "same_as_transaction"


@dataclass(frozen=True)
class ColumnDateMapping:
    column: int | None
    format: str | None = None
    mode: Literal["column"] = "column"


@dataclass(frozen=True)
class FixedDateMapping:
    value: str | None
    format: str | None = None
    mode: Literal["fixed"] = "fixed"


PostingDateMapping = Union[SameAsTransactionDate, ColumnDateMapping, FixedDateMapping]


@dataclass(frozen=True)
class ColumnMapping:
    """Complete field -> extraction directive mapping for one import."""
    date: DateMapping
    description: ColumnRef
    amount: AmountMapping
    type: TypeMapping = field(default_factory=AutoTypeMapping)
    posting_date: PostingDateMapping = field(default_factory=SameAsTransactionDate)
    reference: ColumnRef | None = None
    notes: ColumnRef | None = None


@dataclass(frozen=True)
class Assignment:
    """Category / cash-flow-source assignment (per row or global default)."""
    category_id: int | None = None
    cash_flow_source_id: int | None = None
    notes: str | None = None


@dataclass(frozen=True)
class ImportRequest:
    """Validated transform/commit request."""
    mapping: ColumnMapping
    excluded_rows: frozenset[int] = frozenset()
    header_row_index: int | None = None
    defaults: Assignment = field(default_factory=Assignment)
    row_assignments: dict[str, Assignment] = field(default_factory=dict)

    def skipped_indices(self) -> frozenset[int]:
        """Row indices the caller removed from the batch (excluded + header row)."""
        if self.header_row_index is None:
            return self.excluded_rows
        return self.excluded_rows | {self.header_row_index}
