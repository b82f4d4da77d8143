from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from .mapping import EXPENSE, INCOME

"""Ledger records and budget recomputation policy.

Budget entities re-sum their matching ledger rows through the two policy
functions below; the processor only decides *which* budgets to refresh.

Category budgets: ``income`` categories count income, ``both`` categories
count expense minus income, every other category counts expense.

Cash-flow-source budgets (refund-aware): a source that allows refunds nets
opposing-type transactions against its own type; a source that does not
only counts rows of its own type.
"""

__all__ = [
    "TRANSACTION_STATUS_COMPLETED",
    "LedgerTransaction",
    "LedgerEntry",
    "BudgetKey",
    "category_spent",
    "source_spent",
    "remaining_amount",
]

TRANSACTION_STATUS_COMPLETED = "completed"

_CENT = Decimal("0.01")


@dataclass(frozen=True)
class LedgerTransaction:
    """Transaction record appended to the ledger by a commit."""
    user_id: int
    amount: float
    type: str
    transaction_date: date
    posting_date: date
    description: str
    category_id: int | None = None
    cash_flow_source_id: int | None = None
    notes: str | None = None
    reference_number: str | None = None
    status: str = TRANSACTION_STATUS_COMPLETED


@dataclass(frozen=True)
class LedgerEntry:
    """History row used for category/source suggestions."""
    description: str
    transaction_date: date
    category_id: int | None = None
    cash_flow_source_id: int | None = None


@dataclass(frozen=True, order=True)
class BudgetKey:
    """(owner, year, month) address of a category or source budget."""
    kind: str  # "category" / "source"
    owner_id: int
    year: int
    month: int

    @staticmethod
    def for_date(kind: str, owner_id: int, when: date) -> BudgetKey:
        return BudgetKey(kind=kind, owner_id=owner_id, year=when.year, month=when.month)


def _quantize(value: Decimal) -> Decimal:
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


def _totals(rows: Iterable[tuple[Decimal | float, str]]) -> tuple[Decimal, Decimal]:
    income = Decimal("0")
    expense = Decimal("0")
    for amount, kind in rows:
        value = Decimal(str(amount))
        if kind == INCOME:
            income += value
        elif kind == EXPENSE:
            expense += value
    return income, expense


def category_spent(category_type: str | None, rows: Iterable[tuple[Decimal | float, str]]) -> Decimal:
    """Spent amount of a category budget from its (amount, type) ledger rows."""
    income, expense = _totals(rows)
    if category_type == INCOME:
        return _quantize(income)
    if category_type == "both":
        return _quantize(expense - income)
    return _quantize(expense)


def source_spent(
    source_type: str | None, allows_refunds: bool, rows: Iterable[tuple[Decimal | float, str]]
) -> Decimal:
    """Spent amount of a cash-flow-source budget from its (amount, type) ledger rows."""
    income, expense = _totals(rows)
    if source_type == INCOME:
        own, opposite = income, expense
    else:
        own, opposite = expense, income
    if allows_refunds:
        return _quantize(own - opposite)
    return _quantize(own)


def remaining_amount(planned: Decimal | float, spent: Decimal) -> Decimal:
    return _quantize(Decimal(str(planned)) - spent)
