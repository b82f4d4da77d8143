from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Protocol

from psycopg2.extras import execute_values

from ..models.budget import (
    LedgerEntry,
    LedgerTransaction,
    category_spent,
    remaining_amount,
    source_spent,
)
from ..models.directory import CashFlowSourceInfo, CategoryInfo

"""Ledger, budget and directory adapters.

The processor talks to persistence through the ``Ledger`` / ``Directory``
protocols only. ``PostgresLedger`` and ``PostgresDirectory`` implement them
on a psycopg2 cursor:

- inserts are batched with ``psycopg2.extras.execute_values ... RETURNING id``
- ``atomic()`` issues BEGIN/COMMIT on the cursor and ROLLBACK on any failure
- budget rows are re-summed from the ledger with the policy functions in
  ``cashflow_import.models.budget``
"""

__all__ = [
    "LedgerError",
    "Budget",
    "Ledger",
    "Directory",
    "CategoryBudget",
    "SourceBudget",
    "PostgresLedger",
    "PostgresDirectory",
    "TRANSACTION_COLUMNS",
]

logger = logging.getLogger(__name__)

TRANSACTION_COLUMNS = (
    "user_id",
    "category_id",
    "cash_flow_source_id",
    "amount",
    "type",
    "transaction_date",
    "posting_date",
    "description",
    "notes",
    "reference_number",
    "status",
)


class LedgerError(Exception):
    """Persistence failure during commit. The batch has been rolled back."""


class Budget(Protocol):
    def recompute_spent(self) -> Decimal: ...


class Ledger(Protocol):
    def atomic(self) -> Any: ...

    def insert_transactions(self, user_id: int, records: Sequence[LedgerTransaction]) -> list[Any]: ...

    def find_by_descriptions(self, user_id: int, descriptions: Sequence[str]) -> list[LedgerEntry]: ...

    def category_budget(self, user_id: int, category_id: int, year: int, month: int) -> Budget | None: ...

    def source_budget(self, user_id: int, source_id: int, year: int, month: int) -> Budget | None: ...


class Directory(Protocol):
    def lookup(self, user_id: int) -> tuple[dict[int, CategoryInfo], dict[int, CashFlowSourceInfo]]: ...


@dataclass
class CategoryBudget:
    """Monthly category budget row (``budgets`` table)."""
    cursor: Any
    id: int
    user_id: int
    category_id: int
    category_type: str | None
    year: int
    month: int
    planned_amount: Decimal
    spent_amount: Decimal = Decimal("0")
    remaining_amount: Decimal = Decimal("0")

    def recompute_spent(self) -> Decimal:
        # bucketed on the posting date when present
        self.cursor.execute(
            "SELECT amount, type FROM transactions"
            " WHERE user_id = %s AND category_id = %s"
            " AND EXTRACT(YEAR FROM COALESCE(posting_date, transaction_date)) = %s"
            " AND EXTRACT(MONTH FROM COALESCE(posting_date, transaction_date)) = %s",
            (self.user_id, self.category_id, self.year, self.month),
        )
        self.spent_amount = category_spent(self.category_type, self.cursor.fetchall())
        self.remaining_amount = remaining_amount(self.planned_amount, self.spent_amount)
        self.cursor.execute(
            "UPDATE budgets SET spent_amount = %s, remaining_amount = %s, updated_at = NOW() WHERE id = %s",
            (self.spent_amount, self.remaining_amount, self.id),
        )
        logger.debug(
            "category budget id=%s %04d-%02d spent=%s", self.id, self.year, self.month, self.spent_amount
        )
        return self.spent_amount


@dataclass
class SourceBudget:
    """Monthly cash-flow-source budget row (``cash_flow_source_budgets`` table)."""
    cursor: Any
    id: int
    user_id: int
    cash_flow_source_id: int
    source_type: str | None
    allows_refunds: bool
    year: int
    month: int
    planned_amount: Decimal
    spent_amount: Decimal = Decimal("0")
    remaining_amount: Decimal = Decimal("0")

    def recompute_spent(self) -> Decimal:
        self.cursor.execute(
            "SELECT amount, type FROM transactions"
            " WHERE user_id = %s AND cash_flow_source_id = %s"
            " AND EXTRACT(YEAR FROM transaction_date) = %s"
            " AND EXTRACT(MONTH FROM transaction_date) = %s",
            (self.user_id, self.cash_flow_source_id, self.year, self.month),
        )
        self.spent_amount = source_spent(self.source_type, self.allows_refunds, self.cursor.fetchall())
        self.remaining_amount = remaining_amount(self.planned_amount, self.spent_amount)
        self.cursor.execute(
            "UPDATE cash_flow_source_budgets SET spent_amount = %s, remaining_amount = %s, updated_at = NOW()"
            " WHERE id = %s",
            (self.spent_amount, self.remaining_amount, self.id),
        )
        logger.debug(
            "source budget id=%s %04d-%02d spent=%s", self.id, self.year, self.month, self.spent_amount
        )
        return self.spent_amount


class PostgresLedger:
    """``Ledger`` over a psycopg2 cursor.

    Args:
        cursor: psycopg2 cursor of a connection in autocommit mode (transactions
            are driven explicitly by ``atomic``)
        page_size: execute_values page size for inserts
    """

    def __init__(self, cursor: Any, *, page_size: int = 1000) -> None:
        self.cursor = cursor
        self.page_size = page_size

    @contextmanager
    def atomic(self) -> Iterator[None]:
        self.cursor.execute("BEGIN")
        try:
            yield
        except Exception:
            try:
                self.cursor.execute("ROLLBACK")
            except Exception:  # pragma: no cover
                logger.error("rollback failed", exc_info=True)
            raise
        try:
            self.cursor.execute("COMMIT")
        except Exception as e:
            try:
                self.cursor.execute("ROLLBACK")
            except Exception:  # pragma: no cover
                logger.error("rollback failed", exc_info=True)
            raise LedgerError(f"commit failed: {e}") from e

    def insert_transactions(self, user_id: int, records: Sequence[LedgerTransaction]) -> list[Any]:
        """Insert ledger rows with one batched statement and return their ids in order."""
        if not records:
            return []
        rows = [
            (
                user_id,
                r.category_id,
                r.cash_flow_source_id,
                r.amount,
                r.type,
                r.transaction_date,
                r.posting_date or r.transaction_date,
                r.description,
                r.notes,
                r.reference_number,
                r.status,
            )
            for r in records
        ]
        cols_sql = ",".join(f'"{c}"' for c in TRANSACTION_COLUMNS)
        sql = f"INSERT INTO transactions ({cols_sql}, created_at, updated_at) VALUES %s RETURNING id"
        template = "(" + ",".join(["%s"] * len(TRANSACTION_COLUMNS)) + ", NOW(), NOW())"
        try:
            returned = execute_values(self.cursor, sql, rows, template=template, page_size=self.page_size, fetch=True)
        except Exception as e:
            raise LedgerError(f"insert failed: {e}") from e
        ids = [r[0] for r in returned or []]
        if len(ids) != len(rows):
            raise LedgerError(f"expected {len(rows)} ids from RETURNING, got {len(ids)}")
        return ids

    def find_by_descriptions(self, user_id: int, descriptions: Sequence[str]) -> list[LedgerEntry]:
        """History rows whose description matches one of ``descriptions`` ignoring case, latest first."""
        if not descriptions:
            return []
        self.cursor.execute(
            "SELECT description, transaction_date, category_id, cash_flow_source_id FROM transactions"
            " WHERE user_id = %s AND lower(description) = ANY(%s)"
            " ORDER BY transaction_date DESC, id DESC",
            (user_id, [d.lower() for d in descriptions]),
        )
        return [
            LedgerEntry(
                description=row[0],
                transaction_date=row[1],
                category_id=row[2],
                cash_flow_source_id=row[3],
            )
            for row in self.cursor.fetchall()
        ]

    def category_budget(self, user_id: int, category_id: int, year: int, month: int) -> CategoryBudget | None:
        self.cursor.execute(
            "SELECT b.id, b.planned_amount, b.spent_amount, b.remaining_amount, c.type"
            " FROM budgets b LEFT JOIN categories c ON c.id = b.category_id"
            " WHERE b.user_id = %s AND b.category_id = %s AND b.year = %s AND b.month = %s",
            (user_id, category_id, year, month),
        )
        row = self.cursor.fetchone()
        if row is None:
            return None
        return CategoryBudget(
            cursor=self.cursor,
            id=row[0],
            user_id=user_id,
            category_id=category_id,
            category_type=row[4],
            year=year,
            month=month,
            planned_amount=Decimal(str(row[1])),
            spent_amount=Decimal(str(row[2] or 0)),
            remaining_amount=Decimal(str(row[3] or 0)),
        )

    def source_budget(self, user_id: int, source_id: int, year: int, month: int) -> SourceBudget | None:
        self.cursor.execute(
            "SELECT b.id, b.planned_amount, b.spent_amount, b.remaining_amount, s.type, s.allows_refunds"
            " FROM cash_flow_source_budgets b LEFT JOIN cash_flow_sources s ON s.id = b.cash_flow_source_id"
            " WHERE b.user_id = %s AND b.cash_flow_source_id = %s AND b.year = %s AND b.month = %s",
            (user_id, source_id, year, month),
        )
        row = self.cursor.fetchone()
        if row is None:
            return None
        return SourceBudget(
            cursor=self.cursor,
            id=row[0],
            user_id=user_id,
            cash_flow_source_id=source_id,
            source_type=row[4],
            allows_refunds=bool(row[5]),
            year=year,
            month=month,
            planned_amount=Decimal(str(row[1])),
            spent_amount=Decimal(str(row[2] or 0)),
            remaining_amount=Decimal(str(row[3] or 0)),
        )


class PostgresDirectory:
    """``Directory`` over a psycopg2 cursor: the user's categories and sources keyed by id."""

    def __init__(self, cursor: Any) -> None:
        self.cursor = cursor

    def lookup(self, user_id: int) -> tuple[dict[int, CategoryInfo], dict[int, CashFlowSourceInfo]]:
        self.cursor.execute("SELECT id, name, type FROM categories WHERE user_id = %s ORDER BY id", (user_id,))
        categories = {
            int(r[0]): CategoryInfo(id=int(r[0]), name=str(r[1]), type=str(r[2])) for r in self.cursor.fetchall()
        }
        self.cursor.execute(
            "SELECT id, name, type, allows_refunds FROM cash_flow_sources WHERE user_id = %s ORDER BY id",
            (user_id,),
        )
        sources = {
            int(r[0]): CashFlowSourceInfo(id=int(r[0]), name=str(r[1]), type=str(r[2]), allows_refunds=bool(r[3]))
            for r in self.cursor.fetchall()
        }
        return categories, sources
