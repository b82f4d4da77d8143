from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping, Sequence
from datetime import date
from typing import Any

from ..db.ledger import Ledger, LedgerError
from ..models.analysis import (
    SKIP_EMPTY_ROW,
    SKIP_METADATA_ROW,
    SKIP_SHORT_SINGLE_VALUE,
    SKIP_SUMMARY_ROW,
    DateRange,
    RowInsight,
)
from ..models.budget import TRANSACTION_STATUS_COMPLETED, BudgetKey, LedgerTransaction
from ..models.directory import CashFlowSourceInfo, CategoryInfo
from ..models.error_record import RowError
from ..models.mapping import EXPENSE, INCOME, ColumnDateMapping, ColumnRef, ImportRequest
from ..models.processing_result import CommitResult, ImportSummary, TransformedRow, TransformResult
from ..models.session import ImportSession
from .progress import ProgressTracker
from .value_parser import resolve_amount, resolve_date, resolve_type

"""Cashflow import processor.

Runs the value parser over every candidate row of an import session using the
caller's column mapping, assigns categories and cash-flow sources, validates
cross-field consistency and either returns a dry-run preview (``transform``)
or persists the batch atomically and refreshes the affected budgets
(``commit``).

Rows are processed strictly in session order. Row failures are data
(``RowError``), never exceptions; only the persistence phase of ``commit``
raises (``LedgerError``) and it always leaves the ledger untouched.
"""

__all__ = [
    "MAX_SUGGESTION_DESCRIPTIONS",
    "CashflowImportProcessor",
    "Suggestions",
    "build_summary",
    "budget_keys",
    "to_ledger_transaction",
]

logger = logging.getLogger(__name__)

MAX_SUGGESTION_DESCRIPTIONS = 200

_NOISE_REASONS = frozenset({SKIP_METADATA_ROW, SKIP_SUMMARY_ROW, SKIP_SHORT_SINGLE_VALUE, SKIP_EMPTY_ROW})
_DIGIT = re.compile(r"\d")

MSG_TYPE_UNRESOLVED = "could not determine whether the row is income or expense"
MSG_DESCRIPTION_REQUIRED = "a description is required for every transaction"
MSG_CATEGORY_MISMATCH = "the selected category does not match the transaction type"
MSG_SOURCE_MISMATCH = "the selected cash flow source does not match the transaction type"


class Suggestions:
    """Category / source suggestions keyed by lower-cased trimmed description."""

    def __init__(self) -> None:
        self.categories: dict[str, int] = {}
        self.sources: dict[str, int] = {}

    def category_for(self, description: str) -> int | None:
        return self.categories.get(_suggestion_key(description))

    def source_for(self, description: str) -> int | None:
        return self.sources.get(_suggestion_key(description))

    def __len__(self) -> int:
        return len(set(self.categories) | set(self.sources))


def _suggestion_key(description: str) -> str:
    return description.strip().lower()


def _column_value(values: Mapping[int, Any], ref: ColumnRef | None) -> Any:
    if ref is None or ref.column is None:
        return None
    return values.get(ref.column)


def _silently_skippable(row: RowInsight, column: int | None) -> bool:
    """True when a date failure on ``row`` is structural noise, not a user error."""
    if row.auto_skip:
        return True
    if _NOISE_REASONS.intersection(row.skip_reasons):
        return True
    if column is None:
        return False
    raw = row.values.get(column)
    if isinstance(raw, str):
        text = raw.strip()
        if text and not _DIGIT.search(text):
            return True
    return False


def build_summary(rows: Sequence[TransformedRow]) -> ImportSummary:
    """Aggregate counts, totals, date range and touched months of transformed rows."""
    income = sum(r.amount for r in rows if r.type == INCOME)
    expense = sum(r.amount for r in rows if r.type == EXPENSE)
    dates = sorted(r.transaction_date for r in rows)
    months: list[str] = []
    for r in rows:
        month = r.transaction_date[:7]
        if month not in months:
            months.append(month)
    return ImportSummary(
        count=len(rows),
        income_total=round(income, 2),
        expense_total=round(expense, 2),
        date_range=DateRange(min=dates[0] if dates else None, max=dates[-1] if dates else None),
        months=months,
    )


def budget_keys(records: Iterable[LedgerTransaction]) -> list[BudgetKey]:
    """Distinct budget addresses touched by ``records``, in first-seen order.

    Category budgets are keyed by transaction month and by posting month
    (category spend is bucketed on the posting date when one exists);
    source budgets by transaction month.
    """
    keys: list[BudgetKey] = []
    seen: set[BudgetKey] = set()

    def add(key: BudgetKey) -> None:
        if key not in seen:
            seen.add(key)
            keys.append(key)

    for record in records:
        if record.category_id is not None:
            add(BudgetKey.for_date("category", record.category_id, record.transaction_date))
            add(BudgetKey.for_date("category", record.category_id, record.posting_date))
        if record.cash_flow_source_id is not None:
            add(BudgetKey.for_date("source", record.cash_flow_source_id, record.transaction_date))
    return keys


class CashflowImportProcessor:
    """Transforms session rows into transactions and commits them through a ledger.

    Args:
        ledger: transaction ledger used for suggestion lookups, inserts and
            budget recomputation
    """

    def __init__(self, ledger: Ledger) -> None:
        self.ledger = ledger

    # ------------------------------------------------------------------
    # suggestions
    # ------------------------------------------------------------------
    def build_suggestions(
        self,
        user_id: int,
        rows: Sequence[RowInsight],
        request: ImportRequest,
        categories: Mapping[int, CategoryInfo],
        sources: Mapping[int, CashFlowSourceInfo],
    ) -> Suggestions:
        suggestions = Suggestions()
        column = request.mapping.description.column
        if column is None:
            return suggestions

        skipped = request.skipped_indices()
        descriptions: list[str] = []
        for row in rows:
            if row.index in skipped:
                continue
            raw = row.values.get(column)
            if not isinstance(raw, str) or not raw.strip():
                continue
            key = _suggestion_key(raw)
            if key not in descriptions:
                descriptions.append(key)
            if len(descriptions) >= MAX_SUGGESTION_DESCRIPTIONS:
                break
        if not descriptions:
            return suggestions

        # history arrives latest-first; the first hit per description is kept
        for entry in self.ledger.find_by_descriptions(user_id, descriptions):
            key = _suggestion_key(entry.description)
            if entry.category_id is not None and entry.category_id in categories:
                suggestions.categories.setdefault(key, entry.category_id)
            if entry.cash_flow_source_id is not None and entry.cash_flow_source_id in sources:
                suggestions.sources.setdefault(key, entry.cash_flow_source_id)
        logger.debug("built %d suggestions from %d descriptions", len(suggestions), len(descriptions))
        return suggestions

    # ------------------------------------------------------------------
    # transform
    # ------------------------------------------------------------------
    def transform(
        self,
        session: ImportSession,
        user_id: int,
        request: ImportRequest,
        categories: Mapping[int, CategoryInfo],
        sources: Mapping[int, CashFlowSourceInfo],
        *,
        progress: ProgressTracker | None = None,
        reference: date | None = None,
    ) -> TransformResult:
        """Dry-run the import: resolve every candidate row without persisting.

        Args:
            session: import session holding the analyzed rows
            user_id: owner of the session and of the history used for suggestions
            request: validated mapping, exclusions and assignments
            categories: user's categories keyed by id
            sources: user's cash-flow sources keyed by id
            progress: optional row progress display
            reference: date used to complete partial free-form dates

        Returns:
            TransformResult with the accepted rows, one RowError per rejected
            row, the summary and the stored analysis
        """
        rows = session.row_insights()
        skipped = request.skipped_indices()
        suggestions = self.build_suggestions(user_id, rows, request, categories, sources)

        results: list[TransformedRow] = []
        errors: list[RowError] = []
        for row in rows:
            if progress is not None:
                progress.advance()
            if row.index in skipped:
                continue
            outcome = self._transform_row(row, request, suggestions, categories, sources, reference)
            if isinstance(outcome, TransformedRow):
                results.append(outcome)
            elif isinstance(outcome, RowError):
                errors.append(outcome)

        analysis = session.analysis
        logger.info(
            "transform import_id=%s rows=%d accepted=%d errors=%d",
            session.id,
            len(rows),
            len(results),
            len(errors),
        )
        return TransformResult(
            rows=results,
            errors=errors,
            summary=build_summary(results),
            analysis={
                "header_candidates": list(analysis.get("header_candidates", [])),
                "detected_date_range": analysis.get("detected_date_range") or {"min": None, "max": None},
            },
        )

    def _transform_row(
        self,
        row: RowInsight,
        request: ImportRequest,
        suggestions: Suggestions,
        categories: Mapping[int, CategoryInfo],
        sources: Mapping[int, CashFlowSourceInfo],
        reference: date | None,
    ) -> TransformedRow | RowError | None:
        """Resolve one row. ``None`` means the row was dropped silently."""
        mapping = request.mapping
        values = row.values

        def fail(field_name: str, message: str) -> RowError:
            return RowError(row_index=row.index, field=field_name, message=message, values=dict(values))

        tx_date, error = resolve_date(values, mapping.date, reference=reference)
        if error is not None:
            if _silently_skippable(row, mapping.date.column):
                return None
            return fail("date", error)

        amount = resolve_amount(values, mapping.amount)
        if amount.error is not None:
            return fail("amount", amount.error)

        kind, error = resolve_type(values, mapping.type, amount.direction)
        if error is not None:
            return fail("type", error)
        if kind is None:
            return fail("type", MSG_TYPE_UNRESOLVED)

        posting_date, error = resolve_date(values, mapping.posting_date, fallback=tx_date, reference=reference)
        if error is not None:
            posting_column = mapping.posting_date.column if isinstance(mapping.posting_date, ColumnDateMapping) else None
            if posting_column is not None and _silently_skippable(row, posting_column):
                return None
            return fail("posting_date", error)

        description = _column_value(values, mapping.description)
        if not isinstance(description, str) or not description.strip():
            return fail("description", MSG_DESCRIPTION_REQUIRED)
        description = description.strip()

        reference_number = _column_value(values, mapping.reference)
        notes = _column_value(values, mapping.notes)

        assignment = request.row_assignments.get(str(row.index))
        category_id = _first_set(
            assignment.category_id if assignment else None,
            request.defaults.category_id,
            suggestions.category_for(description),
        )
        source_id = _first_set(
            assignment.cash_flow_source_id if assignment else None,
            request.defaults.cash_flow_source_id,
            suggestions.source_for(description),
        )
        if assignment is not None and assignment.notes:
            notes = assignment.notes

        category = categories.get(category_id) if category_id is not None else None
        source = sources.get(source_id) if source_id is not None else None
        if category is not None and not category.accepts(kind):
            return fail("category_id", MSG_CATEGORY_MISMATCH)
        if source is not None and not source.accepts(kind):
            return fail("cash_flow_source_id", MSG_SOURCE_MISMATCH)

        return TransformedRow(
            row_index=row.index,
            original_row_number=row.original_index if row.original_index is not None else row.index + 1,
            transaction_date=tx_date.isoformat(),
            posting_date=posting_date.isoformat() if posting_date is not None else None,
            description=description,
            amount=round(amount.amount, 2),
            type=kind,
            category_id=category.id if category else None,
            category_name=category.name if category else None,
            cash_flow_source_id=source.id if source else None,
            cash_flow_source_name=source.name if source else None,
            reference_number=_optional_text(reference_number),
            notes=_optional_text(notes),
            raw_values=dict(values),
        )

    # ------------------------------------------------------------------
    # commit
    # ------------------------------------------------------------------
    def commit(
        self,
        session: ImportSession,
        user_id: int,
        request: ImportRequest,
        categories: Mapping[int, CategoryInfo],
        sources: Mapping[int, CashFlowSourceInfo],
        *,
        progress: ProgressTracker | None = None,
        reference: date | None = None,
    ) -> CommitResult:
        """Re-run ``transform`` and, when it is error-free, persist the batch.

        Inserts and budget recomputation share one atomic unit; any failure
        rolls everything back and surfaces as ``LedgerError``.

        Raises:
            LedgerError: persistence failed (nothing was written)
        """
        preview = self.transform(
            session, user_id, request, categories, sources, progress=progress, reference=reference
        )
        if preview.errors:
            logger.warning("commit refused import_id=%s errors=%d", session.id, len(preview.errors))
            return CommitResult(rows=preview.rows, errors=preview.errors, summary=preview.summary)

        records = [to_ledger_transaction(user_id, r) for r in preview.rows]
        try:
            with self.ledger.atomic():
                created_ids = self.ledger.insert_transactions(user_id, records) if records else []
                refreshed = self._refresh_budgets(user_id, records)
        except LedgerError:
            raise
        except Exception as e:
            raise LedgerError(f"commit failed for import {session.id}: {e}") from e

        logger.info(
            "commit import_id=%s inserted=%d budgets_refreshed=%d",
            session.id,
            len(created_ids),
            refreshed,
        )
        return CommitResult(
            rows=preview.rows,
            errors=[],
            summary=preview.summary,
            created_ids=list(created_ids),
            committed=True,
        )

    def _refresh_budgets(self, user_id: int, records: Sequence[LedgerTransaction]) -> int:
        refreshed = 0
        for key in budget_keys(records):
            if key.kind == "category":
                budget = self.ledger.category_budget(user_id, key.owner_id, key.year, key.month)
            else:
                budget = self.ledger.source_budget(user_id, key.owner_id, key.year, key.month)
            if budget is None:
                continue
            budget.recompute_spent()
            refreshed += 1
        return refreshed


def to_ledger_transaction(user_id: int, row: TransformedRow) -> LedgerTransaction:
    tx_date = date.fromisoformat(row.transaction_date)
    posting = date.fromisoformat(row.posting_date) if row.posting_date else tx_date
    return LedgerTransaction(
        user_id=user_id,
        amount=row.amount,
        type=row.type,
        transaction_date=tx_date,
        posting_date=posting,
        description=row.description,
        category_id=row.category_id,
        cash_flow_source_id=row.cash_flow_source_id,
        notes=row.notes,
        reference_number=row.reference_number,
        status=TRANSACTION_STATUS_COMPLETED,
    )


def _first_set(*candidates: int | None) -> int | None:
    for candidate in candidates:
        if candidate:
            return candidate
    return None


def _optional_text(value: Any) -> str | None:
    if value is None or value == "":
        return None
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)
