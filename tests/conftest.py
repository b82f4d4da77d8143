# Shared pytest fixtures
from __future__ import annotations

import copy
import tempfile
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Any

import pytest

from cashflow_import.models.budget import (
    LedgerEntry,
    LedgerTransaction,
    category_spent,
    remaining_amount,
    source_spent,
)
from cashflow_import.models.directory import CashFlowSourceInfo, CategoryInfo
from cashflow_import.models.grid import GridRow, trim_trailing_empty
from cashflow_import.models.session import ImportSession, build_payload
from cashflow_import.services.analyzer import analyze
from cashflow_import.services.session_store import ImportSessionManager


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        yield p


@pytest.fixture()
def sample_config_yaml() -> str:
    return """session_directory: ./storage/sessions
session_ttl_minutes: 120
upload_directory: ./storage/uploads
allowed_extensions: [xlsx, xls, csv, txt, xlsm]
limits:
  max_file_rows: 10000
  max_clipboard_rows: 2000
  max_columns: 50
  max_upload_bytes: 1048576
  max_clipboard_chars: 5000
database:
  host: localhost
  port: 5432
  user: appuser
  password: secret
  database: budget
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "import.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


# ---------------------------------------------------------------------------
# in-memory collaborators
# ---------------------------------------------------------------------------

class FakeBudget:
    """Budget entity re-summing the fake ledger with the production policy functions."""

    def __init__(
        self,
        ledger: FakeLedger,
        kind: str,
        user_id: int,
        owner_id: int,
        year: int,
        month: int,
        planned: str = "1000.00",
        owner_type: str | None = "expense",
        allows_refunds: bool = False,
    ) -> None:
        self.ledger = ledger
        self.kind = kind
        self.user_id = user_id
        self.owner_id = owner_id
        self.year = year
        self.month = month
        self.planned_amount = Decimal(planned)
        self.owner_type = owner_type
        self.allows_refunds = allows_refunds
        self.spent_amount = Decimal("0")
        self.remaining_amount = self.planned_amount
        self.recompute_calls = 0

    def _rows(self) -> list[tuple[float, str]]:
        rows = []
        for r in self.ledger.records:
            if r.user_id != self.user_id:
                continue
            if self.kind == "category":
                when = r.posting_date or r.transaction_date
                if r.category_id != self.owner_id:
                    continue
            else:
                when = r.transaction_date
                if r.cash_flow_source_id != self.owner_id:
                    continue
            if (when.year, when.month) == (self.year, self.month):
                rows.append((r.amount, r.type))
        return rows

    def recompute_spent(self) -> Decimal:
        self.recompute_calls += 1
        if self.kind == "category":
            self.spent_amount = category_spent(self.owner_type, self._rows())
        else:
            self.spent_amount = source_spent(self.owner_type, self.allows_refunds, self._rows())
        self.remaining_amount = remaining_amount(self.planned_amount, self.spent_amount)
        return self.spent_amount


class FakeLedger:
    """Ledger kept in lists; ``atomic`` restores the previous state on failure."""

    def __init__(self) -> None:
        self.history: list[LedgerEntry] = []
        self.records: list[LedgerTransaction] = []
        self.budgets: dict[tuple[str, int, int, int], FakeBudget] = {}
        self.lookups: list[list[str]] = []
        self.fail_on_insert = False
        self.fail_on_budget = False
        self._next_id = 1

    def add_history(self, description: str, when: date, category_id=None, source_id=None) -> None:
        self.history.append(LedgerEntry(description, when, category_id, source_id))

    def add_budget(self, kind: str, user_id: int, owner_id: int, year: int, month: int, **kw: Any) -> FakeBudget:
        budget = FakeBudget(self, kind, user_id, owner_id, year, month, **kw)
        self.budgets[(kind, owner_id, year, month)] = budget
        return budget

    @contextmanager
    def atomic(self) -> Iterator[None]:
        snapshot = (list(self.records), self._next_id, copy.copy(self.budgets))
        spent = {k: (b.spent_amount, b.remaining_amount) for k, b in self.budgets.items()}
        try:
            yield
        except Exception:
            self.records, self._next_id, self.budgets = snapshot
            for key, (s, r) in spent.items():
                self.budgets[key].spent_amount = s
                self.budgets[key].remaining_amount = r
            raise

    def insert_transactions(self, user_id: int, records: Sequence[LedgerTransaction]) -> list[int]:
        if self.fail_on_insert:
            raise RuntimeError("insert exploded")
        ids = []
        for r in records:
            self.records.append(r)
            ids.append(self._next_id)
            self._next_id += 1
        return ids

    def find_by_descriptions(self, user_id: int, descriptions: Sequence[str]) -> list[LedgerEntry]:
        self.lookups.append(list(descriptions))
        wanted = {d.lower() for d in descriptions}
        hits = [e for e in self.history if e.description.lower() in wanted]
        return sorted(hits, key=lambda e: e.transaction_date, reverse=True)

    def category_budget(self, user_id: int, category_id: int, year: int, month: int) -> FakeBudget | None:
        if self.fail_on_budget:
            raise RuntimeError("budget exploded")
        return self.budgets.get(("category", category_id, year, month))

    def source_budget(self, user_id: int, source_id: int, year: int, month: int) -> FakeBudget | None:
        return self.budgets.get(("source", source_id, year, month))


class FakeDirectory:
    def __init__(self, categories: dict[int, CategoryInfo], sources: dict[int, CashFlowSourceInfo]) -> None:
        self.categories = categories
        self.sources = sources
        self.calls = 0

    def lookup(self, user_id: int):
        self.calls += 1
        return dict(self.categories), dict(self.sources)


@pytest.fixture()
def categories() -> dict[int, CategoryInfo]:
    return {
        1: CategoryInfo(1, "Salary", "income"),
        2: CategoryInfo(2, "Groceries", "expense"),
        3: CategoryInfo(3, "Household", "both"),
        4: CategoryInfo(4, "Rent", "expense"),
    }


@pytest.fixture()
def sources() -> dict[int, CashFlowSourceInfo]:
    return {
        10: CashFlowSourceInfo(10, "Employer", "income"),
        20: CashFlowSourceInfo(20, "Credit card", "expense"),
        30: CashFlowSourceInfo(30, "Store card", "expense", allows_refunds=True),
    }


@pytest.fixture()
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture()
def directory(categories, sources) -> FakeDirectory:
    return FakeDirectory(categories, sources)


class Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kw: Any) -> None:
        self.now = self.now + timedelta(**kw)


@pytest.fixture()
def clock() -> Clock:
    return Clock(datetime(2024, 3, 1, 9, 0, tzinfo=UTC))


@pytest.fixture()
def session_store(tmp_path: Path, clock: Clock) -> ImportSessionManager:
    return ImportSessionManager(tmp_path / "sessions", ttl_minutes=120, clock=clock)


def grid(rows: Sequence[Sequence[Any]]) -> list[GridRow]:
    return [GridRow(index=i, original_index=i + 1, values=trim_trailing_empty(r)) for i, r in enumerate(rows)]


@pytest.fixture()
def make_session(session_store: ImportSessionManager):
    """Analyze literal rows and store them as an import session."""
    def _make(rows: Sequence[Sequence[Any]], user_id: int = 7) -> ImportSession:
        grid_rows = grid(rows)
        total_columns = max((len(r.values) for r in grid_rows), default=0)
        analysis = analyze(grid_rows, total_columns, reference=date(2024, 3, 1))
        payload = build_payload(analysis, len(grid_rows), total_columns, source="clipboard")
        return session_store.create(user_id, payload)
    return _make


@pytest.fixture()
def statement_rows() -> list[list[Any]]:
    """Bank statement with a title, a header, four transactions and a footer."""
    return [
        ["Account statement"],
        ["Date", "Description", "Amount", "Reference"],
        ["01/02/2024", "Salary", "10,000.00", "REF-A"],
        ["03/02/2024", "Supermarket", "-350.45", "REF-B"],
        ["15/02/2024", "Rent", "-4.500,00", None],
        ["20/02/2024", "Refund supermarket", "120", "REF-D"],
        ["Total", None, "5,269.55"],
    ]
