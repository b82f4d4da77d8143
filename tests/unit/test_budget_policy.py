from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from cashflow_import.models.budget import BudgetKey, category_spent, remaining_amount, source_spent
from cashflow_import.models.directory import CashFlowSourceInfo, CategoryInfo, category_map, source_map

ROWS = [(100.0, "expense"), (30.5, "expense"), (20.25, "income")]


@pytest.mark.parametrize(
    "category_type, expected",
    [
        ("expense", Decimal("130.50")),
        ("income", Decimal("20.25")),
        ("both", Decimal("110.25")),
        (None, Decimal("130.50")),
    ],
)
def test_category_spent(category_type, expected):
    assert category_spent(category_type, ROWS) == expected


@pytest.mark.parametrize(
    "source_type, allows_refunds, expected",
    [
        ("expense", False, Decimal("130.50")),
        ("expense", True, Decimal("110.25")),
        ("income", False, Decimal("20.25")),
        ("income", True, Decimal("-110.25")),
    ],
)
def test_source_spent(source_type, allows_refunds, expected):
    assert source_spent(source_type, allows_refunds, ROWS) == expected


def test_no_rows_spend_nothing():
    assert category_spent("expense", []) == Decimal("0.00")
    assert source_spent("expense", True, []) == Decimal("0.00")


def test_remaining_amount_rounds_half_up():
    assert remaining_amount(Decimal("100"), Decimal("33.335")) == Decimal("66.67")
    assert remaining_amount(50.0, Decimal("80.00")) == Decimal("-30.00")


def test_budget_key_for_date():
    assert BudgetKey.for_date("source", 20, date(2024, 12, 31)) == BudgetKey("source", 20, 2024, 12)


def test_type_acceptance():
    assert CategoryInfo(1, "Salary", "income").accepts("income")
    assert not CategoryInfo(1, "Salary", "income").accepts("expense")
    assert CategoryInfo(3, "Household", "both").accepts("expense")
    assert not CashFlowSourceInfo(20, "Card", "expense").accepts("income")
    assert CashFlowSourceInfo(30, "Store card", "expense", allows_refunds=True).accepts("income")


def test_directory_maps_from_records():
    categories = category_map([{"id": "2", "name": "Groceries", "type": "expense"}])
    sources = source_map([{"id": 30, "name": "Store card", "type": "expense", "allows_refunds": 1}])
    assert categories == {2: CategoryInfo(2, "Groceries", "expense")}
    assert sources[30].allows_refunds is True
