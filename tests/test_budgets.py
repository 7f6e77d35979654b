import pytest

from budgets import DEFAULT_BUDGETS, BudgetBook, compare_budgets, resolve_budget
from normalizer import DEFAULT_CATEGORIES
from periods import MonthKey


def test_budget_carries_forward_from_earlier_month() -> None:
    book = BudgetBook.from_mapping({"2024-03": {"Food": 300}})
    resolved = resolve_budget(book, MonthKey(2024, 5), categories=DEFAULT_CATEGORIES)

    assert resolved.source_month == MonthKey(2024, 3)
    assert not resolved.is_default
    assert resolved.amounts == {
        "Food": 300.0,
        "Transport": 0.0,
        "Shopping": 0.0,
        "Bills": 0.0,
        "Other": 0.0,
    }


def test_budget_never_borrows_from_later_months() -> None:
    book = BudgetBook.from_mapping({"2024-03": {"Food": 300}})
    resolved = resolve_budget(book, MonthKey(2022, 1), categories=DEFAULT_CATEGORIES)
    assert resolved.is_default
    assert resolved.amounts == dict(DEFAULT_BUDGETS)
    assert resolved.total == 1500.0


def test_budget_lookback_is_bounded() -> None:
    book = BudgetBook.from_mapping({"2020-01": {"Food": 50}})
    month = MonthKey(2024, 6)
    assert resolve_budget(book, month, categories=DEFAULT_CATEGORIES).is_default
    far = resolve_budget(book, month, categories=DEFAULT_CATEGORIES, lookback_months=60)
    assert far.source_month == MonthKey(2020, 1)


def test_budget_without_source_or_before_year_one() -> None:
    assert resolve_budget(None, MonthKey(2024, 1), categories=["Food"]).amounts == {
        "Food": 500.0,
        "Other": 100.0,
    }
    resolved = resolve_budget(BudgetBook(), MonthKey(1, 2), categories=DEFAULT_CATEGORIES)
    assert resolved.is_default


def test_custom_categories_default_to_zero() -> None:
    resolved = resolve_budget(None, MonthKey(2024, 1), categories=["Food", "Coffee"])
    assert resolved.amounts["Coffee"] == 0.0


def test_compare_budgets_under_budget() -> None:
    comparison = compare_budgets({"Food": 600.0}, DEFAULT_BUDGETS, DEFAULT_CATEGORIES)

    food = comparison.line_for("Food")
    assert food.remaining == -100.0
    assert food.delta_vs_budget == 100.0
    assert comparison.total_budget == 1500.0
    assert comparison.total_spent == 600.0
    assert comparison.total_remaining == 900.0
    assert comparison.used_percent == pytest.approx(40.0)
    assert comparison.top_category.category == "Food"


def test_compare_budgets_overspent_clamps_totals() -> None:
    comparison = compare_budgets({"Food": 2000.0}, DEFAULT_BUDGETS, DEFAULT_CATEGORIES)
    assert comparison.total_remaining == 0.0
    assert comparison.used_percent == 100.0
    assert comparison.delta_vs_budget == -500.0


def test_compare_budgets_zero_budget() -> None:
    comparison = compare_budgets({"Food": 10.0}, {}, DEFAULT_CATEGORIES)
    assert comparison.total_budget == 0.0
    assert comparison.used_percent == 0.0
    assert comparison.line_for("Food").remaining == -10.0
