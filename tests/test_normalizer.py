from datetime import date
from decimal import Decimal
from types import SimpleNamespace

from normalizer import (
    DEFAULT_CATEGORIES,
    coerce_amount,
    coerce_quantity,
    normalize_expense,
    normalize_expenses,
    resolve_category,
)


def test_amount_coercion() -> None:
    assert coerce_amount("$1,234.50") == 1234.5
    assert coerce_amount("(12.00)") == -12.0
    assert coerce_amount(Decimal("9.99")) == 9.99
    assert coerce_amount("abc") == 0.0
    assert coerce_amount(None) == 0.0
    assert coerce_amount(float("nan")) == 0.0
    assert coerce_amount(True) == 0.0
    assert coerce_quantity("3") == 3
    assert coerce_quantity(0) == 1
    assert coerce_quantity("lots") == 1


def test_category_resolution() -> None:
    assert resolve_category("Food", DEFAULT_CATEGORIES) == "Food"
    assert resolve_category(" food ", DEFAULT_CATEGORIES) == "Food"
    assert resolve_category("Fod", DEFAULT_CATEGORIES) == "Food"
    assert resolve_category("Bils", DEFAULT_CATEGORIES) == "Bills"
    assert resolve_category("Groceries", DEFAULT_CATEGORIES) == "Other"
    assert resolve_category(None, DEFAULT_CATEGORIES) == "Other"
    assert resolve_category("   ", None) == "Other"
    assert resolve_category("Groceries", None) == "Groceries"


def test_camel_case_record() -> None:
    expense = normalize_expense(
        {
            "id": 7,
            "merchantName": "  Deli ",
            "date": "2024-06-10",
            "totalAmount": "40.00",
            "category": "Food",
            "paymentMethod": "card",
        },
        DEFAULT_CATEGORIES,
    )
    assert expense.id == 7
    assert expense.merchant_name == "Deli"
    assert expense.date_str == "2024-06-10"
    assert expense.amount == 40.0
    assert expense.category == "Food"
    assert expense.payment_method == "card"
    assert expense.currency == "USD"
    assert expense.source == "unknown"
    assert not expense.has_items


def test_date_fallbacks() -> None:
    upload_only = normalize_expense({"uploadDate": "2024-06-03T23:30:00Z"})
    assert upload_only.date_str == "2024-06-03"

    bad_date = normalize_expense({"date": "2024-02-30", "createdAt": "2024-02-28"})
    assert bad_date.date_str == "2024-02-28"

    us_format = normalize_expense({"date": "06/15/2024"})
    assert us_format.date_str == "2024-06-15"

    as_object = normalize_expense({"date": date(2024, 1, 2)})
    assert as_object.date_str == "2024-01-02"

    undated = normalize_expense({"date": "not a date"})
    assert undated.date_str is None
    assert not undated.is_dated


def test_items_inherit_category_and_drive_amount() -> None:
    expense = normalize_expense(
        {
            "category": "Shopping",
            "totalAmount": 999,
            "items": [
                {"description": "Bread", "totalPrice": 10, "category": "Food"},
                {"description": "Bag", "unitPrice": "2.50"},
                {"description": "Freebie"},
            ],
        },
        DEFAULT_CATEGORIES,
    )
    assert [item.category for item in expense.items] == ["Food", "Shopping", "Shopping"]
    assert [item.amount for item in expense.items] == [10.0, 2.5, 0.0]
    assert expense.amount == 12.5
    assert expense.total_amount == 999.0


def test_attribute_records_and_empty_input() -> None:
    record = SimpleNamespace(
        id=3,
        merchant_name="Metro",
        date="2024-06-12",
        total_amount=Decimal("60"),
        category="transport",
        currency="eur",
        items=[],
    )
    expense = normalize_expense(record, DEFAULT_CATEGORIES)
    assert expense.category == "Transport"
    assert expense.amount == 60.0
    assert expense.currency == "EUR"

    assert normalize_expenses(None) == []
    assert normalize_expenses([None, {}])[0].category == "Other"
