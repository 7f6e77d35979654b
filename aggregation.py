from __future__ import annotations

import math
from collections import defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date
from typing import Optional, Union

from normalizer import (
    FALLBACK_CATEGORY,
    CategoryLike,
    NormalizedExpense,
    category_names,
)
from periods import DateRange

WEEKDAY_NAMES = (
    "Sunday",
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
)


def filter_by_range(
    expenses: Iterable[NormalizedExpense],
    date_range: Optional[DateRange],
    *,
    override: Optional[DateRange] = None,
) -> list[NormalizedExpense]:
    active = override if override is not None else date_range
    if active is None or active.is_all_time:
        return list(expenses)
    return [expense for expense in expenses if active.contains(expense.date_str)]


@dataclass(frozen=True)
class CategoryTotals:
    category_totals: dict[str, float]
    item_category_totals: dict[str, float]

    @property
    def total(self) -> float:
        return sum(self.category_totals.values())


def _bucket(category: str, totals: dict[str, float]) -> str:
    return category if category in totals else FALLBACK_CATEGORY


def aggregate_categories(
    expenses: Iterable[NormalizedExpense], categories: Iterable[CategoryLike]
) -> CategoryTotals:
    """Spend per category.

    An expense with line items contributes each item to the item's own
    category; one without items contributes its whole amount to its own
    category. Either way every expense is counted exactly once.
    """
    names = category_names(categories)
    totals = {name: 0.0 for name in names}
    item_totals = {name: 0.0 for name in names}
    for expense in expenses:
        if expense.items:
            for item in expense.items:
                key = _bucket(item.category, totals)
                totals[key] += item.amount
                item_totals[key] += item.amount
        else:
            totals[_bucket(expense.category, totals)] += expense.amount
    return CategoryTotals(category_totals=totals, item_category_totals=item_totals)


@dataclass(frozen=True)
class LeaderboardEntry:
    name: str
    total: float
    count: int


@dataclass(frozen=True)
class CategoryLeaders:
    top_merchants: tuple[LeaderboardEntry, ...] = ()
    top_items: tuple[LeaderboardEntry, ...] = ()


@dataclass(frozen=True)
class FlatItem:
    date: Optional[str]
    category: str
    merchant: Optional[str]
    description: Optional[str]
    total_price: Optional[float] = None
    unit_price: Optional[float] = None
    total_amount: Optional[float] = None
    quantity: Optional[int] = None


def flatten_items(expenses: Iterable[NormalizedExpense]) -> list[FlatItem]:
    """One row per line item; an expense without items becomes one row."""
    flat: list[FlatItem] = []
    for expense in expenses:
        if expense.items:
            for item in expense.items:
                flat.append(
                    FlatItem(
                        date=expense.date_str,
                        category=item.category,
                        merchant=expense.merchant_name,
                        description=item.description,
                        total_price=item.total_price,
                        unit_price=item.unit_price,
                        quantity=item.quantity,
                    )
                )
        else:
            flat.append(
                FlatItem(
                    date=expense.date_str,
                    category=expense.category,
                    merchant=expense.merchant_name,
                    description=expense.merchant_name,
                    total_amount=expense.total_amount,
                )
            )
    return flat


def resolve_item_amount(item: FlatItem) -> float:
    for candidate in (item.total_price, item.unit_price, item.total_amount):
        if candidate is not None and math.isfinite(candidate) and candidate > 0:
            return candidate
    if item.quantity and item.unit_price:
        product = item.quantity * item.unit_price
        if math.isfinite(product) and product > 0:
            return product
    return 0.0


def _rank(bucket: dict[str, list], limit: int) -> tuple[LeaderboardEntry, ...]:
    entries = [
        LeaderboardEntry(name=name, total=stats[0], count=stats[1])
        for name, stats in bucket.items()
    ]
    # Equal totals fall back to the name so ordering never depends on input order.
    entries.sort(key=lambda e: (-e.total, e.name.casefold(), e.name))
    return tuple(entries[:limit])


def build_leaderboards(
    expenses: Iterable[NormalizedExpense],
    categories: Iterable[CategoryLike],
    *,
    limit: int = 5,
) -> dict[str, CategoryLeaders]:
    names = category_names(categories)
    merchants: dict[str, dict[str, list]] = defaultdict(dict)
    items: dict[str, dict[str, list]] = defaultdict(dict)

    def record(target: dict[str, dict[str, list]], category: str, key: str, amount: float) -> None:
        key = key.strip() or FALLBACK_CATEGORY
        stats = target[category].setdefault(key, [0.0, 0])
        stats[0] += amount
        stats[1] += 1

    for item in flatten_items(expenses):
        amount = resolve_item_amount(item)
        if amount <= 0:
            continue
        category = item.category if item.category in names else FALLBACK_CATEGORY
        merchant = item.merchant or item.description or FALLBACK_CATEGORY
        description = item.description or merchant or "Item"
        record(merchants, category, merchant, amount)
        record(items, category, description, amount)

    return {
        name: CategoryLeaders(
            top_merchants=_rank(merchants.get(name, {}), limit),
            top_items=_rank(items.get(name, {}), limit),
        )
        for name in names
    }


@dataclass(frozen=True)
class DailyTotal:
    date: str
    total: float


@dataclass(frozen=True)
class TrendPoint:
    x: float
    y: float
    total: float
    date: str


@dataclass(frozen=True)
class Trend:
    points: tuple[TrendPoint, ...] = ()
    min: float = 0.0
    max: float = 0.0
    latest: Optional[float] = None
    most_active_day: Optional[DailyTotal] = None

    @property
    def has_data(self) -> bool:
        return bool(self.points)

    @property
    def svg_points(self) -> str:
        return " ".join(f"{point.x:g},{point.y:g}" for point in self.points)


def daily_totals(expenses: Iterable[NormalizedExpense]) -> list[DailyTotal]:
    totals: dict[str, float] = {}
    for expense in expenses:
        if expense.date_str is None:
            continue
        totals[expense.date_str] = totals.get(expense.date_str, 0.0) + expense.amount
    return [DailyTotal(day, total) for day, total in sorted(totals.items())]


def build_trend(daily: Iterable[Union[DailyTotal, tuple[str, float]]]) -> Trend:
    """Chart-ready polyline on a 0-100 grid; higher spend sits closer to y=0."""
    entries = sorted(
        (d if isinstance(d, DailyTotal) else DailyTotal(d[0], float(d[1])) for d in daily),
        key=lambda d: d.date,
    )
    if not entries:
        return Trend()

    totals = [entry.total for entry in entries]
    max_value = max(totals)
    min_value = min(totals)
    scale = (max_value - min_value) or max_value or 1
    count = len(entries)
    points = []
    for index, entry in enumerate(entries):
        x = 50.0 if count == 1 else index / (count - 1) * 100
        y = 100 - (entry.total - min_value) / scale * 100
        points.append(TrendPoint(x=x, y=y, total=entry.total, date=entry.date))

    most_active = entries[0]
    for entry in entries[1:]:
        if entry.total > most_active.total:
            most_active = entry

    return Trend(
        points=tuple(points),
        min=min_value,
        max=max_value,
        latest=entries[-1].total,
        most_active_day=most_active,
    )


@dataclass(frozen=True)
class MerchantStat:
    name: str
    count: int
    total: float
    average: float
    categories: tuple[str, ...]
    last_visit: Optional[str]


@dataclass(frozen=True)
class CategoryStat:
    category: str
    count: int
    total: float
    average: float
    unique_merchants: int


@dataclass(frozen=True)
class PaymentStat:
    method: str
    count: int
    total: float
    percentage: float


@dataclass(frozen=True)
class SpendingPatterns:
    top_merchants: tuple[MerchantStat, ...]
    categories: tuple[CategoryStat, ...]
    payment_methods: tuple[PaymentStat, ...]
    total_transactions: int
    total_spent: float
    average_transaction: float
    most_active_weekday: Optional[str]
    weekday_distribution: tuple[int, ...] = field(default=(0,) * 7)


def spending_patterns(
    expenses: Sequence[NormalizedExpense], *, merchant_limit: int = 10
) -> Optional[SpendingPatterns]:
    if not expenses:
        return None

    merchants: dict[str, dict] = {}
    categories: dict[str, dict] = {}
    payments: dict[str, list] = {}
    weekdays = [0] * 7
    for expense in expenses:
        name = expense.merchant_name or "Unknown"
        stats = merchants.setdefault(
            name, {"count": 0, "total": 0.0, "categories": [], "dates": []}
        )
        stats["count"] += 1
        stats["total"] += expense.amount
        if expense.category not in stats["categories"]:
            stats["categories"].append(expense.category)
        if expense.date_str:
            stats["dates"].append(expense.date_str)

        cat = categories.setdefault(
            expense.category, {"count": 0, "total": 0.0, "merchants": set()}
        )
        cat["count"] += 1
        cat["total"] += expense.amount
        if expense.merchant_name:
            cat["merchants"].add(expense.merchant_name)

        method = payments.setdefault(expense.payment_method or "Not specified", [0, 0.0])
        method[0] += 1
        method[1] += expense.amount

        if expense.date_str:
            weekday = date.fromisoformat(expense.date_str).weekday()
            weekdays[(weekday + 1) % 7] += 1

    top_merchants = sorted(
        (
            MerchantStat(
                name=name,
                count=stats["count"],
                total=stats["total"],
                average=stats["total"] / stats["count"],
                categories=tuple(stats["categories"]),
                last_visit=max(stats["dates"]) if stats["dates"] else None,
            )
            for name, stats in merchants.items()
        ),
        key=lambda m: m.total,
        reverse=True,
    )[:merchant_limit]
    category_stats = sorted(
        (
            CategoryStat(
                category=name,
                count=stats["count"],
                total=stats["total"],
                average=stats["total"] / stats["count"],
                unique_merchants=len(stats["merchants"]),
            )
            for name, stats in categories.items()
        ),
        key=lambda c: c.total,
        reverse=True,
    )
    count = len(expenses)
    payment_stats = sorted(
        (
            PaymentStat(
                method=method,
                count=stats[0],
                total=stats[1],
                percentage=stats[0] / count * 100,
            )
            for method, stats in payments.items()
        ),
        key=lambda p: p.total,
        reverse=True,
    )
    total_spent = sum(expense.amount for expense in expenses)
    most_active = WEEKDAY_NAMES[weekdays.index(max(weekdays))] if any(weekdays) else None
    return SpendingPatterns(
        top_merchants=tuple(top_merchants),
        categories=tuple(category_stats),
        payment_methods=tuple(payment_stats),
        total_transactions=count,
        total_spent=total_spent,
        average_transaction=total_spent / count,
        most_active_weekday=most_active,
        weekday_distribution=tuple(weekdays),
    )


def detailed_items(expenses: Iterable[NormalizedExpense]) -> list[dict[str, object]]:
    rows: list[dict[str, object]] = []
    for expense in expenses:
        merchant = expense.merchant_name or "Unknown"
        if expense.items:
            for item in expense.items:
                rows.append(
                    {
                        "date": expense.date_str,
                        "merchantName": merchant,
                        "category": item.category,
                        "description": item.description or "Unknown Item",
                        "quantity": item.quantity,
                        "unitPrice": item.unit_price
                        if item.unit_price is not None
                        else item.amount,
                        "totalPrice": item.amount,
                    }
                )
        else:
            rows.append(
                {
                    "date": expense.date_str,
                    "merchantName": merchant,
                    "category": expense.category,
                    "description": expense.merchant_name or "Expense",
                    "quantity": 1,
                    "unitPrice": expense.amount,
                    "totalPrice": expense.amount,
                }
            )
    rows.sort(key=lambda row: row["date"] or "", reverse=True)
    return rows
