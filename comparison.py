from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Optional

from aggregation import aggregate_categories, filter_by_range
from normalizer import CategoryLike, NormalizedExpense, category_names
from periods import DateRange, previous_range


def percent_change(previous: float, current: float) -> Optional[float]:
    """Relative change in percent.

    ``0 -> 0`` is 0%, ``0 -> positive`` is reported as +100%, and any other
    change from a non-positive base is undefined (``None``).
    """
    diff = current - previous
    if previous > 0:
        return diff / previous * 100
    if previous == 0 and current > 0:
        return 100.0
    if previous == 0 and current == 0:
        return 0.0
    return None


@dataclass(frozen=True)
class CategoryDelta:
    category: str
    diff: float
    percent: Optional[float]
    previous: float
    current: float


@dataclass(frozen=True)
class PeriodComparison:
    previous_range: Optional[DateRange]
    categories: tuple[CategoryDelta, ...]
    overall: CategoryDelta
    previous_entries: int = 0

    def delta_for(self, category: str) -> Optional[CategoryDelta]:
        for delta in self.categories:
            if delta.category == category:
                return delta
        return None


def _delta(category: str, previous: float, current: float) -> CategoryDelta:
    return CategoryDelta(
        category=category,
        diff=current - previous,
        percent=percent_change(previous, current),
        previous=previous,
        current=current,
    )


def compare_periods(
    current_totals: Mapping[str, float],
    previous_totals: Mapping[str, float],
    categories: Iterable[CategoryLike],
    *,
    previous: Optional[DateRange] = None,
    previous_entries: int = 0,
) -> PeriodComparison:
    deltas = tuple(
        _delta(name, previous_totals.get(name, 0.0), current_totals.get(name, 0.0))
        for name in category_names(categories)
    )
    overall = _delta(
        "overall", sum(previous_totals.values()), sum(current_totals.values())
    )
    return PeriodComparison(
        previous_range=previous,
        categories=deltas,
        overall=overall,
        previous_entries=previous_entries,
    )


def compare_with_previous(
    expenses: Sequence[NormalizedExpense],
    date_range: DateRange,
    categories: Iterable[CategoryLike],
    *,
    current_totals: Optional[Mapping[str, float]] = None,
) -> Optional[PeriodComparison]:
    """Compare ``date_range`` with the equally long window right before it.

    ``expenses`` is the full normalized set; both windows are filtered from
    it. All-time and open-ended ranges have no previous period.
    """
    prev = previous_range(date_range)
    if prev is None:
        return None
    names = category_names(categories)
    if current_totals is None:
        current = filter_by_range(expenses, date_range)
        current_totals = aggregate_categories(current, names).category_totals
    previous_expenses = filter_by_range(expenses, prev)
    previous_totals = aggregate_categories(previous_expenses, names).category_totals
    return compare_periods(
        current_totals,
        previous_totals,
        names,
        previous=prev,
        previous_entries=len(previous_expenses),
    )
