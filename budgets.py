from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Optional, Protocol

from normalizer import CategoryLike, category_names, coerce_amount
from periods import InvalidDateRange, MonthKey

logger = logging.getLogger(__name__)

DEFAULT_BUDGETS: Mapping[str, float] = {
    "Food": 500.0,
    "Transport": 200.0,
    "Shopping": 300.0,
    "Bills": 400.0,
    "Other": 100.0,
}

DEFAULT_LOOKBACK_MONTHS = 24


class BudgetSource(Protocol):
    def budgets_for_month(self, month: MonthKey) -> Optional[Mapping[str, float]]:
        """Explicit budgets stored for ``month``, or ``None`` when there are none."""


@dataclass
class BudgetBook:
    """In-memory :class:`BudgetSource` keyed by month."""

    months: dict[MonthKey, dict[str, float]] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Mapping[str, object]]) -> "BudgetBook":
        book = cls()
        for key, budgets in (data or {}).items():
            book.set_month(MonthKey.parse(key), budgets)
        return book

    def set_month(self, month: MonthKey, budgets: Mapping[str, object]) -> None:
        self.months[month] = {
            name: coerce_amount(value) for name, value in budgets.items() if name
        }

    def budgets_for_month(self, month: MonthKey) -> Optional[Mapping[str, float]]:
        return self.months.get(month)


@dataclass(frozen=True)
class ResolvedBudget:
    month: MonthKey
    amounts: dict[str, float]
    source_month: Optional[MonthKey]

    @property
    def is_default(self) -> bool:
        return self.source_month is None

    @property
    def total(self) -> float:
        return sum(self.amounts.values())


def shape_budget(
    candidate: Mapping[str, object], categories: Iterable[CategoryLike]
) -> dict[str, float]:
    return {name: coerce_amount(candidate.get(name)) for name in category_names(categories)}


def resolve_budget(
    source: Optional[BudgetSource],
    month: MonthKey,
    *,
    categories: Iterable[CategoryLike],
    lookback_months: int = DEFAULT_LOOKBACK_MONTHS,
    defaults: Mapping[str, float] = DEFAULT_BUDGETS,
) -> ResolvedBudget:
    """Budget in force for ``month``.

    Budgets carry forward: without an explicit entry for ``month`` the nearest
    earlier month within ``lookback_months`` applies, and failing that the
    built-in defaults.
    """
    names = category_names(categories)
    if source is not None:
        candidate = month
        for _ in range(lookback_months + 1):
            found = source.budgets_for_month(candidate)
            if found is not None:
                return ResolvedBudget(month, shape_budget(found, names), candidate)
            try:
                candidate = candidate.previous()
            except InvalidDateRange:
                break
    logger.debug(f"budget_resolve: month={month} source=defaults")
    return ResolvedBudget(month, shape_budget(defaults, names), None)


@dataclass(frozen=True)
class CategoryBudgetLine:
    category: str
    spent: float
    budget: float
    remaining: float

    @property
    def delta_vs_budget(self) -> float:
        return self.spent - self.budget


@dataclass(frozen=True)
class BudgetComparison:
    lines: tuple[CategoryBudgetLine, ...]
    total_spent: float
    total_budget: float
    total_remaining: float
    delta_vs_budget: float
    used_percent: float

    def line_for(self, category: str) -> Optional[CategoryBudgetLine]:
        for line in self.lines:
            if line.category == category:
                return line
        return None

    @property
    def top_category(self) -> Optional[CategoryBudgetLine]:
        winner: Optional[CategoryBudgetLine] = None
        for line in self.lines:
            if winner is None or line.spent > winner.spent:
                winner = line
        return winner


def compare_budgets(
    category_totals: Mapping[str, float],
    budget: Mapping[str, float],
    categories: Iterable[CategoryLike],
) -> BudgetComparison:
    lines = []
    for name in category_names(categories):
        spent = category_totals.get(name, 0.0)
        amount = budget.get(name, 0.0)
        lines.append(
            CategoryBudgetLine(
                category=name, spent=spent, budget=amount, remaining=amount - spent
            )
        )
    total_spent = sum(line.spent for line in lines)
    total_budget = sum(line.budget for line in lines)
    # Per-category remaining stays signed; the month total never shows negative.
    total_remaining = max(0.0, total_budget - total_spent)
    used = max(0.0, total_budget - total_remaining)
    used_percent = (
        min(100.0, max(0.0, used / total_budget * 100)) if total_budget > 0 else 0.0
    )
    return BudgetComparison(
        lines=tuple(lines),
        total_spent=total_spent,
        total_budget=total_budget,
        total_remaining=total_remaining,
        delta_vs_budget=total_budget - total_spent,
        used_percent=used_percent,
    )
