from __future__ import annotations

import hashlib
import json
import logging
import threading
from collections.abc import Iterable, Sequence
from datetime import date
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict

from aggregation import (
    LeaderboardEntry,
    SpendingPatterns,
    TrendPoint,
    aggregate_categories,
    build_leaderboards,
    build_trend,
    daily_totals,
    filter_by_range,
    spending_patterns,
)
from budgets import (
    DEFAULT_BUDGETS,
    DEFAULT_LOOKBACK_MONTHS,
    BudgetSource,
    ResolvedBudget,
    compare_budgets,
    resolve_budget,
)
from comparison import compare_with_previous
from insights import CoachMood, coach_button_label, headline_insight, insight_list
from normalizer import (
    DEFAULT_CATEGORIES,
    DEFAULT_CURRENCY,
    CategoryLike,
    CategoryRef,
    NormalizedExpense,
    normalize_expenses,
)
from periods import (
    DateRange,
    MonthKey,
    budget_month,
    is_full_month,
    month_to_date_range,
)

logger = logging.getLogger(__name__)

RECENT_EXPENSE_LIMIT = 15


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class RangeView(_Frozen):
    start: Optional[str] = None
    end: Optional[str] = None

    @classmethod
    def of(cls, value: Optional[DateRange]) -> Optional["RangeView"]:
        if value is None:
            return None
        return cls(start=value.start, end=value.end)


class SnapshotTotals(_Frozen):
    spending: float
    entries: int
    average: float
    budget: float
    budget_spent: float
    remaining: float
    delta_vs_budget: float
    budget_used_percent: float


class CategorySummary(_Frozen):
    category_id: str
    category_name: str
    icon: Optional[str] = None
    color: Optional[str] = None
    spent: float
    budget: float
    remaining: float
    delta_vs_budget: float


class CategoryChange(_Frozen):
    category: str
    diff: float
    percent: Optional[float]
    previous: float
    current: float


class ComparisonView(_Frozen):
    date_range: RangeView
    total_spending: float
    entries: int
    budget: Optional[float] = None
    percent_change: Optional[float] = None
    categories: tuple[CategoryChange, ...] = ()


class CategoryLeaderboard(_Frozen):
    category: str
    top_merchants: tuple[LeaderboardEntry, ...] = ()
    top_items: tuple[LeaderboardEntry, ...] = ()


class TrendView(_Frozen):
    points: tuple[TrendPoint, ...] = ()
    min: float = 0.0
    max: float = 0.0
    latest: Optional[float] = None
    most_active_day: Optional[str] = None
    most_active_total: Optional[float] = None
    svg_points: str = ""
    has_data: bool = False


class RecentExpense(_Frozen):
    id: Any = None
    merchant_name: Optional[str] = None
    category: str
    amount: float
    date: Optional[str] = None
    source: str


class AnalysisSnapshot(_Frozen):
    date_range: RangeView
    previous_range: Optional[RangeView] = None
    budget_range: RangeView
    month_key: str
    budget_source_month: Optional[str] = None
    is_full_month_view: bool
    currency: str
    mood: CoachMood
    totals: SnapshotTotals
    category_totals: dict[str, float]
    item_category_totals: dict[str, float]
    categories: tuple[CategorySummary, ...]
    budgets: dict[str, float]
    comparison: Optional[ComparisonView] = None
    leaderboards: tuple[CategoryLeaderboard, ...] = ()
    trend: TrendView
    insight: str
    insights: tuple[str, ...]
    coach_button_label: str
    recent_expenses: tuple[RecentExpense, ...] = ()
    patterns: Optional[SpendingPatterns] = None
    signature: str = ""

    @property
    def percent_change(self) -> Optional[float]:
        return self.comparison.percent_change if self.comparison else None

    def as_json(self) -> str:
        return self.model_dump_json()


def _canonical(value: Any) -> Any:
    if isinstance(value, float):
        return round(value, 6)
    if isinstance(value, dict):
        return {str(k): _canonical(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_canonical(v) for v in value]
    return value


def snapshot_signature(snapshot: AnalysisSnapshot) -> str:
    """Hash of the numbers a reader sees; equal numbers give equal signatures."""
    payload = {
        "range": [snapshot.date_range.start, snapshot.date_range.end],
        "month": snapshot.month_key,
        "mood": snapshot.mood.value,
        "totals": snapshot.totals.model_dump(),
        "category_totals": snapshot.category_totals,
        "categories": [
            [c.category_id, c.spent, c.budget, c.remaining] for c in snapshot.categories
        ],
        "comparison": None
        if snapshot.comparison is None
        else {
            "spending": snapshot.comparison.total_spending,
            "entries": snapshot.comparison.entries,
            "budget": snapshot.comparison.budget,
            "percents": [[c.category, c.percent] for c in snapshot.comparison.categories],
        },
        "leaders": [
            [
                board.category,
                [[e.name, e.total, e.count] for e in board.top_merchants],
                [[e.name, e.total, e.count] for e in board.top_items],
            ]
            for board in snapshot.leaderboards
        ],
        "trend": [[p.date, p.total] for p in snapshot.trend.points],
        "recent": [str(e.id) for e in snapshot.recent_expenses],
    }
    encoded = json.dumps(_canonical(payload), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def _category_refs(categories: Iterable[CategoryLike]) -> list[CategoryRef]:
    refs: list[CategoryRef] = []
    seen: set[str] = set()
    for category in categories:
        ref = CategoryRef(category) if isinstance(category, str) else category
        if ref.name and ref.name not in seen:
            refs.append(ref)
            seen.add(ref.name)
    if "Other" not in seen:
        refs.append(CategoryRef("Other"))
    return refs


def _recent(expenses: Sequence[NormalizedExpense]) -> tuple[RecentExpense, ...]:
    dated = sorted(
        (e for e in expenses if e.date_str),
        key=lambda e: (e.date_str, str(e.id)),
        reverse=True,
    )
    return tuple(
        RecentExpense(
            id=e.id,
            merchant_name=e.merchant_name,
            category=e.category,
            amount=e.amount,
            date=e.date_str,
            source=e.source,
        )
        for e in dated[:RECENT_EXPENSE_LIMIT]
    )


def build_snapshot(
    expenses: Sequence[NormalizedExpense],
    date_range: DateRange,
    *,
    categories: Iterable[CategoryLike] = DEFAULT_CATEGORIES,
    budget: ResolvedBudget,
    previous_budget: Optional[ResolvedBudget] = None,
    mood: CoachMood = CoachMood.serious,
    today: date,
    currency: str = DEFAULT_CURRENCY,
    leaderboard_limit: int = 5,
    insight_threshold: float = 2.0,
) -> AnalysisSnapshot:
    refs = _category_refs(categories)
    names = [ref.name for ref in refs]

    in_range = filter_by_range(expenses, date_range)
    totals = aggregate_categories(in_range, names)
    spending = totals.total
    entries = len(in_range)

    budget_window = month_to_date_range(date_range, today)
    budget_totals = aggregate_categories(filter_by_range(expenses, budget_window), names)
    budget_view = compare_budgets(budget_totals.category_totals, budget.amounts, names)

    comparison = compare_with_previous(
        expenses, date_range, names, current_totals=totals.category_totals
    )
    comparison_view = None
    if comparison is not None:
        comparison_view = ComparisonView(
            date_range=RangeView.of(comparison.previous_range),
            total_spending=comparison.overall.previous,
            entries=comparison.previous_entries,
            budget=previous_budget.total if previous_budget else None,
            percent_change=comparison.overall.percent,
            categories=tuple(
                CategoryChange(
                    category=d.category,
                    diff=d.diff,
                    percent=d.percent,
                    previous=d.previous,
                    current=d.current,
                )
                for d in comparison.categories
            ),
        )
    percent = comparison.overall.percent if comparison else None

    leaders = build_leaderboards(in_range, names, limit=leaderboard_limit)
    trend = build_trend(daily_totals(in_range))

    top: Optional[tuple[str, float]] = None
    for name in names:
        amount = totals.category_totals.get(name, 0.0)
        if top is None or amount > top[1]:
            top = (name, amount)

    icons = {ref.name: ref for ref in refs}
    snapshot = AnalysisSnapshot(
        date_range=RangeView.of(date_range),
        previous_range=RangeView.of(comparison.previous_range if comparison else None),
        budget_range=RangeView.of(budget_window),
        month_key=str(budget.month),
        budget_source_month=str(budget.source_month) if budget.source_month else None,
        is_full_month_view=is_full_month(date_range),
        currency=currency,
        mood=mood,
        totals=SnapshotTotals(
            spending=spending,
            entries=entries,
            average=spending / entries if entries else 0.0,
            budget=budget_view.total_budget,
            budget_spent=budget_view.total_spent,
            remaining=budget_view.total_remaining,
            delta_vs_budget=budget_view.delta_vs_budget,
            budget_used_percent=budget_view.used_percent,
        ),
        category_totals=totals.category_totals,
        item_category_totals=totals.item_category_totals,
        categories=tuple(
            CategorySummary(
                category_id=icons[line.category].id,
                category_name=line.category,
                icon=icons[line.category].icon,
                color=icons[line.category].color,
                spent=line.spent,
                budget=line.budget,
                remaining=line.remaining,
                delta_vs_budget=line.delta_vs_budget,
            )
            for line in budget_view.lines
        ),
        budgets=budget.amounts,
        comparison=comparison_view,
        leaderboards=tuple(
            CategoryLeaderboard(
                category=name,
                top_merchants=board.top_merchants,
                top_items=board.top_items,
            )
            for name, board in leaders.items()
        ),
        trend=TrendView(
            points=trend.points,
            min=trend.min,
            max=trend.max,
            latest=trend.latest,
            most_active_day=trend.most_active_day.date if trend.most_active_day else None,
            most_active_total=trend.most_active_day.total if trend.most_active_day else None,
            svg_points=trend.svg_points,
            has_data=trend.has_data,
        ),
        insight=headline_insight(
            percent, top, mood, threshold=insight_threshold, currency=currency
        ),
        insights=tuple(insight_list(percent, comparison.categories if comparison else ())),
        coach_button_label=coach_button_label(mood),
        recent_expenses=_recent(expenses),
        patterns=spending_patterns(expenses),
    )
    return snapshot.model_copy(update={"signature": snapshot_signature(snapshot)})


class AnalysisEngine:
    def __init__(
        self,
        *,
        lookback_months: int = DEFAULT_LOOKBACK_MONTHS,
        leaderboard_limit: int = 5,
        insight_threshold: float = 2.0,
        cache_size: int = 64,
        currency: str = DEFAULT_CURRENCY,
        budget_defaults: Optional[dict[str, float]] = None,
    ) -> None:
        self.lookback_months = lookback_months
        self.leaderboard_limit = leaderboard_limit
        self.insight_threshold = insight_threshold
        self.cache_size = cache_size
        self.currency = currency
        self.budget_defaults = dict(budget_defaults or DEFAULT_BUDGETS)
        self._snapshot_cache: dict[str, AnalysisSnapshot] = {}
        self._lock = threading.Lock()

    def invalidate(self) -> None:
        with self._lock:
            self._snapshot_cache.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._snapshot_cache)

    def _resolve(
        self, source: Optional[BudgetSource], month: MonthKey, names: list[str]
    ) -> ResolvedBudget:
        return resolve_budget(
            source,
            month,
            categories=names,
            lookback_months=self.lookback_months,
            defaults=self.budget_defaults,
        )

    def analyze(
        self,
        expenses: Optional[Iterable[Any]],
        date_range: Optional[DateRange] = None,
        *,
        categories: Iterable[CategoryLike] = DEFAULT_CATEGORIES,
        budgets: Optional[BudgetSource] = None,
        mood: CoachMood = CoachMood.serious,
        today: Optional[date] = None,
        override: Optional[DateRange] = None,
    ) -> AnalysisSnapshot:
        today = today or date.today()
        refs = _category_refs(categories)
        names = [ref.name for ref in refs]
        active = override if override is not None else (date_range or DateRange.all_time())

        normalized = normalize_expenses(expenses, names, default_currency=self.currency)
        month = budget_month(active, today)
        budget = self._resolve(budgets, month, names)
        previous_budget = self._resolve(budgets, month.previous(), names)

        fingerprint = hashlib.sha256(
            repr(
                (
                    normalized,
                    active,
                    refs,
                    budget,
                    previous_budget,
                    mood.value,
                    today.isoformat() if active.is_all_time else None,
                    self.leaderboard_limit,
                    self.insight_threshold,
                    self.currency,
                )
            ).encode("utf-8")
        ).hexdigest()
        with self._lock:
            cached = self._snapshot_cache.get(fingerprint)
        if cached is not None:
            logger.debug(f"analysis_cache: hit key={fingerprint[:12]}")
            return cached

        logger.debug(f"analysis_cache: miss key={fingerprint[:12]}")
        snapshot = build_snapshot(
            normalized,
            active,
            categories=refs,
            budget=budget,
            previous_budget=previous_budget,
            mood=mood,
            today=today,
            currency=self.currency,
            leaderboard_limit=self.leaderboard_limit,
            insight_threshold=self.insight_threshold,
        )
        if self.cache_size <= 0:
            return snapshot
        with self._lock:
            cached = self._snapshot_cache.get(fingerprint)
            if cached is not None:
                return cached
            while len(self._snapshot_cache) >= self.cache_size:
                oldest = next(iter(self._snapshot_cache))
                self._snapshot_cache.pop(oldest, None)
            self._snapshot_cache[fingerprint] = snapshot
        return snapshot
