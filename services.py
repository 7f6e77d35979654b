from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import date, datetime
from decimal import Decimal
from functools import lru_cache
from typing import Any, Optional
from zoneinfo import ZoneInfo

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session, selectinload

from aggregation import aggregate_categories, detailed_items, filter_by_range
from budgets import ResolvedBudget, resolve_budget
from config import get_settings
from insights import CoachMood
from models import Category, Expense, LineItem, MonthlyBudget
from normalizer import (
    DEFAULT_CATEGORIES,
    CategoryRef,
    normalize_expenses,
    resolve_category,
)
from periods import DateRange, MonthKey
from schemas import CategoryIn, ExpenseIn
from snapshot import AnalysisEngine, AnalysisSnapshot

logger = logging.getLogger(__name__)

CATEGORY_PALETTE = (
    "#667eea",
    "#764ba2",
    "#f093fb",
    "#f5576c",
    "#fa709a",
    "#fee140",
    "#30cfd0",
    "#38f9d7",
    "#43e97b",
    "#fa8231",
    "#a8edea",
    "#fed6e3",
    "#fcb69f",
    "#ff9a9e",
    "#f6d365",
    "#fda085",
    "#3eadcf",
    "#5ee7df",
    "#b490ca",
    "#d299c2",
)
DEFAULT_CATEGORY_ICON = "🏷️"


class ExpenseNotFound(ValueError):
    pass


class CategoryNotFound(ValueError):
    pass


class CategoryConflict(ValueError):
    pass


def get_current_user_id() -> int:
    return 1


def local_today() -> date:
    return datetime.now(ZoneInfo(get_settings().timezone)).date()


def _money(value: Optional[Decimal]) -> Optional[float]:
    return float(value) if value is not None else None


@lru_cache(maxsize=1)
def get_engine() -> AnalysisEngine:
    settings = get_settings()
    return AnalysisEngine(
        lookback_months=settings.budget_lookback_months,
        leaderboard_limit=settings.leaderboard_limit,
        insight_threshold=settings.insight_threshold,
        cache_size=settings.snapshot_cache_size,
        currency=settings.currency,
    )


def expense_to_record(expense: Expense) -> dict[str, Any]:
    """Raw record in the camelCase shape the dashboard client uses."""
    return {
        "id": expense.id,
        "merchantName": expense.merchant_name,
        "date": expense.date,
        "uploadDate": expense.upload_date.isoformat() if expense.upload_date else None,
        "createdAt": expense.created_at.isoformat() if expense.created_at else None,
        "totalAmount": _money(expense.total_amount),
        "category": expense.category,
        "currency": expense.currency,
        "paymentMethod": expense.payment_method,
        "notes": expense.notes,
        "source": expense.source,
        "items": [
            {
                "description": item.description,
                "quantity": item.quantity,
                "unitPrice": _money(item.unit_price),
                "totalPrice": _money(item.total_price),
                "category": item.category,
            }
            for item in expense.items
        ],
    }


class CategoryService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_custom(self) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.created_at, Category.id)
        )
        return self.session.scalars(stmt).all()

    def list_categories(self) -> list[CategoryRef]:
        custom = [
            CategoryRef(c.name, c.icon, c.color, is_custom=True)
            for c in self.list_custom()
        ]
        return [*DEFAULT_CATEGORIES, *custom]

    def create(self, data: CategoryIn) -> Category:
        name = data.name.strip()
        if not name:
            raise ValueError("Category name cannot be empty")
        lowered = name.lower()
        if any(ref.name.lower() == lowered for ref in DEFAULT_CATEGORIES):
            raise CategoryConflict("Category with this name already exists")
        existing = self.session.scalar(
            select(Category).where(
                Category.user_id == self.user_id,
                func.lower(Category.name) == lowered,
            )
        )
        if existing:
            raise CategoryConflict("Category with this name already exists")

        count = self.session.execute(
            select(func.count(Category.id)).where(Category.user_id == self.user_id)
        ).scalar_one()
        category = Category(
            user_id=self.user_id,
            name=name,
            icon=data.icon or DEFAULT_CATEGORY_ICON,
            color=data.color or CATEGORY_PALETTE[count % len(CATEGORY_PALETTE)],
        )
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        logger.info(f"category_created: name={category.name!r} color={category.color}")
        return category

    def delete(self, name: str) -> None:
        clean = (name or "").strip()
        if any(ref.name == clean for ref in DEFAULT_CATEGORIES):
            raise CategoryConflict("Default categories cannot be deleted")
        category = self.session.scalar(
            select(Category).where(
                Category.user_id == self.user_id, Category.name == clean
            )
        )
        if not category:
            raise CategoryNotFound("Category not found")
        # Expenses keep their label; analytics folds unknown labels into Other.
        self.session.delete(category)
        self.session.commit()


class ExpenseService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def _known_categories(self) -> list[CategoryRef]:
        return CategoryService(self.session, self.user_id).list_categories()

    def _base_query(self):
        return (
            select(Expense)
            .options(selectinload(Expense.items))
            .where(Expense.user_id == self.user_id, Expense.deleted_at.is_(None))
        )

    def create(self, data: ExpenseIn) -> Expense:
        known = self._known_categories()
        category = resolve_category(data.category, known)
        items = []
        for position, item in enumerate(data.items):
            item_category = None
            if item.category and item.category.strip():
                item_category = resolve_category(item.category, known)
            items.append(
                LineItem(
                    position=position,
                    description=(item.description or "").strip() or None,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    total_price=item.total_price,
                    category=item_category,
                )
            )

        total = data.total_amount
        if not total and items:
            total = sum(
                (item.total_price or item.unit_price or Decimal("0") for item in items),
                Decimal("0"),
            )

        expense = Expense(
            user_id=self.user_id,
            merchant_name=(data.merchant_name or "").strip() or None,
            date=data.date.isoformat() if data.date else None,
            upload_date=datetime.utcnow(),
            total_amount=total,
            category=category,
            currency=(data.currency or get_settings().currency).upper(),
            payment_method=data.payment_method,
            notes=data.notes,
            source=data.source.value,
            items=items,
        )
        self.session.add(expense)
        self.session.commit()
        self.session.refresh(expense)
        logger.info(
            f"expense_created: id={expense.id} category={category} amount={total}"
        )
        return expense

    def get(self, expense_id: int) -> Expense:
        expense = self.session.scalar(self._base_query().where(Expense.id == expense_id))
        if not expense:
            raise ExpenseNotFound("Expense not found")
        return expense

    def list_recent(self, limit: int = 50, offset: int = 0) -> list[Expense]:
        stmt = (
            self._base_query()
            .order_by(Expense.date.desc(), Expense.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return self.session.scalars(stmt).all()

    def fetch_expenses(self) -> list[dict[str, Any]]:
        stmt = self._base_query().order_by(Expense.id)
        return [expense_to_record(e) for e in self.session.scalars(stmt).all()]

    def soft_delete(self, expense_id: int) -> None:
        expense = self.session.get(Expense, expense_id)
        if not expense or expense.user_id != self.user_id:
            raise ExpenseNotFound("Expense not found")
        if expense.deleted_at is not None:
            return
        expense.deleted_at = datetime.utcnow()
        self.session.commit()

    def update_category(self, expense_id: int, category: str) -> Expense:
        expense = self.get(expense_id)
        expense.category = resolve_category(category, self._known_categories())
        self.session.commit()
        return expense

    def update_item_category(self, expense_id: int, index: int, category: str) -> Expense:
        expense = self.get(expense_id)
        if index < 0 or index >= len(expense.items):
            raise ExpenseNotFound("Line item not found")
        expense.items[index].category = resolve_category(
            category, self._known_categories()
        )
        self.session.commit()
        return expense


class BudgetService:
    """Explicit monthly budgets; a month with no rows has no explicit budget."""

    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def budgets_for_month(self, month: MonthKey) -> Optional[dict[str, float]]:
        rows = self.session.scalars(
            select(MonthlyBudget).where(
                MonthlyBudget.user_id == self.user_id,
                MonthlyBudget.month_key == str(month),
            )
        ).all()
        if not rows:
            return None
        return {row.category: float(row.amount) for row in rows}

    def upsert_month(
        self, month: MonthKey, budgets: Mapping[str, Decimal]
    ) -> dict[str, float]:
        self.session.execute(
            delete(MonthlyBudget).where(
                MonthlyBudget.user_id == self.user_id,
                MonthlyBudget.month_key == str(month),
            )
        )
        for name, amount in budgets.items():
            clean = (name or "").strip()
            if not clean:
                continue
            if amount < 0:
                raise ValueError("Budget amounts cannot be negative")
            self.session.add(
                MonthlyBudget(
                    user_id=self.user_id,
                    month_key=str(month),
                    category=clean,
                    amount=amount,
                )
            )
        self.session.commit()
        logger.info(f"budget_saved: month={month} categories={len(budgets)}")
        return self.budgets_for_month(month) or {}

    def delete_month(self, month: MonthKey) -> bool:
        result = self.session.execute(
            delete(MonthlyBudget).where(
                MonthlyBudget.user_id == self.user_id,
                MonthlyBudget.month_key == str(month),
            )
        )
        self.session.commit()
        return bool(result.rowcount)

    def list_months(self) -> list[str]:
        stmt = (
            select(MonthlyBudget.month_key)
            .where(MonthlyBudget.user_id == self.user_id)
            .distinct()
            .order_by(MonthlyBudget.month_key.desc())
        )
        return list(self.session.scalars(stmt).all())

    def resolved(self, month: MonthKey) -> ResolvedBudget:
        settings = get_settings()
        categories = CategoryService(self.session, self.user_id).list_categories()
        return resolve_budget(
            self,
            month,
            categories=categories,
            lookback_months=settings.budget_lookback_months,
        )


class AnalyticsService:
    def __init__(
        self,
        session: Session,
        user_id: Optional[int] = None,
        *,
        engine: Optional[AnalysisEngine] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.engine = engine or get_engine()

    def summary(self, date_range: DateRange) -> dict[str, Any]:
        categories = CategoryService(self.session, self.user_id).list_categories()
        records = ExpenseService(self.session, self.user_id).fetch_expenses()
        expenses = filter_by_range(
            normalize_expenses(
                records, categories, default_currency=get_settings().currency
            ),
            date_range,
        )
        totals = aggregate_categories(expenses, categories)
        count = len(expenses)
        spending = totals.total
        return {
            "totalSpending": spending,
            "expenseCount": count,
            "dateRange": date_range.as_dict(),
            "categoryTotals": totals.category_totals,
            "itemCategoryTotals": totals.item_category_totals,
            "averageExpense": spending / count if count else 0.0,
            "detailedItems": detailed_items(expenses),
        }

    def snapshot(
        self,
        date_range: DateRange,
        mood: CoachMood = CoachMood.serious,
        today: Optional[date] = None,
    ) -> AnalysisSnapshot:
        categories = CategoryService(self.session, self.user_id).list_categories()
        records = ExpenseService(self.session, self.user_id).fetch_expenses()
        snapshot = self.engine.analyze(
            records,
            date_range,
            categories=categories,
            budgets=BudgetService(self.session, self.user_id),
            mood=mood,
            today=today or local_today(),
        )
        logger.debug(
            f"analysis: range={date_range.start}..{date_range.end} "
            f"entries={snapshot.totals.entries} signature={snapshot.signature[:12]}"
        )
        return snapshot
