from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class ExpenseSource(str, Enum):
    manual = "manual"
    receipt = "receipt"
    unknown = "unknown"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    icon: Mapped[Optional[str]] = mapped_column(String(16))
    color: Mapped[Optional[str]] = mapped_column(String(9))

    __table_args__ = (
        UniqueConstraint("user_id", "name", name="uq_category_user_name"),
    )


class Expense(Base, TimestampMixin):
    __tablename__ = "expenses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    merchant_name: Mapped[Optional[str]] = mapped_column(String(200))
    # Calendar date kept as YYYY-MM-DD text so it never shifts across timezones.
    date: Mapped[Optional[str]] = mapped_column(String(10))
    upload_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0")
    )
    category: Mapped[str] = mapped_column(String(100), nullable=False, default="Other")
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    payment_method: Mapped[Optional[str]] = mapped_column(String(50))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    source: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ExpenseSource.unknown.value
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    items: Mapped[list["LineItem"]] = relationship(
        "LineItem",
        back_populates="expense",
        order_by="LineItem.position",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_expenses_user_date", "user_id", "date"),
        CheckConstraint("total_amount >= 0", name="ck_expenses_amount_positive"),
    )


class LineItem(Base):
    __tablename__ = "line_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    expense_id: Mapped[int] = mapped_column(
        ForeignKey("expenses.id", ondelete="CASCADE"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    description: Mapped[Optional[str]] = mapped_column(String(200))
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    unit_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    total_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    category: Mapped[Optional[str]] = mapped_column(String(100))

    expense: Mapped["Expense"] = relationship("Expense", back_populates="items")

    __table_args__ = (
        UniqueConstraint("expense_id", "position", name="uq_line_item_position"),
        CheckConstraint("quantity > 0", name="ck_line_item_quantity_positive"),
    )


class MonthlyBudget(Base, TimestampMixin):
    __tablename__ = "monthly_budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    month_key: Mapped[str] = mapped_column(String(7), nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_monthly_budget_amount_positive"),
        UniqueConstraint(
            "user_id",
            "month_key",
            "category",
            name="uq_monthly_budget_user_month_category",
        ),
        Index("ix_monthly_budget_user_month", "user_id", "month_key"),
    )
