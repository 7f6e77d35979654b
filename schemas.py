import datetime as dt
from decimal import Decimal
from typing import Annotated, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from models import ExpenseSource


class _CamelModel(BaseModel):
    # The dashboard client posts camelCase; tests and scripts use snake_case.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LineItemIn(_CamelModel):
    description: Optional[str] = Field(default=None, max_length=200)
    quantity: int = Field(default=1, gt=0)
    unit_price: Optional[Decimal] = Field(default=None, ge=0)
    total_price: Optional[Decimal] = Field(default=None, ge=0)
    category: Optional[str] = Field(default=None, max_length=100)


class ExpenseIn(_CamelModel):
    merchant_name: Optional[str] = Field(default=None, max_length=200)
    date: Optional[dt.date] = None
    total_amount: Decimal = Field(default=Decimal("0"), ge=0)
    category: Optional[str] = Field(default=None, max_length=100)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    payment_method: Optional[str] = Field(default=None, max_length=50)
    notes: Optional[str] = None
    source: ExpenseSource = ExpenseSource.manual
    items: list[LineItemIn] = Field(default_factory=list)


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    icon: Optional[str] = Field(default=None, max_length=16)
    color: Optional[str] = Field(default=None, max_length=9)


class CategoryUpdateIn(BaseModel):
    category: str = Field(..., min_length=1, max_length=100)


class BudgetIn(BaseModel):
    budgets: dict[str, Annotated[Decimal, Field(ge=0)]]


class CoachMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str = Field(..., min_length=1)


class CoachRequestIn(_CamelModel):
    conversation: list[CoachMessage] = Field(default_factory=list)
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    mood: Optional[str] = None
