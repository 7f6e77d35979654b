from __future__ import annotations

import logging
import math
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Union

from rapidfuzz.distance import Levenshtein

logger = logging.getLogger(__name__)

FALLBACK_CATEGORY = "Other"
DEFAULT_CURRENCY = "USD"

_ISO_DATE_PREFIX = re.compile(r"^\d{4}-\d{2}-\d{2}")
_DATE_FORMATS = (
    "%m/%d/%Y",
    "%d.%m.%Y",
    "%Y/%m/%d",
    "%b %d, %Y",
    "%B %d, %Y",
)
_DATE_FIELDS = (
    ("date",),
    ("uploadDate", "upload_date"),
    ("createdAt", "created_at"),
    ("updatedAt", "updated_at"),
)


@dataclass(frozen=True)
class CategoryRef:
    name: str
    icon: Optional[str] = None
    color: Optional[str] = None
    is_custom: bool = False

    @property
    def id(self) -> str:
        return self.name


DEFAULT_CATEGORIES: tuple[CategoryRef, ...] = (
    CategoryRef("Food", "🍔", "#ff6b6b"),
    CategoryRef("Transport", "🚗", "#4ecdc4"),
    CategoryRef("Shopping", "🛍️", "#45b7d1"),
    CategoryRef("Bills", "💡", "#f9ca24"),
    CategoryRef("Other", "📦", "#95afc0"),
)

CategoryLike = Union[CategoryRef, str]


@dataclass(frozen=True)
class NormalizedItem:
    description: Optional[str]
    quantity: int
    unit_price: Optional[float]
    total_price: Optional[float]
    category: str
    amount: float


@dataclass(frozen=True)
class NormalizedExpense:
    id: Any
    merchant_name: Optional[str]
    date_str: Optional[str]
    total_amount: float
    amount: float
    category: str
    currency: str
    payment_method: Optional[str]
    notes: Optional[str]
    source: str
    items: tuple[NormalizedItem, ...] = ()

    @property
    def is_dated(self) -> bool:
        return self.date_str is not None

    @property
    def has_items(self) -> bool:
        return bool(self.items)


def category_names(categories: Iterable[CategoryLike]) -> list[str]:
    names: list[str] = []
    for category in categories:
        name = category if isinstance(category, str) else category.name
        if name and name not in names:
            names.append(name)
    if FALLBACK_CATEGORY not in names:
        names.append(FALLBACK_CATEGORY)
    return names


def _compact(value: str) -> str:
    return re.sub(r"\s+", "", value).lower()


def resolve_category(value: Any, known: Optional[Iterable[CategoryLike]] = None) -> str:
    # Exact, then case-insensitive, then a unique match within one edit.
    if not isinstance(value, str) or not value.strip():
        return FALLBACK_CATEGORY
    name = value.strip()
    if known is None:
        return name

    names = category_names(known)
    if name in names:
        return name

    compact = _compact(name)
    for candidate in names:
        if _compact(candidate) == compact:
            return candidate

    best_distance: Optional[int] = None
    best: list[str] = []
    for candidate in names:
        dist = int(Levenshtein.distance(compact, _compact(candidate)))
        if best_distance is None or dist < best_distance:
            best_distance = dist
            best = [candidate]
        elif dist == best_distance:
            best.append(candidate)
    if best_distance is not None and best_distance <= 1 and len(best) == 1:
        return best[0]

    logger.debug(f"normalize: unknown_category={name!r} fallback={FALLBACK_CATEGORY}")
    return FALLBACK_CATEGORY


def _field(record: Any, *names: str) -> Any:
    for name in names:
        if isinstance(record, Mapping):
            value = record.get(name)
        else:
            value = getattr(record, name, None)
        if value is not None:
            return value
    return None


def _clean_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _parse_amount_str(value: str) -> Optional[float]:
    clean = value.strip()
    negative = False
    if clean.startswith("(") and clean.endswith(")"):
        negative = True
        clean = clean[1:-1]
    clean = re.sub(r"[$€£¥\s,]", "", clean)
    if not clean:
        return None
    try:
        amount = Decimal(clean)
    except InvalidOperation:
        return None
    if not amount.is_finite():
        return None
    result = float(amount)
    return -result if negative else result


def optional_amount(value: Any) -> Optional[float]:
    """Numeric value of ``value`` or ``None`` when it is absent or not a number."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        result = float(value)
    elif isinstance(value, str):
        parsed = _parse_amount_str(value)
        if parsed is None:
            return None
        result = parsed
    else:
        return None
    if not math.isfinite(result):
        return None
    return result


def coerce_amount(value: Any) -> float:
    result = optional_amount(value)
    return 0.0 if result is None else result


def coerce_quantity(value: Any) -> int:
    amount = optional_amount(value)
    if amount is None:
        return 1
    quantity = int(amount)
    return quantity if quantity > 0 else 1


def _parse_date_value(value: Any) -> Optional[str]:
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    if _ISO_DATE_PREFIX.match(text):
        # Used verbatim: re-formatting through a datetime could shift the day.
        try:
            return date.fromisoformat(text[:10]).isoformat()
        except ValueError:
            return None
    try:
        return datetime.fromisoformat(text).date().isoformat()
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date().isoformat()
        except ValueError:
            continue
    return None


def resolve_date(record: Any) -> Optional[str]:
    for names in _DATE_FIELDS:
        parsed = _parse_date_value(_field(record, *names))
        if parsed is not None:
            return parsed
    return None


def _item_price(total_price: Optional[float], unit_price: Optional[float]) -> float:
    for candidate in (total_price, unit_price):
        if candidate:
            return candidate
    return 0.0


def _normalize_item(
    raw: Any, parent_category: str, known: Optional[list[str]]
) -> NormalizedItem:
    own_category = _field(raw, "category")
    if isinstance(own_category, str) and own_category.strip():
        category = resolve_category(own_category, known)
    else:
        category = parent_category
    total_price = optional_amount(_field(raw, "totalPrice", "total_price"))
    unit_price = optional_amount(_field(raw, "unitPrice", "unit_price"))
    return NormalizedItem(
        description=_clean_str(_field(raw, "description")),
        quantity=coerce_quantity(_field(raw, "quantity")),
        unit_price=unit_price,
        total_price=total_price,
        category=category,
        amount=_item_price(total_price, unit_price),
    )


def normalize_expense(
    raw: Any,
    categories: Optional[Iterable[CategoryLike]] = None,
    *,
    default_currency: str = DEFAULT_CURRENCY,
) -> NormalizedExpense:
    known = category_names(categories) if categories is not None else None
    category = resolve_category(_field(raw, "category"), known)

    raw_total = _field(raw, "totalAmount", "total_amount")
    total_amount = coerce_amount(raw_total)
    if raw_total is not None and optional_amount(raw_total) is None:
        logger.debug(f"normalize: bad_amount={raw_total!r} expense={_field(raw, 'id')}")

    raw_items = _field(raw, "items")
    items: tuple[NormalizedItem, ...] = ()
    if isinstance(raw_items, (list, tuple)):
        items = tuple(
            _normalize_item(item, category, known)
            for item in raw_items
            if item is not None
        )

    amount = sum(item.amount for item in items) if items else total_amount
    date_str = resolve_date(raw)
    if date_str is None:
        logger.debug(f"normalize: undated expense={_field(raw, 'id')}")

    currency = _clean_str(_field(raw, "currency"))
    return NormalizedExpense(
        id=_field(raw, "id"),
        merchant_name=_clean_str(_field(raw, "merchantName", "merchant_name")),
        date_str=date_str,
        total_amount=total_amount,
        amount=amount,
        category=category,
        currency=currency.upper() if currency else default_currency,
        payment_method=_clean_str(_field(raw, "paymentMethod", "payment_method")),
        notes=_clean_str(_field(raw, "notes")),
        source=_clean_str(_field(raw, "source")) or "unknown",
        items=items,
    )


def normalize_expenses(
    records: Optional[Iterable[Any]],
    categories: Optional[Iterable[CategoryLike]] = None,
    *,
    default_currency: str = DEFAULT_CURRENCY,
) -> list[NormalizedExpense]:
    if not records:
        return []
    known = category_names(categories) if categories is not None else None
    return [
        normalize_expense(record, known, default_currency=default_currency)
        for record in records
        if record is not None
    ]
