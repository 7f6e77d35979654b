from __future__ import annotations

import math
from collections.abc import Iterable
from enum import Enum
from typing import Optional

from comparison import CategoryDelta

CURRENCY_SYMBOLS = {"USD": "$", "EUR": "€", "GBP": "£", "JPY": "¥"}

NO_DATA_INSIGHT = "Keep logging expenses to unlock insight comparisons."
OVERALL_INSIGHT_MIN_PERCENT = 0.5


class CoachMood(str, Enum):
    serious = "motivator_serious"
    roast = "motivator_roast"


def parse_mood(value: Optional[str]) -> CoachMood:
    try:
        return CoachMood(value) if value else CoachMood.serious
    except ValueError:
        return CoachMood.serious


def format_currency(amount: float, currency: str = "USD") -> str:
    symbol = CURRENCY_SYMBOLS.get(currency.upper())
    sign = "-" if amount < 0 else ""
    number = f"{abs(amount):,.2f}"
    if symbol:
        return f"{sign}{symbol}{number}"
    return f"{sign}{number} {currency.upper()}"


def format_percent(value: Optional[float]) -> str:
    if value is None or not math.isfinite(value):
        return "—"
    prefix = "+" if value > 0 else ""
    return f"{prefix}{value:.1f}%"


def headline_insight(
    percent_change: Optional[float],
    top_category: Optional[tuple[str, float]],
    mood: CoachMood = CoachMood.serious,
    *,
    threshold: float = 2.0,
    currency: str = "USD",
) -> str:
    roast = mood == CoachMood.roast
    if percent_change is not None and math.isfinite(percent_change):
        if percent_change >= threshold:
            change = format_percent(percent_change)
            if roast:
                return f"Spending climbed {change}. Want me to call out the culprits?"
            return f"Spending is up {change} versus last period. Let's dive into what changed."
        if percent_change <= -threshold:
            change = f"{abs(percent_change):.1f}%"
            if roast:
                return f"Flex alert: you trimmed {change}. Want a victory lap breakdown?"
            return (
                f"Nice work! Spending is down {change}. "
                "Want to see where you saved the most?"
            )

    if top_category is not None and top_category[1] > 0:
        name, spent = top_category
        amount = format_currency(spent, currency)
        if roast:
            return f"{name} is eating the budget at {amount}. Shall I roast the frequent flyers?"
        return f"{name} is leading at {amount}. Want a deeper breakdown?"

    if roast:
        return "Want me to roast today's spending patterns? I've got zingers ready."
    return "Ready when you are. Ask me to highlight today's biggest moves."


def insight_list(
    percent_change: Optional[float],
    deltas: Iterable[CategoryDelta],
    *,
    limit: int = 3,
) -> list[str]:
    items: list[str] = []
    if (
        percent_change is not None
        and math.isfinite(percent_change)
        and abs(percent_change) >= OVERALL_INSIGHT_MIN_PERCENT
    ):
        if percent_change > 0:
            items.append(
                f"Overall spending up {format_percent(percent_change)} versus last period."
            )
        else:
            items.append(
                f"Overall spending down {abs(percent_change):.1f}% versus last period."
            )

    movers = [
        delta
        for delta in deltas
        if delta.percent is not None
        and math.isfinite(delta.percent)
        and (delta.previous or delta.current)
    ]
    movers.sort(key=lambda delta: abs(delta.percent), reverse=True)
    for delta in movers[:limit]:
        direction = "up" if delta.percent >= 0 else "down"
        items.append(
            f"{delta.category} spending {direction} {abs(delta.percent):.1f}% versus last period."
        )

    if not items:
        items.append(NO_DATA_INSIGHT)
    return items


def coach_button_label(mood: CoachMood) -> str:
    return "Roast my spending" if mood == CoachMood.roast else "Ask AI Coach"
