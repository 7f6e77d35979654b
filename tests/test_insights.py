from comparison import CategoryDelta
from insights import (
    NO_DATA_INSIGHT,
    CoachMood,
    coach_button_label,
    format_currency,
    format_percent,
    headline_insight,
    insight_list,
    parse_mood,
)


def test_formatting() -> None:
    assert format_currency(1234.5) == "$1,234.50"
    assert format_currency(-5, "EUR") == "-€5.00"
    assert format_currency(10, "chf") == "10.00 CHF"
    assert format_percent(None) == "—"
    assert format_percent(12.345) == "+12.3%"
    assert format_percent(-4.0) == "-4.0%"
    assert format_percent(0) == "0.0%"


def test_headline_direction_sentences() -> None:
    assert (
        headline_insight(12.5, ("Food", 40.0))
        == "Spending is up +12.5% versus last period. Let's dive into what changed."
    )
    assert (
        headline_insight(-10.0, ("Food", 40.0))
        == "Nice work! Spending is down 10.0%. Want to see where you saved the most?"
    )
    assert headline_insight(2.0, None).startswith("Spending is up +2.0%")


def test_headline_top_category_and_generic() -> None:
    assert (
        headline_insight(1.0, ("Food", 40.0))
        == "Food is leading at $40.00. Want a deeper breakdown?"
    )
    assert (
        headline_insight(None, ("Food", 0.0))
        == "Ready when you are. Ask me to highlight today's biggest moves."
    )
    assert headline_insight(None, None, CoachMood.roast).startswith("Want me to roast")
    assert "eating the budget" in headline_insight(0.0, ("Bills", 12.0), CoachMood.roast)


def test_headline_threshold_is_configurable() -> None:
    assert headline_insight(3.0, ("Food", 1.0), threshold=5.0).startswith("Food is leading")


def test_insight_list() -> None:
    deltas = [
        CategoryDelta("Food", 20.0, 100.0, 20.0, 40.0),
        CategoryDelta("Transport", -5.0, -25.0, 20.0, 15.0),
        CategoryDelta("Bills", 0.0, 0.0, 0.0, 0.0),
        CategoryDelta("Shopping", 1.0, 10.0, 10.0, 11.0),
        CategoryDelta("Other", 1.0, 5.0, 20.0, 21.0),
    ]
    items = insight_list(40.0, deltas)
    assert items == [
        "Overall spending up +40.0% versus last period.",
        "Food spending up 100.0% versus last period.",
        "Transport spending down 25.0% versus last period.",
        "Shopping spending up 10.0% versus last period.",
    ]

    assert insight_list(0.2, [])[0] == NO_DATA_INSIGHT
    assert insight_list(None, [CategoryDelta("Bills", 0.0, 0.0, 0.0, 0.0)]) == [NO_DATA_INSIGHT]
    assert insight_list(-3.0, [])[0] == "Overall spending down 3.0% versus last period."


def test_mood_helpers() -> None:
    assert parse_mood("motivator_roast") is CoachMood.roast
    assert parse_mood("bogus") is CoachMood.serious
    assert parse_mood(None) is CoachMood.serious
    assert coach_button_label(CoachMood.roast) == "Roast my spending"
    assert coach_button_label(CoachMood.serious) == "Ask AI Coach"
