from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional


class InvalidDateRange(ValueError):
    pass


@dataclass(frozen=True, order=True)
class MonthKey:
    """A calendar month, the index used for monthly budgets (``YYYY-MM``)."""

    year: int
    month: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise InvalidDateRange(f"Invalid month: {self.month}")
        if not 1 <= self.year <= 9999:
            raise InvalidDateRange(f"Invalid year: {self.year}")

    @classmethod
    def parse(cls, value: str) -> "MonthKey":
        raw = (value or "").strip()
        parts = raw.split("-")
        if len(parts) != 2 or len(parts[0]) != 4 or len(parts[1]) != 2:
            raise InvalidDateRange(f"Invalid month key: {value!r}")
        try:
            return cls(int(parts[0]), int(parts[1]))
        except ValueError as exc:
            raise InvalidDateRange(f"Invalid month key: {value!r}") from exc

    @classmethod
    def from_date(cls, d: date) -> "MonthKey":
        return cls(d.year, d.month)

    @classmethod
    def from_date_str(cls, value: str) -> "MonthKey":
        return cls.from_date(parse_iso_date(value))

    def shift(self, count: int) -> "MonthKey":
        month_index = (self.year * 12) + (self.month - 1) + count
        return MonthKey(month_index // 12, (month_index % 12) + 1)

    def previous(self) -> "MonthKey":
        return self.shift(-1)

    def next(self) -> "MonthKey":
        return self.shift(1)

    @property
    def first_day(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def last_day(self) -> date:
        if self.month == 12:
            return date(self.year + 1, 1, 1) - date.resolution
        return date(self.year, self.month + 1, 1) - date.resolution

    def bounds(self) -> "DateRange":
        return DateRange(self.first_day.isoformat(), self.last_day.isoformat())

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


@dataclass(frozen=True)
class DateRange:
    """Inclusive window of ``YYYY-MM-DD`` strings; both ``None`` means all time.

    Build instances through :func:`parse_date_range` when the bounds come from
    user input; the constructor trusts its arguments.
    """

    start: Optional[str] = None
    end: Optional[str] = None

    @classmethod
    def all_time(cls) -> "DateRange":
        return cls(None, None)

    @property
    def is_all_time(self) -> bool:
        return self.start is None and self.end is None

    @property
    def is_bounded(self) -> bool:
        return self.start is not None and self.end is not None

    def contains(self, date_str: Optional[str]) -> bool:
        if self.is_all_time:
            return True
        if date_str is None:
            return False
        if self.start is not None and date_str < self.start:
            return False
        if self.end is not None and date_str > self.end:
            return False
        return True

    @property
    def span_days(self) -> Optional[int]:
        if not self.is_bounded:
            return None
        start = parse_iso_date(self.start)
        end = parse_iso_date(self.end)
        return (end - start).days + 1

    def as_dict(self) -> dict[str, Optional[str]]:
        return {"start": self.start, "end": self.end}


def parse_iso_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError) as exc:
        raise InvalidDateRange(f"Invalid date: {value!r}") from exc


def parse_date_range(start: Optional[str], end: Optional[str]) -> DateRange:
    start = (start or "").strip() or None
    end = (end or "").strip() or None
    start_date = parse_iso_date(start) if start else None
    end_date = parse_iso_date(end) if end else None
    if start_date and end_date and start_date > end_date:
        raise InvalidDateRange("Start date must be before end date")
    return DateRange(
        start_date.isoformat() if start_date else None,
        end_date.isoformat() if end_date else None,
    )


def previous_range(current: DateRange) -> Optional[DateRange]:
    """Immediately preceding window with the same number of days."""
    if not current.is_bounded:
        return None
    start = parse_iso_date(current.start)
    end = parse_iso_date(current.end)
    span_days = max(1, (end - start).days + 1)
    prev_end = start - timedelta(days=1)
    prev_start = prev_end - timedelta(days=span_days - 1)
    return DateRange(prev_start.isoformat(), prev_end.isoformat())


def budget_month(current: DateRange, today: date) -> MonthKey:
    candidate = current.start or current.end
    return MonthKey.from_date(parse_iso_date(candidate) if candidate else today)


def month_to_date_range(current: DateRange, today: date) -> DateRange:
    """Budget window: the budget month's start up to the range end, clamped to that month."""
    month = budget_month(current, today)
    candidate = current.end or current.start
    ref = parse_iso_date(candidate) if candidate else today
    ref = min(max(ref, month.first_day), month.last_day)
    return DateRange(month.first_day.isoformat(), ref.isoformat())


def is_full_month(current: DateRange) -> bool:
    if not current.is_bounded:
        return False
    month = MonthKey.from_date_str(current.start)
    bounds = month.bounds()
    return current.start == bounds.start and current.end == bounds.end


def current_month_range(today: date) -> DateRange:
    return MonthKey.from_date(today).bounds()
