from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterator, Optional


@dataclass(frozen=True)
class Window:
    """Half-open date range ``[start, end)``."""

    slug: str
    start: date
    end: date

    @property
    def is_empty(self) -> bool:
        return self.start >= self.end

    def contains(self, day: date) -> bool:
        return self.start <= day < self.end

    def days(self) -> Iterator[date]:
        current = self.start
        while current < self.end:
            yield current
            current += timedelta(days=1)


def _month_start(day: date) -> date:
    return day.replace(day=1)


def _next_month_start(day: date) -> date:
    first = day.replace(day=1)
    if first.month == 12:
        return first.replace(year=first.year + 1, month=1)
    return first.replace(month=first.month + 1)


def resolve_window(
    view: Optional[str],
    start: Optional[str],
    end: Optional[str],
    *,
    anchor: Optional[str] = None,
    today: Optional[date] = None,
) -> Window:
    today = today or date.today()
    if start or end:
        if not start or not end:
            raise ValueError("Custom window requires start and end dates")
        start_date = date.fromisoformat(start)
        end_date = date.fromisoformat(end)
        return Window("custom", start_date, end_date)

    anchor_date = date.fromisoformat(anchor) if anchor else today
    if view == "week":
        week_start = anchor_date - timedelta(days=anchor_date.weekday())
        return Window("week", week_start, week_start + timedelta(days=7))
    if view == "day":
        return Window("day", anchor_date, anchor_date + timedelta(days=1))
    if view and view != "month":
        raise ValueError(f"Unknown calendar view: {view}")

    return Window("month", _month_start(anchor_date), _next_month_start(anchor_date))
