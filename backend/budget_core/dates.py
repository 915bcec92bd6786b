from __future__ import annotations

from calendar import monthrange
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Mapping


@dataclass(frozen=True)
class MonthWindow:
    start: date
    end: date

    def contains(self, value: date | None) -> bool:
        return value is not None and self.start <= value <= self.end


def parse_date(value: Any) -> date | None:
    """Coerce a stored date value to ``date``; anything unusable becomes None."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        raw = value.strip()[:10]
        try:
            return date.fromisoformat(raw)
        except ValueError:
            return None
    return None


def days_in_month(year: int, month: int) -> int:
    return monthrange(year, month)[1]


def month_boundaries(year: int, month: int) -> MonthWindow:
    return MonthWindow(date(year, month, 1), date(year, month, days_in_month(year, month)))


def shift_month(year: int, month: int, delta: int) -> tuple[int, int]:
    total = (year * 12 + (month - 1)) + delta
    return total // 12, (total % 12) + 1


def month_key(value: date) -> str:
    return f"{value.year:04d}-{value.month:02d}"


def is_past_month(year: int, month: int, today: date) -> bool:
    return (year, month) < (today.year, today.month)


def trailing_month_keys(today: date, count: int) -> list[str]:
    """Keys of the ``count`` completed months before ``today``'s month, newest first."""
    keys = []
    for offset in range(1, count + 1):
        y, m = shift_month(today.year, today.month, -offset)
        keys.append(f"{y:04d}-{m:02d}")
    return keys


def effective_date(transaction: Mapping[str, Any]) -> date | None:
    # Income always books on its date; paid expenses on the payment date.
    if transaction.get("type") == "income":
        return parse_date(transaction.get("date"))
    if transaction.get("isPaid") and transaction.get("paidDate"):
        return parse_date(transaction.get("paidDate"))
    return parse_date(transaction.get("date"))


def in_window(transaction: Mapping[str, Any], start: Any, end: Any) -> bool:
    start_d = parse_date(start)
    end_d = parse_date(end)
    if start_d is None or end_d is None:
        return False
    return MonthWindow(start_d, end_d).contains(effective_date(transaction))
