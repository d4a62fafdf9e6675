from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP


def money(value: Decimal | float | int | None) -> str:
    amount = Decimal(value or 0).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    sign = "-" if amount < 0 else ""
    return f"{sign}${abs(amount):,.0f}".replace(",", ".")


def percent_change(current: Decimal | float | int, previous: Decimal | float | int) -> int:
    previous = Decimal(previous or 0)
    if previous == 0:
        return 0
    change = (Decimal(current or 0) - previous) / previous * Decimal("100")
    return int(change.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def shift_month(value: date, months: int) -> date:
    index = value.year * 12 + (value.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)


def month_bounds(value: date) -> tuple[date, date]:
    start = value.replace(day=1)
    next_start = shift_month(start, 1)
    return start, date.fromordinal(next_start.toordinal() - 1)


def start_of_day(value: date) -> datetime:
    return datetime.combine(value, datetime.min.time())


def end_of_day(value: date) -> datetime:
    return datetime.combine(value, datetime.max.time())


def format_date(value: date | datetime | None) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.strftime("%d-%m-%Y %H:%M")
    return value.strftime("%d-%m-%Y")
