from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Dict, Iterable, Optional, Tuple

DEFAULT_ROLLUP_MONTHS = 6
UNCATEGORIZED = "Uncategorized"
ZERO = Decimal("0")


@dataclass(frozen=True)
class SpendingRecord:
    date: date
    amount: Decimal
    category: Optional[str] = None


@dataclass(frozen=True)
class MonthlySpending:
    month: str
    categories: Dict[str, Decimal]
    total: Decimal


@dataclass(frozen=True)
class DailySpending:
    day: date
    amount: Decimal


@dataclass(frozen=True)
class SpendingSummary:
    months: Tuple[MonthlySpending, ...]
    daily: Tuple[DailySpending, ...]


def rollup_window_start(today: date, months: int = DEFAULT_ROLLUP_MONTHS) -> date:
    """First day of the oldest month covered by a rollup ending at ``today``."""
    year, month = _shift_month(today.year, today.month, -(max(months, 1) - 1))
    return date(year, month, 1)


def summarize_spending(
    payments: Iterable[SpendingRecord],
    today: date,
    months: int = DEFAULT_ROLLUP_MONTHS,
) -> SpendingSummary:
    """Roll payments up per month and category, plus per day of the current month.

    Every month of the window appears, oldest first, even when it has no
    payments. Payments outside the window are ignored, payments without a
    category are counted as ``Uncategorized`` and unreadable amounts count
    as zero.
    """
    month_keys = [
        _month_key(*_shift_month(today.year, today.month, -offset))
        for offset in range(max(months, 1) - 1, -1, -1)
    ]
    by_month: Dict[str, Dict[str, Decimal]] = {key: {} for key in month_keys}
    totals: Dict[str, Decimal] = {key: ZERO for key in month_keys}

    days_in_month = calendar.monthrange(today.year, today.month)[1]
    first_day = date(today.year, today.month, 1)
    by_day: Dict[date, Decimal] = {
        first_day + timedelta(days=offset): ZERO for offset in range(days_in_month)
    }

    for payment in payments:
        day = _coerce_date(payment.date)
        if day is None:
            continue
        amount = _coerce_amount(payment.amount)
        key = _month_key(day.year, day.month)
        if key in by_month:
            category = (payment.category or "").strip() or UNCATEGORIZED
            categories = by_month[key]
            categories[category] = categories.get(category, ZERO) + amount
            totals[key] += amount
        if day in by_day:
            by_day[day] += amount

    return SpendingSummary(
        months=tuple(
            MonthlySpending(month=key, categories=by_month[key], total=totals[key])
            for key in month_keys
        ),
        daily=tuple(DailySpending(day=day, amount=amount) for day, amount in by_day.items()),
    )


def _shift_month(year: int, month: int, offset: int) -> Tuple[int, int]:
    index = year * 12 + (month - 1) + offset
    return index // 12, index % 12 + 1


def _month_key(year: int, month: int) -> str:
    return f"{year:04d}-{month:02d}"


def _coerce_date(value: date | datetime | str) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.strip()).date()
        except ValueError:
            return None
    return None


def _coerce_amount(amount: Decimal | int | float | str | None) -> Decimal:
    if isinstance(amount, Decimal):
        coerced = amount
    else:
        try:
            coerced = Decimal(str(amount))
        except (InvalidOperation, ValueError):
            return ZERO
    if not coerced.is_finite():
        return ZERO
    return coerced
