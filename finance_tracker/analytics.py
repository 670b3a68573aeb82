"""Aggregate reports over a user's transactions, served cache-aside.

Monthly series are zero-filled: every calendar month in the window appears
exactly once, oldest first, so charts always get contiguous buckets.
"""
import enum
from datetime import date
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy import case, extract, func
from sqlalchemy.orm import Session

from . import models
from .cache import Cache
from .errors import ValidationError
from .utils import money


OVERVIEW_MONTHS = 6


class TimeRange(str, enum.Enum):
    THREE_MONTHS = "3months"
    SIX_MONTHS = "6months"
    TWELVE_MONTHS = "12months"
    TWO_YEARS = "2years"

    @property
    def months(self) -> int:
        return {"3months": 3, "6months": 6, "12months": 12, "2years": 24}[self.value]


DEFAULT_TIME_RANGE = TimeRange.TWELVE_MONTHS


def parse_time_range(value: str) -> TimeRange:
    try:
        return TimeRange(value)
    except ValueError:
        allowed = ", ".join(tr.value for tr in TimeRange)
        raise ValidationError(details=[{"field": "timeRange", "message": f"must be one of: {allowed}"}]) from None


# -------------------- cache keys --------------------

def overview_key(user_id: str) -> str:
    return f"overview:{user_id}"


def detailed_key(user_id: str, time_range: TimeRange) -> str:
    return f"analytics:{user_id}:{time_range.value}"


def invalidate_user(cache: Cache, user_id: str) -> None:
    """Drop every cached report for ``user_id`` (overview and all analytics ranges)."""
    cache.invalidate(overview_key(user_id))
    cache.invalidate(f"analytics:{user_id}:")


def cached_report(cache: Cache, key: str, compute: Callable[[], dict]) -> str:
    """Return the JSON payload for ``key``, computing and storing it on a miss."""
    raw = cache.get_raw(key)
    if raw is not None:
        return raw
    raw = cache.set(key, compute())
    if raw is None:
        raise ValueError(f"report for {key} could not be encoded")
    return raw


# -------------------- month arithmetic --------------------

def _shift_month(year: int, month: int, delta: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def month_window(today: date, months: int) -> tuple[date, date, list[tuple[int, int]]]:
    """Return (first day, first day after, [(year, month), ...]) for the trailing ``months``."""
    start_y, start_m = _shift_month(today.year, today.month, -(months - 1))
    end_y, end_m = _shift_month(today.year, today.month, 1)
    buckets = [_shift_month(start_y, start_m, i) for i in range(months)]
    return date(start_y, start_m, 1), date(end_y, end_m, 1), buckets


def _label(year: int, month: int) -> str:
    return f"{year:04d}-{month:02d}"


# -------------------- queries --------------------

def _income_sum():
    return func.sum(case((models.Transaction.type == "income", models.Transaction.amount), else_=0))


def _expense_sum():
    return func.sum(case((models.Transaction.type == "expense", models.Transaction.amount), else_=0))


def _in_window(query, user_id: str, start: date, end: date):
    return query.filter(
        models.Transaction.user_id == user_id,
        models.Transaction.date >= start,
        models.Transaction.date < end,
    )


def monthly_trend(db: Session, user_id: str, today: date, months: int) -> list[dict]:
    start, end, buckets = month_window(today, months)
    year_col = extract("year", models.Transaction.date)
    month_col = extract("month", models.Transaction.date)
    rows = _in_window(
        db.query(year_col, month_col, _income_sum(), _expense_sum()), user_id, start, end
    ).group_by(year_col, month_col).all()

    sums = {(int(y), int(m)): (income, expenses) for y, m, income, expenses in rows}
    trend = []
    for year, month in buckets:
        income, expenses = sums.get((year, month), (0, 0))
        trend.append({"month": _label(year, month), "income": money(income), "expenses": money(expenses)})
    return trend


def category_breakdown(db: Session, user_id: str, start: date, end: date) -> list[dict]:
    amount_sum = func.sum(models.Transaction.amount)
    rows = (
        _in_window(
            db.query(models.Transaction.category, amount_sum, func.count(models.Transaction.id)),
            user_id, start, end,
        )
        .filter(models.Transaction.type == "expense")
        .group_by(models.Transaction.category)
        .all()
    )
    amounts = [(category, Decimal(str(total or 0)), int(count)) for category, total, count in rows]
    total_expenses = sum((a for _, a, _ in amounts), Decimal("0"))
    amounts.sort(key=lambda row: (-row[1], row[0]))

    breakdown = []
    for category, amount, count in amounts:
        percentage = float(amount / total_expenses * 100) if total_expenses > 0 else 0.0
        breakdown.append({
            "category": category,
            "amount": money(amount),
            "count": count,
            "percentage": percentage,
        })
    return breakdown


def yearly_comparison(db: Session, user_id: str, start: date, end: date) -> list[dict]:
    year_col = extract("year", models.Transaction.date)
    rows = _in_window(
        db.query(year_col, _income_sum(), _expense_sum(), func.count(models.Transaction.id)),
        user_id, start, end,
    ).group_by(year_col).all()

    by_year = {int(y): (income, expenses, int(count)) for y, income, expenses, count in rows}
    comparison = []
    for year in range(start.year, (end.year if end.month > 1 else end.year - 1) + 1):
        income, expenses, count = by_year.get(year, (0, 0, 0))
        comparison.append({
            "year": year,
            "income": money(income),
            "expenses": money(expenses),
            "net": money(Decimal(str(income or 0)) - Decimal(str(expenses or 0))),
            "count": count,
        })
    return comparison


# -------------------- reports --------------------

def compute_overview(db: Session, user_id: str, today: Optional[date] = None) -> dict:
    today = today or date.today()
    income, expenses, count = (
        db.query(_income_sum(), _expense_sum(), func.count(models.Transaction.id))
        .filter(models.Transaction.user_id == user_id)
        .one()
    )
    total_income = Decimal(str(income or 0))
    total_expenses = Decimal(str(expenses or 0))
    return {
        "totalIncome": money(total_income),
        "totalExpenses": money(total_expenses),
        "balance": money(total_income - total_expenses),
        "transactionCount": int(count or 0),
        "monthlyTrend": monthly_trend(db, user_id, today, OVERVIEW_MONTHS),
    }


def compute_detailed(
    db: Session, user_id: str, time_range: TimeRange = DEFAULT_TIME_RANGE, today: Optional[date] = None
) -> dict:
    today = today or date.today()
    start, end, _ = month_window(today, time_range.months)
    return {
        "timeRange": time_range.value,
        "monthlyTrends": monthly_trend(db, user_id, today, time_range.months),
        "categoryBreakdown": category_breakdown(db, user_id, start, end),
        "yearlyComparison": yearly_comparison(db, user_id, start, end),
    }


def overview(db: Session, cache: Cache, user_id: str, today: Optional[date] = None) -> str:
    return cached_report(cache, overview_key(user_id), lambda: compute_overview(db, user_id, today))


def detailed(
    db: Session, cache: Cache, user_id: str, time_range: TimeRange = DEFAULT_TIME_RANGE,
    today: Optional[date] = None,
) -> str:
    return cached_report(
        cache, detailed_key(user_id, time_range), lambda: compute_detailed(db, user_id, time_range, today)
    )
