"""Utility functions for money rounding, dates, and read-side aggregation."""
import datetime as dt
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Iterable, NamedTuple, Optional

from errors import ValidationFailed
from models import Category, Transaction, TransactionType


def _round_money(dec: Decimal) -> float:
    """Round a Decimal to 2 decimal places with HALF_UP (normal money rounding)."""
    return float(dec.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def _round_percentage(dec: Decimal) -> float:
    return float(dec.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def normalize_iso_date(value: Any) -> dt.date:
    """Normalize a value to a date or raise a ValueError."""
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value

    if isinstance(value, str):
        try:
            return dt.date.fromisoformat(value.strip())
        except ValueError:
            raise ValueError("Invalid date format. Expected YYYY-MM-DD.")

    raise ValueError("Invalid date format. Expected YYYY-MM-DD.")


def normalize_iso_datetime(value: Any) -> dt.datetime:
    """Accept a date, datetime, 'YYYY-MM-DD' or a full ISO timestamp.

    Aware timestamps are converted to naive UTC.
    """
    if isinstance(value, dt.datetime):
        parsed = value
    elif isinstance(value, dt.date):
        return dt.datetime.combine(value, dt.time.min)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = dt.datetime.fromisoformat(text)
        except ValueError:
            raise ValueError("Invalid date format. Expected an ISO 8601 date or timestamp.")
    else:
        raise ValueError("Invalid date format. Expected an ISO 8601 date or timestamp.")

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(dt.timezone.utc).replace(tzinfo=None)
    return parsed


class DateRange(NamedTuple):
    """Inclusive range of calendar days; either bound may be open."""
    start: Optional[dt.date] = None
    end: Optional[dt.date] = None

    @property
    def lower(self) -> Optional[dt.datetime]:
        if self.start is None:
            return None
        return dt.datetime.combine(self.start, dt.time.min)

    @property
    def upper_exclusive(self) -> Optional[dt.datetime]:
        if self.end is None:
            return None
        return dt.datetime.combine(self.end + dt.timedelta(days=1), dt.time.min)


def parse_date_range(start: Optional[str], end: Optional[str]) -> DateRange:
    """Build a DateRange from query-string values, raising ValidationFailed on bad input."""
    try:
        start_date = normalize_iso_date(start) if start else None
        end_date = normalize_iso_date(end) if end else None
    except ValueError as exc:
        raise ValidationFailed(str(exc))

    if start_date and end_date and start_date > end_date:
        raise ValidationFailed("startDate must not be after endDate")
    return DateRange(start_date, end_date)


def month_key(value: dt.date) -> str:
    return f"{value.year:04d}-{value.month:02d}"


def shift_month(value: dt.date, months: int) -> dt.date:
    """First day of the month ``months`` away from ``value`` (negative goes back)."""
    index = value.year * 12 + (value.month - 1) + months
    return dt.date(index // 12, index % 12 + 1, 1)


def compute_summary(transactions: Iterable[Transaction]) -> dict[str, float]:
    """Totals for income and expenses plus the balance (income - expense)."""
    income_total = Decimal("0")
    expense_total = Decimal("0")

    for t in transactions:
        if t.type == TransactionType.INCOME:
            income_total += _to_decimal(t.amount)
        elif t.type == TransactionType.EXPENSE:
            expense_total += _to_decimal(t.amount)

    income = income_total.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    expense = expense_total.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

    return {
        "income": float(income),
        "expense": float(expense),
        "balance": float(income - expense),
    }


def category_breakdown(
    rows: Iterable[tuple[Transaction, Optional[Category]]],
) -> list[dict[str, Any]]:
    """Group expense rows by category with each group's share of the grand total.

    Rows are (transaction, category) pairs; non-expense rows are ignored.
    Percentages are rounded to one decimal place and are 0 when nothing was spent.
    """
    groups: dict[Optional[int], dict[str, Any]] = {}
    grand_total = Decimal("0")

    for tx, category in rows:
        if tx.type != TransactionType.EXPENSE:
            continue
        amount = _to_decimal(tx.amount)
        grand_total += amount

        group = groups.get(tx.category_id)
        if group is None:
            group = {
                "category_id": tx.category_id,
                "category_name": category.name if category else "Uncategorized",
                "category_icon": category.icon if category else None,
                "total": Decimal("0"),
            }
            groups[tx.category_id] = group
        group["total"] += amount

    result = []
    for group in sorted(groups.values(), key=lambda g: g["total"], reverse=True):
        total = group["total"]
        if grand_total > 0:
            percentage = _round_percentage(total / grand_total * 100)
        else:
            percentage = 0.0
        result.append({**group, "total": _round_money(total), "percentage": percentage})
    return result


def monthly_buckets(transactions: Iterable[Transaction]) -> list[dict[str, Any]]:
    """Income, expense and balance per calendar month, oldest month first.

    Months without transactions are left out.
    """
    buckets: dict[str, dict[str, Decimal]] = {}

    for t in transactions:
        key = month_key(t.date)
        bucket = buckets.setdefault(key, {"income": Decimal("0"), "expense": Decimal("0")})
        if t.type == TransactionType.INCOME:
            bucket["income"] += _to_decimal(t.amount)
        elif t.type == TransactionType.EXPENSE:
            bucket["expense"] += _to_decimal(t.amount)

    trends = []
    for key in sorted(buckets):
        income = buckets[key]["income"]
        expense = buckets[key]["expense"]
        trends.append({
            "month": key,
            "income": _round_money(income),
            "expense": _round_money(expense),
            "balance": _round_money(income - expense),
        })
    return trends
