"""Read-only aggregates over one user's transactions.

Every query here is filtered by user_id; nothing in this module writes.
"""
import datetime as dt
from typing import Any, Optional

from sqlmodel import Session, select

from models import Category, Transaction, TransactionType, utcnow
from utils import (
    DateRange,
    category_breakdown,
    compute_summary,
    monthly_buckets,
    shift_month,
)

DEFAULT_MONTHS_BACK = 6


def _in_range(stmt, date_range: DateRange):
    if date_range.lower is not None:
        stmt = stmt.where(Transaction.date >= date_range.lower)
    if date_range.upper_exclusive is not None:
        stmt = stmt.where(Transaction.date < date_range.upper_exclusive)
    return stmt


def summary(session: Session, user_id: str, date_range: DateRange = DateRange()) -> dict[str, float]:
    """Income, expense and balance for the user within the range."""
    stmt = _in_range(select(Transaction).where(Transaction.user_id == user_id), date_range)
    return compute_summary(session.exec(stmt).all())


def expenses_by_category(
    session: Session,
    user_id: str,
    date_range: DateRange = DateRange(),
) -> list[dict[str, Any]]:
    """Expense totals per category with their percentage of all expenses."""
    stmt = (
        select(Transaction, Category)
        .join(Category, Transaction.category_id == Category.id, isouter=True)
        .where(
            Transaction.user_id == user_id,
            Transaction.type == TransactionType.EXPENSE,
        )
    )
    rows = session.exec(_in_range(stmt, date_range)).all()
    return category_breakdown(rows)


def monthly_trends(
    session: Session,
    user_id: str,
    months_back: int = DEFAULT_MONTHS_BACK,
    today: Optional[dt.date] = None,
) -> list[dict[str, Any]]:
    """Per-month totals from the start of the month ``months_back`` months ago."""
    today = today or utcnow().date()
    window_start = shift_month(today, -months_back)

    stmt = select(Transaction).where(
        Transaction.user_id == user_id,
        Transaction.date >= dt.datetime.combine(window_start, dt.time.min),
    )
    return monthly_buckets(session.exec(stmt).all())
