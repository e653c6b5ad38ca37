"""Owner-scoped create/read/update/delete for categories and transactions."""
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from sqlalchemy import delete, func, or_
from sqlmodel import Session, select

from errors import Conflict, Forbidden, NotFound, ValidationFailed
from guard import ensure_owner, get_owned
from models import Category, Transaction, TransactionType, utcnow
from schemas import (
    CategoryCreate,
    CategoryUpdate,
    TransactionCreate,
    TransactionRead,
    TransactionUpdate,
)
from utils import DateRange

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES = [
    ("Salary", TransactionType.INCOME, "banknote"),
    ("Investment", TransactionType.INCOME, "trending-up"),
    ("Freelance", TransactionType.INCOME, "briefcase"),
    ("Gifts Received", TransactionType.INCOME, "gift"),
    ("Other Income", TransactionType.INCOME, "plus-circle"),
    ("Housing", TransactionType.EXPENSE, "home"),
    ("Food & Dining", TransactionType.EXPENSE, "utensils"),
    ("Transport", TransactionType.EXPENSE, "car"),
    ("Bills & Utilities", TransactionType.EXPENSE, "zap"),
    ("Health & Medical", TransactionType.EXPENSE, "heart-pulse"),
    ("Entertainment", TransactionType.EXPENSE, "film"),
    ("Shopping", TransactionType.EXPENSE, "shopping-bag"),
    ("Education", TransactionType.EXPENSE, "book"),
    ("Travel", TransactionType.EXPENSE, "plane"),
    ("Subscriptions", TransactionType.EXPENSE, "repeat"),
    ("Other Expenses", TransactionType.EXPENSE, "minus-circle"),
]


def save_and_refresh(session: Session, instance):
    """Persist and refresh an instance in the current session."""
    session.add(instance)
    session.commit()
    session.refresh(instance)
    return instance


def _money(amount: Decimal) -> Decimal:
    value = amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    if value <= 0:
        raise ValidationFailed("Amount must be a positive number")
    return value


# CATEGORIES

def seed_default_categories(session: Session) -> None:
    """Seed the shared default categories if none exist."""
    existing = session.exec(select(Category).where(Category.user_id.is_(None))).first()
    if existing:
        logger.info("Default categories already exist, skipping seed")
        return

    session.add_all([
        Category(name=name, type=type_, icon=icon)
        for name, type_, icon in DEFAULT_CATEGORIES
    ])
    session.commit()
    logger.info("Added %d default categories", len(DEFAULT_CATEGORIES))


def _visible_to(user_id: str):
    return or_(Category.user_id.is_(None), Category.user_id == user_id)


def list_categories(
    session: Session,
    user_id: str,
    type_: Optional[TransactionType] = None,
) -> list[Category]:
    """Shared defaults plus the user's own categories, ordered by name."""
    stmt = select(Category).where(_visible_to(user_id))
    if type_ is not None:
        stmt = stmt.where(Category.type == type_)
    return list(session.exec(stmt.order_by(Category.name, Category.id)).all())


def get_visible_category(session: Session, user_id: str, category_id: int) -> Optional[Category]:
    category = session.get(Category, category_id)
    if category is None or category.user_id not in (None, user_id):
        return None
    return category


def _ensure_unique_name(
    session: Session,
    user_id: str,
    name: str,
    type_: TransactionType,
    exclude_id: Optional[int] = None,
) -> None:
    stmt = select(Category).where(
        _visible_to(user_id),
        Category.type == type_,
        func.lower(Category.name) == name.lower(),
    )
    if exclude_id is not None:
        stmt = stmt.where(Category.id != exclude_id)
    if session.exec(stmt).first():
        raise Conflict("Category already exists")


def create_category(session: Session, user_id: str, payload: CategoryCreate) -> Category:
    """Create a category owned by ``user_id``; (name, type) must be unused in its scope."""
    _ensure_unique_name(session, user_id, payload.name, payload.type)
    row = Category(name=payload.name, type=payload.type, icon=payload.icon, user_id=user_id)
    row = save_and_refresh(session, row)
    logger.info("User %s created category %s", user_id, row.id)
    return row


def _owned_category(session: Session, user_id: str, category_id: int) -> Category:
    category = session.get(Category, category_id)
    if category is not None and category.user_id is None:
        raise Forbidden("Default categories cannot be changed")
    return ensure_owner(category, user_id, "Category")


def update_category(
    session: Session,
    user_id: str,
    category_id: int,
    payload: CategoryUpdate,
) -> Category:
    """Rename a category or change its icon, enforcing uniqueness."""
    category = _owned_category(session, user_id, category_id)
    data = payload.model_dump(exclude_unset=True)

    if data.get("name") is not None:
        _ensure_unique_name(session, user_id, data["name"], category.type, exclude_id=category.id)
        category.name = data["name"]
    if "icon" in data:
        category.icon = data["icon"]

    return save_and_refresh(session, category)


def delete_category(session: Session, user_id: str, category_id: int) -> None:
    """Delete a category if it is not referenced by transactions."""
    category = _owned_category(session, user_id, category_id)

    in_use = session.exec(
        select(Transaction).where(Transaction.category_id == category.id)
    ).first()
    if in_use:
        raise ValidationFailed("Category is in use and cannot be deleted")

    session.delete(category)
    session.commit()
    logger.info("User %s deleted category %s", user_id, category_id)


# TRANSACTIONS

def _category_for(
    session: Session,
    user_id: str,
    category_id: int,
    type_: TransactionType,
) -> Category:
    category = get_visible_category(session, user_id, category_id)
    if category is None:
        raise ValidationFailed("Category not found")
    if category.type != type_:
        raise ValidationFailed("Category type does not match transaction type")
    return category


def to_read(tx: Transaction, category: Optional[Category]) -> TransactionRead:
    return TransactionRead(
        id=tx.id,
        amount=float(tx.amount),
        type=tx.type,
        description=tx.description,
        date=tx.date,
        category_id=tx.category_id,
        user_id=tx.user_id,
        category_name=category.name if category else None,
        category_icon=category.icon if category else None,
        created_at=tx.created_at,
        updated_at=tx.updated_at,
    )


def create_transaction(session: Session, user_id: str, payload: TransactionCreate) -> TransactionRead:
    category = _category_for(session, user_id, payload.category_id, payload.type)
    row = Transaction(
        amount=_money(payload.amount),
        type=payload.type,
        description=payload.description,
        date=payload.date or utcnow(),
        category_id=category.id,
        user_id=user_id,
    )
    row = save_and_refresh(session, row)
    logger.info("User %s created transaction %s", user_id, row.id)
    return to_read(row, category)


def get_transaction(session: Session, user_id: str, transaction_id: int) -> TransactionRead:
    tx = get_owned(session, Transaction, transaction_id, user_id, "Transaction")
    return to_read(tx, session.get(Category, tx.category_id))


def list_transactions(
    session: Session,
    user_id: str,
    date_range: DateRange = DateRange(),
    type_: Optional[TransactionType] = None,
    category_id: Optional[int] = None,
    query: Optional[str] = None,
    limit: Optional[int] = None,
    offset: Optional[int] = None,
) -> list[TransactionRead]:
    """The user's transactions, newest first, with optional filters."""
    stmt = (
        select(Transaction, Category)
        .join(Category, Transaction.category_id == Category.id, isouter=True)
        .where(Transaction.user_id == user_id)
    )
    if type_ is not None:
        stmt = stmt.where(Transaction.type == type_)
    if category_id is not None:
        stmt = stmt.where(Transaction.category_id == category_id)
    if date_range.lower is not None:
        stmt = stmt.where(Transaction.date >= date_range.lower)
    if date_range.upper_exclusive is not None:
        stmt = stmt.where(Transaction.date < date_range.upper_exclusive)
    q = (query or "").strip().lower()
    if q:
        stmt = stmt.where(func.lower(Transaction.description).contains(q, autoescape=True))

    stmt = stmt.order_by(Transaction.date.desc(), Transaction.id.desc())
    if offset:
        stmt = stmt.offset(offset)
    if limit:
        stmt = stmt.limit(limit)

    return [to_read(tx, category) for tx, category in session.exec(stmt).all()]


def update_transaction(
    session: Session,
    user_id: str,
    transaction_id: int,
    payload: TransactionUpdate,
) -> TransactionRead:
    """Patch a transaction, validating amount and category changes."""
    tx = get_owned(session, Transaction, transaction_id, user_id, "Transaction")
    data = payload.model_dump(exclude_unset=True)

    if "amount" in data:
        data["amount"] = _money(data["amount"])

    new_type = data.get("type", tx.type)
    if "category_id" in data or "type" in data:
        _category_for(session, user_id, data.get("category_id", tx.category_id), new_type)

    if data:
        for field, value in data.items():
            setattr(tx, field, value)
        tx.updated_at = utcnow()
        tx = save_and_refresh(session, tx)
        logger.info("User %s updated transaction %s", user_id, tx.id)

    return to_read(tx, session.get(Category, tx.category_id))


def delete_transaction(session: Session, user_id: str, transaction_id: int) -> None:
    get_owned(session, Transaction, transaction_id, user_id, "Transaction")

    result = session.exec(
        delete(Transaction).where(
            Transaction.id == transaction_id,
            Transaction.user_id == user_id,
        )
    )
    if result.rowcount != 1:
        session.rollback()
        raise NotFound("Transaction not found")

    session.commit()
    logger.info("User %s deleted transaction %s", user_id, transaction_id)
