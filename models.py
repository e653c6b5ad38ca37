import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlmodel import SQLModel, Field


def utcnow() -> datetime:
    """Naive UTC timestamp. All stored datetimes use this convention."""
    return datetime.utcnow()


class TransactionType(str, Enum):
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"


# These classes describe what data will be stored in the database.
# Each class = one table.
class User(SQLModel, table=True):
    """Account record.

    A user holds at most one verification token and one reset token.
    Both are set back to NULL as soon as they are used.
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    name: str
    surname: Optional[str] = None
    email: str = Field(index=True, unique=True)  # stored lower-cased
    phone: Optional[str] = None
    address: Optional[str] = None
    hashed_password: str
    role: str = Field(default="user")
    email_verified: Optional[datetime] = None  # NULL until the email link is used
    verification_token: Optional[str] = Field(default=None, index=True)
    reset_token: Optional[str] = Field(default=None, index=True)
    reset_expires: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)


class Category(SQLModel, table=True):
    """Income or expense bucket.
    Categories without a user_id are the shared defaults seeded at startup.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True, min_length=1, max_length=80)
    type: TransactionType
    icon: Optional[str] = None  # icon tag used by the UI
    user_id: Optional[str] = Field(default=None, foreign_key="user.id", index=True)
    created_at: datetime = Field(default_factory=utcnow)


class Transaction(SQLModel, table=True):
    """A single income or expense owned by one user."""
    id: Optional[int] = Field(default=None, primary_key=True)
    amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)  # must be a positive number
    type: TransactionType
    description: Optional[str] = None
    date: datetime = Field(default_factory=utcnow, index=True)
    category_id: int = Field(foreign_key="category.id", index=True)
    user_id: str = Field(foreign_key="user.id", index=True)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
