"""Pydantic schemas for API payloads and validation."""
from typing import Optional
from decimal import Decimal
import datetime as dt

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    constr,
    field_validator,
    model_validator,
)

from models import TransactionType
from utils import normalize_iso_datetime

NAME_MAX_LEN = 80
DESCRIPTION_MAX_LEN = 300
PASSWORD_MIN_LEN = 8
PASSWORD_MAX_LEN = 256
# largest value a Numeric(12, 2) column holds
MAX_AMOUNT = Decimal("9999999999.99")


# Account & auth schemas

class SignUpRequest(BaseModel):
    """Payload for creating an account."""
    name: constr(strip_whitespace=True, min_length=2, max_length=NAME_MAX_LEN)
    surname: Optional[constr(strip_whitespace=True, max_length=NAME_MAX_LEN)] = None
    email: EmailStr
    phone: Optional[constr(strip_whitespace=True, max_length=30)] = None
    address: Optional[constr(strip_whitespace=True, max_length=200)] = None
    password: str = Field(min_length=PASSWORD_MIN_LEN, max_length=PASSWORD_MAX_LEN)

    @field_validator("email")
    @classmethod
    def lower_email(cls, v):
        return v.lower()


class SignUpResponse(BaseModel):
    message: str
    user_id: str
    email_sent: bool


class UserRead(BaseModel):
    """Response model for a user."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    surname: Optional[str] = None
    email: str
    role: str
    email_verified: Optional[dt.datetime] = None
    created_at: dt.datetime


class LoginRequest(BaseModel):
    """Payload for logging in."""
    email: constr(strip_whitespace=True, min_length=1, max_length=320)
    password: str = Field(min_length=1, max_length=PASSWORD_MAX_LEN)


class Token(BaseModel):
    """Token response model."""
    access_token: str
    token_type: str


class ForgotPasswordRequest(BaseModel):
    email: EmailStr

    @field_validator("email")
    @classmethod
    def lower_email(cls, v):
        return v.lower()


class ResetPasswordRequest(BaseModel):
    token: constr(strip_whitespace=True, min_length=1)
    password: str = Field(min_length=PASSWORD_MIN_LEN, max_length=PASSWORD_MAX_LEN)
    confirm_password: str = Field(
        validation_alias=AliasChoices("confirm_password", "confirmPassword"),
    )

    @model_validator(mode="after")
    def passwords_match(self):
        if self.password != self.confirm_password:
            raise ValueError("Passwords do not match")
        return self


class PasswordChange(BaseModel):
    """Payload to change password."""
    current_password: str = Field(min_length=1, max_length=PASSWORD_MAX_LEN)
    new_password: str = Field(min_length=PASSWORD_MIN_LEN, max_length=PASSWORD_MAX_LEN)


class MessageResponse(BaseModel):
    message: str


# Category schemas

class CategoryCreate(BaseModel):
    """Payload for creating a category."""
    name: constr(strip_whitespace=True, min_length=1, max_length=NAME_MAX_LEN)
    type: TransactionType
    icon: Optional[constr(strip_whitespace=True, max_length=50)] = None
    user_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("user_id", "userId"),
    )


class CategoryUpdate(BaseModel):
    """Payload for renaming a category or changing its icon."""
    name: Optional[constr(strip_whitespace=True, min_length=1, max_length=NAME_MAX_LEN)] = None
    icon: Optional[constr(strip_whitespace=True, max_length=50)] = None


class CategoryRead(BaseModel):
    """Response model for a category."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    type: TransactionType
    icon: Optional[str] = None
    user_id: Optional[str] = None


# Transaction schemas

class DescriptionDateMixin:
    """Shared validators for description trimming and date normalization."""
    @field_validator("description", mode="before", check_fields=False)
    @classmethod
    def strip_description(cls, v):
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v

    @field_validator("date", mode="before", check_fields=False)
    @classmethod
    def normalize_date(cls, v):
        if v is None:
            return None
        return normalize_iso_datetime(v)


class TransactionCreate(DescriptionDateMixin, BaseModel):
    """Command for recording a transaction. The owner comes from the session."""
    amount: Decimal = Field(gt=0, le=MAX_AMOUNT)
    type: TransactionType
    description: Optional[str] = Field(default=None, max_length=DESCRIPTION_MAX_LEN)
    date: Optional[dt.datetime] = None
    category_id: int = Field(validation_alias=AliasChoices("category_id", "categoryId"))
    user_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("user_id", "userId"),
    )


class TransactionUpdate(DescriptionDateMixin, BaseModel):
    """Partial update; only the fields present in the payload change."""
    amount: Optional[Decimal] = Field(default=None, gt=0, le=MAX_AMOUNT)
    type: Optional[TransactionType] = None
    description: Optional[str] = Field(default=None, max_length=DESCRIPTION_MAX_LEN)
    date: Optional[dt.datetime] = None
    category_id: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("category_id", "categoryId"),
    )

    @field_validator("amount", "type", "date", "category_id")
    @classmethod
    def not_null(cls, v):
        # only runs for fields that were sent; an explicit null is rejected
        if v is None:
            raise ValueError("Field may not be null")
        return v


class TransactionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    amount: float
    type: TransactionType
    description: Optional[str] = None
    date: dt.datetime
    category_id: int
    user_id: str
    category_name: Optional[str] = None
    category_icon: Optional[str] = None
    created_at: dt.datetime
    updated_at: dt.datetime


# Aggregates

class SummaryRead(BaseModel):
    income: float
    expense: float
    balance: float


class CategoryExpenseRead(BaseModel):
    category_id: Optional[int]
    category_name: str
    category_icon: Optional[str] = None
    total: float
    percentage: float


class MonthlyTrendRead(BaseModel):
    month: str
    income: float
    expense: float
    balance: float
