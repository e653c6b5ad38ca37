"""Email-verification and password-reset tokens.

Tokens are opaque random strings stored on the user row. Consuming a token
and applying the change it authorizes happen in one conditional UPDATE
(``WHERE id = ? AND <token column> = ?``) committed as a single transaction,
so two concurrent requests cannot both spend the same token.

Verification tokens never expire. Reset tokens are valid for
RESET_TOKEN_TTL_HOURS after issuance.
"""
import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import update
from sqlmodel import Session, select

from auth import get_password_hash
from config import RESET_TOKEN_TTL_HOURS
from errors import Expired, NotFound
from models import User, utcnow

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32
RESET_TOKEN_TTL = timedelta(hours=RESET_TOKEN_TTL_HOURS)


def new_token() -> str:
    """URL-safe token with 256 bits from the OS CSPRNG."""
    return secrets.token_urlsafe(TOKEN_BYTES)


def _get_user(session: Session, user_id: str) -> User:
    user = session.get(User, user_id)
    if user is None:
        raise NotFound("User not found")
    return user


def issue_verification_token(session: Session, user_id: str) -> str:
    """Store a fresh verification token on the user, replacing any previous one."""
    user = _get_user(session, user_id)
    token = new_token()
    user.verification_token = token
    session.add(user)
    session.commit()
    logger.info("Issued verification token for user %s", user_id)
    return token


def issue_reset_token(
    session: Session,
    user_id: str,
    now: Optional[datetime] = None,
) -> str:
    """Store a fresh reset token that expires RESET_TOKEN_TTL after ``now``."""
    now = now or utcnow()
    user = _get_user(session, user_id)
    token = new_token()
    user.reset_token = token
    user.reset_expires = now + RESET_TOKEN_TTL
    session.add(user)
    session.commit()
    logger.info("Issued password reset token for user %s", user_id)
    return token


def _find_by(session: Session, column, token: Optional[str]) -> Optional[User]:
    if not token:
        return None
    return session.exec(select(User).where(column == token)).first()


def consume_verification_token(
    session: Session,
    token: str,
    now: Optional[datetime] = None,
) -> User:
    """Mark the token owner's email as verified and clear the token."""
    now = now or utcnow()
    user = _find_by(session, User.verification_token, token)
    if user is None:
        raise NotFound("Verification token not found")

    result = session.exec(
        update(User)
        .where(User.id == user.id, User.verification_token == token)
        .values(email_verified=now, verification_token=None)
    )
    if result.rowcount != 1:
        # another request used the token between the read and the update
        session.rollback()
        raise NotFound("Verification token not found")

    session.commit()
    session.refresh(user)
    logger.info("Email verified for user %s", user.id)
    return user


def consume_reset_token(
    session: Session,
    token: str,
    new_password: str,
    now: Optional[datetime] = None,
) -> User:
    """Replace the password of the token owner and clear the token and its expiry."""
    now = now or utcnow()
    user = _find_by(session, User.reset_token, token)
    if user is None:
        raise NotFound("Reset token not found")
    if user.reset_expires is None or now > user.reset_expires:
        raise Expired("Password reset link has expired")

    hashed = get_password_hash(new_password)
    result = session.exec(
        update(User)
        .where(
            User.id == user.id,
            User.reset_token == token,
            User.reset_expires >= now,
        )
        .values(hashed_password=hashed, reset_token=None, reset_expires=None)
    )
    if result.rowcount != 1:
        session.rollback()
        raise NotFound("Reset token not found")

    session.commit()
    session.refresh(user)
    logger.info("Password reset completed for user %s", user.id)
    return user
