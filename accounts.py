"""Account lifecycle: sign-up, login, email verification and password reset."""
import logging
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

import tokens
from auth import get_password_hash, verify_password
from errors import Conflict, Forbidden, ValidationFailed
from mailer import send_password_reset_email, send_verification_email
from models import User
from schemas import SignUpRequest

logger = logging.getLogger(__name__)


@dataclass
class Registration:
    user: User
    email_sent: bool


def get_user_by_email(session: Session, email: str) -> User | None:
    """Fetch a user by email (case-insensitive) or return None."""
    stmt = select(User).where(User.email == email.strip().lower())
    return session.exec(stmt).first()


def register_user(session: Session, payload: SignUpRequest, mailer) -> Registration:
    """Create an unverified user and send the verification email.

    A failed email does not undo the sign-up; the caller reports it.
    """
    if get_user_by_email(session, payload.email):
        raise Conflict("Email address is already registered")

    user = User(
        name=payload.name,
        surname=payload.surname,
        email=payload.email.lower(),
        phone=payload.phone,
        address=payload.address,
        hashed_password=get_password_hash(payload.password),
    )
    session.add(user)
    try:
        session.commit()
    except IntegrityError:
        # concurrent sign-up with the same email won the unique index
        session.rollback()
        raise Conflict("Email address is already registered")
    session.refresh(user)
    logger.info("Registered user %s", user.id)

    token = tokens.issue_verification_token(session, user.id)
    email_sent = send_verification_email(mailer, user.email, user.name, token)
    if not email_sent:
        logger.warning("Verification email for user %s could not be sent", user.id)
    return Registration(user=user, email_sent=email_sent)


def authenticate(session: Session, email: str, password: str) -> User:
    user = get_user_by_email(session, email)
    if not user or not verify_password(password, user.hashed_password):
        raise ValidationFailed("Incorrect email or password")
    if user.email_verified is None:
        raise Forbidden("Please verify your email address before signing in")
    return user


def verify_email(session: Session, token: str) -> User:
    return tokens.consume_verification_token(session, token)


def request_password_reset(session: Session, email: str, mailer) -> bool:
    """Issue a reset token and email it.

    Unknown addresses return quietly so the endpoint does not reveal which
    emails have accounts. Returns whether an email was sent.
    """
    user = get_user_by_email(session, email)
    if user is None:
        logger.info("Password reset requested for unknown email")
        return False
    if user.email_verified is None:
        raise ValidationFailed("Please verify your email address first")

    token = tokens.issue_reset_token(session, user.id)
    sent = send_password_reset_email(mailer, user.email, user.name, token)
    if not sent:
        logger.warning("Password reset email for user %s could not be sent", user.id)
    return sent


def reset_password(session: Session, token: str, new_password: str) -> User:
    return tokens.consume_reset_token(session, token, new_password)


def change_password(session: Session, user: User, current_password: str, new_password: str) -> User:
    """Change the password of a signed-in user."""
    if not verify_password(current_password, user.hashed_password):
        raise ValidationFailed("Current password is incorrect.")

    user.hashed_password = get_password_hash(new_password)
    session.add(user)
    session.commit()
    session.refresh(user)
    return user
