"""Main FastAPI application for the Budget Tracker API."""
import logging
import time
import datetime as dt
from typing import Optional

from fastapi import FastAPI, Depends, Query, Request, Response, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy.exc import OperationalError
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine, Session

import accounts
import crud
import stats
import config
from auth import create_access_token, decode_access_token
from errors import AppError, Expired, NotFound, Unauthenticated, ValidationFailed
from guard import resolve_owner
from mailer import SmtpMailer
from models import User, TransactionType
from schemas import (
    CategoryCreate,
    CategoryRead,
    CategoryUpdate,
    CategoryExpenseRead,
    ForgotPasswordRequest,
    LoginRequest,
    MessageResponse,
    MonthlyTrendRead,
    PasswordChange,
    ResetPasswordRequest,
    SignUpRequest,
    SignUpResponse,
    SummaryRead,
    Token,
    TransactionCreate,
    TransactionRead,
    TransactionUpdate,
    UserRead,
)
from utils import DateRange, parse_date_range

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

APP_VERSION = "0.1.0"

app = FastAPI(title="Budget Tracker", version=APP_VERSION)
instrumentator = Instrumentator().instrument(app)
instrumentator.expose(app)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


def make_engine(url: str):
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # one shared connection, otherwise every checkout sees an empty database
            kwargs["poolclass"] = StaticPool
    else:
        kwargs = {"pool_pre_ping": True}
    return create_engine(url, echo=False, **kwargs)


engine = make_engine(config.DATABASE_URL)


def get_session():
    """Provide a database session per request."""
    with Session(engine) as session:
        yield session


def get_mailer():
    return SmtpMailer()


# ERROR HANDLERS

@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    headers = None
    if exc.status_code == status.HTTP_401_UNAUTHORIZED:
        headers = {"WWW-Authenticate": "Bearer"}
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=headers,
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": "Invalid request", "errors": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


# DEPENDENCIES

async def get_current_user(
    request: Request,
    token: Optional[str] = Depends(oauth2_scheme),
    session: Session = Depends(get_session),
) -> User:
    """Resolve the current user from a bearer token or the session cookie."""
    token = token or request.cookies.get(config.SESSION_COOKIE_NAME)
    if not token:
        raise Unauthenticated("Not authenticated")

    user_id = decode_access_token(token)
    if user_id is None:
        raise Unauthenticated()

    user = session.get(User, user_id)
    if user is None:
        raise Unauthenticated()
    return user


def get_date_range(
    start_date: Optional[str] = Query(default=None, alias="startDate"),
    end_date: Optional[str] = Query(default=None, alias="endDate"),
) -> DateRange:
    return parse_date_range(start_date, end_date)


@app.on_event("startup")
def on_startup() -> None:
    """
    Run once when the app starts:
    - Wait for the database to be ready
    - Create tables
    - Seed default categories
    """
    retries = config.DB_CONNECT_RETRIES
    delay = config.DB_CONNECT_DELAY
    last_exc: Exception | None = None

    for attempt in range(1, retries + 1):
        try:
            SQLModel.metadata.create_all(engine)
            with Session(engine) as session:
                crud.seed_default_categories(session)
            logger.info("Database ready, tables created, categories seeded.")
            return
        except OperationalError as exc:
            last_exc = exc
            logger.warning(
                "DB not ready yet (attempt %d/%d); waiting %ss...", attempt, retries, delay
            )
            time.sleep(delay)

    logger.error("Giving up connecting to the database.")
    if last_exc:
        raise last_exc
    raise RuntimeError("Database not reachable on startup.")


#API endpoints for quick health checks
@app.get("/")
def root():
    return {"message": "Budget Tracker API is running. See /health for status."}


@app.get("/health")
def health():
    return {
        "status": "ok",
        "timestamp": dt.datetime.utcnow().isoformat(),
        "app": "budget-tracker",
        "version": APP_VERSION,
    }


# AUTH ENDPOINTS

@app.post("/api/auth/signup", response_model=SignUpResponse, status_code=201)
def signup(
    payload: SignUpRequest,
    session: Session = Depends(get_session),
    mailer=Depends(get_mailer),
):
    """Register a new, unverified account and send the verification link."""
    registration = accounts.register_user(session, payload, mailer)
    if registration.email_sent:
        message = "Account created. Check your inbox for the verification link."
    else:
        message = (
            "Account created, but the verification email could not be sent. "
            "Please try again later or contact support."
        )
    return {
        "message": message,
        "user_id": registration.user.id,
        "email_sent": registration.email_sent,
    }


@app.get("/api/auth/verify", response_model=MessageResponse)
def verify(
    token: Optional[str] = Query(default=None),
    session: Session = Depends(get_session),
):
    """Confirm an email address with the token from the verification link."""
    if not token:
        raise ValidationFailed("Verification token is required")
    try:
        accounts.verify_email(session, token)
    except NotFound:
        raise ValidationFailed("Invalid verification link. It may have been used already.")
    return {"message": "Email verified. You can now sign in."}


@app.post("/api/auth/login", response_model=Token)
def login(
    payload: LoginRequest,
    response: Response,
    session: Session = Depends(get_session),
):
    """Authenticate, set the HTTP-only session cookie and return the token."""
    user = accounts.authenticate(session, payload.email, payload.password)
    access_token = create_access_token({"sub": user.id})
    response.set_cookie(
        key=config.SESSION_COOKIE_NAME,
        value=access_token,
        max_age=config.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        httponly=True,
        secure=config.SESSION_COOKIE_SECURE,
        samesite="lax",
    )
    return {"access_token": access_token, "token_type": "bearer"}


@app.post("/api/auth/logout", response_model=MessageResponse)
def logout(response: Response):
    response.delete_cookie(config.SESSION_COOKIE_NAME)
    return {"message": "signed-out"}


@app.get("/api/auth/me", response_model=UserRead)
def read_current_user(current_user: User = Depends(get_current_user)):
    """Return the current authenticated user."""
    return current_user


@app.post("/api/auth/change-password", response_model=MessageResponse)
def change_password(
    payload: PasswordChange,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    """Change the current user's password."""
    accounts.change_password(session, current_user, payload.current_password, payload.new_password)
    return {"message": "password-updated"}


@app.post("/api/auth/forgot-password", response_model=MessageResponse)
def forgot_password(
    payload: ForgotPasswordRequest,
    session: Session = Depends(get_session),
    mailer=Depends(get_mailer),
):
    """Email a password reset link if the address belongs to a verified account."""
    accounts.request_password_reset(session, payload.email, mailer)
    return {"message": "If the address is registered, a reset link has been sent."}


@app.post("/api/auth/reset-password", response_model=MessageResponse)
def reset_password(
    payload: ResetPasswordRequest,
    session: Session = Depends(get_session),
):
    """Set a new password using the token from the reset link."""
    try:
        accounts.reset_password(session, payload.token, payload.password)
    except NotFound:
        raise ValidationFailed("Invalid password reset link. Please request a new one.")
    except Expired:
        raise ValidationFailed("This password reset link has expired. Please request a new one.")
    return {"message": "Password updated. You can now sign in with the new password."}


# CATEGORY ENDPOINTS

@app.get("/api/categories", response_model=list[CategoryRead])
def list_categories(
    type_: Optional[TransactionType] = Query(default=None, alias="type"),
    user_id: Optional[str] = Query(default=None, alias="userId"),
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    """Default categories plus the user's own, ordered by name."""
    owner_id = resolve_owner(user_id, current_user.id)
    return crud.list_categories(session, owner_id, type_)


@app.post("/api/categories", response_model=CategoryRead, status_code=201)
def create_category(
    payload: CategoryCreate,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    owner_id = resolve_owner(payload.user_id, current_user.id)
    return crud.create_category(session, owner_id, payload)


@app.patch("/api/categories/{category_id}", response_model=CategoryRead)
def update_category(
    category_id: int,
    payload: CategoryUpdate,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    return crud.update_category(session, current_user.id, category_id, payload)


@app.delete("/api/categories/{category_id}")
def delete_category(
    category_id: int,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    crud.delete_category(session, current_user.id, category_id)
    return {"success": True}


# TRANSACTION ENDPOINTS

@app.get("/api/transactions", response_model=list[TransactionRead])
def list_transactions(
    type_: Optional[TransactionType] = Query(default=None, alias="type"),
    category_id: Optional[int] = Query(default=None, alias="categoryId"),
    q: Optional[str] = Query(default=None, max_length=100),
    limit: Optional[int] = Query(default=None, ge=1, le=500),
    offset: Optional[int] = Query(default=None, ge=0),
    user_id: Optional[str] = Query(default=None, alias="userId"),
    date_range: DateRange = Depends(get_date_range),
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    """List the user's transactions, newest first."""
    owner_id = resolve_owner(user_id, current_user.id)
    return crud.list_transactions(
        session,
        owner_id,
        date_range=date_range,
        type_=type_,
        category_id=category_id,
        query=q,
        limit=limit,
        offset=offset,
    )


@app.post("/api/transactions", response_model=TransactionRead, status_code=201)
def create_transaction(
    payload: TransactionCreate,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    owner_id = resolve_owner(payload.user_id, current_user.id)
    return crud.create_transaction(session, owner_id, payload)


@app.get("/api/transactions/{transaction_id}", response_model=TransactionRead)
def read_transaction(
    transaction_id: int,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    return crud.get_transaction(session, current_user.id, transaction_id)


# Partially update a transaction. Only the fields provided in the request are changed.
@app.api_route(
    "/api/transactions/{transaction_id}",
    methods=["PUT", "PATCH"],
    response_model=TransactionRead,
)
def update_transaction(
    transaction_id: int,
    payload: TransactionUpdate,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    return crud.update_transaction(session, current_user.id, transaction_id, payload)


@app.delete("/api/transactions/{transaction_id}")
def delete_transaction(
    transaction_id: int,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    crud.delete_transaction(session, current_user.id, transaction_id)
    return {"success": True}


# SUMMARY / STATS

@app.get("/api/summary", response_model=SummaryRead)
def get_summary(
    date_range: DateRange = Depends(get_date_range),
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    """Compute income/expense totals and balance."""
    return stats.summary(session, current_user.id, date_range)


@app.get("/api/expenses/by-category", response_model=list[CategoryExpenseRead])
def get_expenses_by_category(
    date_range: DateRange = Depends(get_date_range),
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    return stats.expenses_by_category(session, current_user.id, date_range)


@app.get("/api/trends/monthly", response_model=list[MonthlyTrendRead])
def get_monthly_trends(
    months: int = Query(default=stats.DEFAULT_MONTHS_BACK, ge=1, le=120),
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    return stats.monthly_trends(session, current_user.id, months_back=months)
