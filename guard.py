"""Ownership checks for user-owned rows (transactions and categories)."""
import logging
from typing import Any, Optional, Type, TypeVar

from sqlmodel import Session

from errors import Forbidden, NotFound

logger = logging.getLogger(__name__)

T = TypeVar("T")


def ensure_owner(resource: Optional[T], principal_id: str, label: str = "Resource") -> T:
    """Return ``resource`` if the principal owns it.

    Existence is checked before ownership: a missing row is NotFound,
    somebody else's row is Forbidden.
    """
    if resource is None:
        raise NotFound(f"{label} not found")

    owner_id = getattr(resource, "user_id", None)
    if owner_id != principal_id:
        logger.warning(
            "User %s denied access to %s %s",
            principal_id, label.lower(), getattr(resource, "id", None),
        )
        raise Forbidden(f"You do not have access to this {label.lower()}")
    return resource


def get_owned(
    session: Session,
    model: Type[T],
    resource_id: Any,
    principal_id: str,
    label: str = "Resource",
) -> T:
    """Load a row by primary key and check that the principal owns it."""
    return ensure_owner(session.get(model, resource_id), principal_id, label)


def resolve_owner(claimed_user_id: Optional[str], principal_id: str) -> str:
    """Owner id for a new or listed resource.

    The owner always comes from the session. A client-supplied user id is
    only compared against it and rejected when it differs.
    """
    if claimed_user_id is not None and claimed_user_id != principal_id:
        logger.warning("User %s tried to act as user %s", principal_id, claimed_user_id)
        raise Forbidden("You can only act on your own data")
    return principal_id
