"""
Caller identity.

Sessions are owned by an upstream provider which forwards the signed-in
user's email in the X-User-Email header. This module turns that header into
a typed Caller and performs role checks.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from fastapi import Depends, Header
from sqlalchemy import select
from sqlalchemy.orm import Session

from .database import get_db
from .errors import Forbidden, Unauthorized
from .tables import User

logger = logging.getLogger(__name__)


class Role(str, Enum):
    CUSTOMER = "customer"
    ADMIN = "admin"


def parse_role(value: Optional[str]) -> Role:
    """Map a stored role string onto Role; unknown values get no privilege."""
    try:
        return Role(value)
    except ValueError:
        logger.warning("Unknown role %r, treating as customer", value)
        return Role.CUSTOMER


@dataclass(frozen=True)
class Caller:
    """The authenticated user making a request."""
    user_id: str
    email: str
    role: Role

    @property
    def is_admin(self) -> bool:
        if self.role is Role.ADMIN:
            return True
        elif self.role is Role.CUSTOMER:
            return False
        raise AssertionError(f"unhandled role: {self.role}")

    def can_access(self, owner_id: str) -> bool:
        """Admins see everything; customers see their own records."""
        return self.is_admin or owner_id == self.user_id


def resolve_caller(db: Session, email: Optional[str]) -> Caller:
    """Look up the user behind a session email."""
    if not email:
        raise Unauthorized()

    user = db.scalar(select(User).where(User.email == email.strip().lower()))
    if user is None:
        raise Unauthorized("User not found")

    return Caller(user_id=user.id, email=user.email, role=parse_role(user.role))


def get_caller(
    x_user_email: Optional[str] = Header(None),
    db: Session = Depends(get_db),
) -> Caller:
    """FastAPI dependency for any signed-in user."""
    return resolve_caller(db, x_user_email)


def require_admin(caller: Caller = Depends(get_caller)) -> Caller:
    """FastAPI dependency for admin-only endpoints."""
    if not caller.is_admin:
        raise Forbidden("Admin access required")
    return caller
