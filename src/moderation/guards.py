"""Authorization gate for moderation operations.

Authentication happens upstream; the core only sees a resolved caller.
"""

from __future__ import annotations

from collections.abc import Collection
from dataclasses import dataclass

from moderation.errors import AccessDeniedError

ROLE_ADMIN = "admin"
ROLE_USER = "user"
ROLE_ANONYMOUS = "anonymous"


@dataclass(frozen=True, slots=True)
class CallerIdentity:
    user_id: int | None
    role: str = ROLE_USER

    @classmethod
    def anonymous(cls) -> "CallerIdentity":
        return cls(user_id=None, role=ROLE_ANONYMOUS)

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None and self.role != ROLE_ANONYMOUS


def is_admin(caller: CallerIdentity, admin_ids: Collection[int] = ()) -> bool:
    """Admin role, or a user id listed in ADMIN_IDS."""
    if not caller.is_authenticated:
        return False
    return caller.role == ROLE_ADMIN or caller.user_id in admin_ids


def require_authenticated(caller: CallerIdentity) -> int:
    """Return the caller's user id or deny anonymous access."""
    if not caller.is_authenticated:
        raise AccessDeniedError("Sign in to perform this action.")
    return int(caller.user_id)


def require_admin(caller: CallerIdentity, admin_ids: Collection[int] = ()) -> int:
    """Return the admin's user id or deny access."""
    if not is_admin(caller, admin_ids):
        raise AccessDeniedError("This action is available to administrators only.")
    return int(caller.user_id)
