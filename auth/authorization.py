"""
auth/authorization.py -- Role and ownership checks for authenticated actors.

is_authorized() is a pure function. Callers decide what a False means; the API
layer raises UnauthorizedError, which renders as 403 (or 401 when configured).
"""

from __future__ import annotations

from typing import Any, Optional

from auth.models import Owned, Role, User


def is_authorized(actor: Optional[User], target: Any) -> bool:
    """Return True if actor may access target.

    - no actor                  -> False
    - actor is ADMIN or above   -> True
    - target is a User          -> True only for the actor itself
    - target is Owned           -> True only if the actor owns it
    - anything else             -> False
    """
    if actor is None:
        return False
    if actor.role >= Role.ADMIN:
        return True
    if isinstance(target, User):
        return target.id == actor.id
    if isinstance(target, Owned):
        return target.owner_id == actor.id
    return False
