"""
auth/models.py -- Domain dataclasses for identity entities.

Pattern: Data class (pure data container, near-zero logic). Stores and
services do the work; these types only own the domain shape.

Ownership contract: anything that belongs to a User exposes an ``owner_id``
attribute holding that user's id. The authorization evaluator checks ownership
through this attribute alone, so new owned resource types only need to carry
it. A User is not "owned" -- it is compared to the actor by id.

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import IntEnum
from typing import Protocol, runtime_checkable


class Role(IntEnum):
    """Ordered role ladder. Comparisons use the integer value."""

    PUBLIC = 0
    USER = 100
    ADMIN = 1000


@runtime_checkable
class Owned(Protocol):
    """A resource that belongs to exactly one User."""

    @property
    def owner_id(self) -> str: ...


@dataclass
class User:
    """An identity that can log in and own sessions.

    hashed_password is a bcrypt hash; verification is done by auth/passwords.py.
    It is None for accounts that can only obtain sessions through an admin
    acting on their behalf.
    """

    id: str
    username: str
    role: Role = Role.USER
    hashed_password: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class Session:
    """A login session and the single token bound to it.

    secret signs and verifies the session's token. It is generated fresh for
    every session, persisted server-side, and never serialized into any
    response model -- see api/models.py SessionResponse.
    """

    id: str
    user_id: str
    secret: str = field(repr=False)
    token: str = ""
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    expires_at: datetime | None = None

    @property
    def owner_id(self) -> str:
        return self.user_id

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or datetime.now(timezone.utc)) >= self.expires_at
