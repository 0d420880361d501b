"""
API request and response models for the identity REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Security: SessionResponse has no secret field. A session secret can never be
serialized by accident because the response model does not know it exists.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, field_validator, model_validator

from auth.models import Role, Session, User
from auth.passwords import MAX_PASSWORD_BYTES

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RoleEnum(str, Enum):
    public = "public"
    user = "user"
    admin = "admin"

    def to_role(self) -> Role:
        return Role[self.name.upper()]

    @classmethod
    def from_role(cls, role: Role) -> "RoleEnum":
        return cls(role.name.lower())


# ---------------------------------------------------------------------------
# Field types
# ---------------------------------------------------------------------------

# Usernames are trimmed; passwords are taken byte-for-byte.
Username = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=255)]


def _check_password_length(value: Optional[str]) -> Optional[str]:
    if value is not None and len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValueError(f"password must be at most {MAX_PASSWORD_BYTES} bytes")
    return value


# ---------------------------------------------------------------------------
# Shared envelopes
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


class SessionCreate(BaseModel):
    """Request body for POST /api/v1/sessions.

    Either username + password (login), or an authenticated token plus the
    user_id to open a session for. The token itself may also travel in the
    query string or an Authorization header.
    """

    username: Optional[Username] = None
    password: Optional[str] = Field(default=None, min_length=1)
    user_id: Optional[Annotated[str, StringConstraints(strip_whitespace=True, max_length=36)]] = None
    token: Optional[str] = None

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: Optional[str]) -> Optional[str]:
        return _check_password_length(value)


class SessionResponse(BaseModel):
    """A session as returned to its owner. Never includes the secret."""

    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    token: str
    created_at: datetime
    expires_at: Optional[datetime]

    @classmethod
    def from_session(cls, session: Session) -> "SessionResponse":
        return cls(
            id=session.id,
            user_id=session.user_id,
            token=session.token,
            created_at=session.created_at,
            expires_at=session.expires_at,
        )


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserCreate(BaseModel):
    """Request body for POST /api/v1/users."""

    username: Username
    password: str = Field(min_length=1)
    password_confirmation: Optional[str] = None
    role: RoleEnum = RoleEnum.user
    token: Optional[str] = None

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: Optional[str]) -> Optional[str]:
        return _check_password_length(value)

    @model_validator(mode="after")
    def confirmation_matches(self) -> "UserCreate":
        if self.password_confirmation is not None and self.password_confirmation != self.password:
            raise ValueError("password_confirmation does not match password")
        return self


class UserPatch(BaseModel):
    """Request body for PATCH /api/v1/users/{user_id}. All fields optional."""

    username: Optional[Username] = None
    password: Optional[str] = Field(default=None, min_length=1)
    password_confirmation: Optional[str] = None
    role: Optional[RoleEnum] = None
    token: Optional[str] = None

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: Optional[str]) -> Optional[str]:
        return _check_password_length(value)

    @model_validator(mode="after")
    def confirmation_matches(self) -> "UserPatch":
        if self.password_confirmation is not None and self.password_confirmation != self.password:
            raise ValueError("password_confirmation does not match password")
        return self


class UserResponse(BaseModel):
    """A user record. Never includes the password hash."""

    model_config = ConfigDict(frozen=True)

    id: str
    username: str
    role: RoleEnum
    created_at: datetime

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            username=user.username,
            role=RoleEnum.from_role(user.role),
            created_at=user.created_at,
        )
