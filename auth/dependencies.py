"""
auth/dependencies.py -- FastAPI Depends() helpers for token authentication.

The token is accepted from, in priority order:
  1. "token" query string parameter
  2. Authorization: Bearer <token> header
  3. "token" field of a JSON request body

All three converge on IdentityService.verify(), which runs in the threadpool
because it may hit the database. The core treats the token as
an opaque string; only this module knows where it travels.

accept_token() is the soft variant (returns None on any failure).
require_token() raises InvalidTokenError -> 401.
require_admin_token() additionally requires Role.ADMIN; a non-admin token is
rejected with the same InvalidTokenError as a bad one.

Layer rule: auth/dependencies.py may import from fastapi (Request) because it
is part of the FastAPI dependency injection system. No imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request
from starlette.concurrency import run_in_threadpool

from auth.models import Role, Session, User
from auth.service import IdentityService
from core.errors import InvalidTokenError


@dataclass(frozen=True)
class AuthContext:
    """The authenticated identity attached to a request."""

    user: User
    session: Session


def get_identity_service(request: Request) -> IdentityService:
    return request.app.state.identity


async def extract_token(request: Request) -> str | None:
    """Return the raw token carried by the request, or None."""
    token = request.query_params.get("token")
    if token:
        return token

    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None

    if request.headers.get("content-type", "").startswith("application/json"):
        try:
            body = await request.json()
        except ValueError:
            return None
        if isinstance(body, dict) and isinstance(body.get("token"), str):
            return body["token"] or None
    return None


async def _authenticate(request: Request, required_role: Role) -> AuthContext:
    token = await extract_token(request)
    if token is None:
        raise InvalidTokenError("Token required.")
    user, session = await run_in_threadpool(get_identity_service(request).verify, token, required_role)
    ctx = AuthContext(user=user, session=session)
    request.state.auth = ctx
    return ctx


async def require_token(request: Request) -> AuthContext:
    """Require a valid token. Use as a FastAPI dependency:

    @router.get("/protected")
    def route(auth: AuthContext = Depends(require_token)): ...
    """
    return await _authenticate(request, Role.PUBLIC)


async def require_admin_token(request: Request) -> AuthContext:
    """Require a valid token issued to an ADMIN user."""
    return await _authenticate(request, Role.ADMIN)


async def accept_token(request: Request) -> AuthContext | None:
    """Authenticate if a token is present; return None on any failure."""
    token = await extract_token(request)
    result = await run_in_threadpool(get_identity_service(request).accept_if_present, token)
    if result is None:
        return None
    ctx = AuthContext(user=result[0], session=result[1])
    request.state.auth = ctx
    return ctx
