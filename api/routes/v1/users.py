"""
api/routes/v1/users.py -- User account REST endpoints.

Routes:
  POST   /api/v1/users              -- create a user (token optional)
  GET    /api/v1/users              -- list all users (admin only)
  GET    /api/v1/users/{user_id}    -- show a user ("current" allowed)
  PATCH  /api/v1/users/{user_id}    -- update username/password/role
  DELETE /api/v1/users/{user_id}    -- delete a user and all of its sessions

Security:
  Only an admin may create a user with a role above USER. A non-admin (or
  anonymous) request for a higher role is clamped to USER, not rejected.
  Only an admin may change a role; the authorization evaluator gates the rest
  (owner or admin). Lookups happen before the authorization check, so an
  unknown id is a 404 and a foreign id is a 403.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.models import UserCreate, UserPatch, UserResponse
from auth.dependencies import AuthContext, accept_token, get_identity_service, require_admin_token, require_token
from auth.models import Role, User
from auth.service import IdentityService
from core.errors import UnauthorizedError

# Auth policy:
# - POST   /users:        public; role above USER requires an admin token
# - GET    /users:        requires admin token
# - GET    /users/{id}:   requires token + self (or admin)
# - PATCH  /users/{id}:   requires token + self (or admin); role change admin only
# - DELETE /users/{id}:   requires token + self (or admin)
router = APIRouter()


@router.post("/users", response_model=UserResponse, status_code=201)
def create_user(
    request: Request,
    body: UserCreate,
    auth: AuthContext | None = Depends(accept_token),
) -> UserResponse:
    """Create a user account."""
    service: IdentityService = get_identity_service(request)
    role = body.role.to_role()
    if role > Role.USER and (auth is None or auth.user.role < Role.ADMIN):
        role = Role.USER
    user = service.create_user(body.username, body.password, role)
    return UserResponse.from_user(user)


@router.get("/users", response_model=list[UserResponse])
def list_users(
    request: Request,
    auth: AuthContext = Depends(require_admin_token),
) -> list[UserResponse]:
    """List all user accounts. Admin only."""
    service: IdentityService = get_identity_service(request)
    return [UserResponse.from_user(u) for u in service.list_users()]


@router.get("/users/{user_id}", response_model=UserResponse)
def show_user(
    request: Request,
    user_id: str,
    auth: AuthContext = Depends(require_token),
) -> UserResponse:
    """Show a user. Self or admin only."""
    user = _load_user(request, user_id, auth)
    return UserResponse.from_user(user)


@router.patch("/users/{user_id}", response_model=UserResponse)
def update_user(
    request: Request,
    user_id: str,
    body: UserPatch,
    auth: AuthContext = Depends(require_token),
) -> UserResponse:
    """Update a user. Self or admin; changing a role requires admin."""
    service: IdentityService = get_identity_service(request)
    user = _load_user(request, user_id, auth)

    updates: dict = {}
    if body.username is not None:
        updates["username"] = body.username
    if body.password is not None:
        updates["password"] = body.password
    if body.role is not None and body.role.to_role() != user.role:
        if auth.user.role < Role.ADMIN:
            raise UnauthorizedError("Only an admin can change a role.")
        updates["role"] = body.role.to_role()

    updated = service.update_user(user, **updates)
    return UserResponse.from_user(updated)


@router.delete("/users/{user_id}", status_code=204)
def delete_user(
    request: Request,
    user_id: str,
    auth: AuthContext = Depends(require_token),
) -> Response:
    """Delete a user. Every session it owns is revoked first."""
    service: IdentityService = get_identity_service(request)
    user = _load_user(request, user_id, auth)
    service.delete_user(user)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_user(request: Request, user_id: str, auth: AuthContext) -> User:
    """Resolve user_id ("current" = the caller) and check the caller may access it."""
    if user_id == "current":
        return auth.user
    service: IdentityService = get_identity_service(request)
    user = service.get_user(user_id)
    service.require_authorized(auth.user, user)
    return user
