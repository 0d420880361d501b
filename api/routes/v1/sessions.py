"""
api/routes/v1/sessions.py -- Session (login/logout) REST endpoints.

Routes:
  POST   /api/v1/sessions                   -- login; or open a session for another user with a token
  GET    /api/v1/sessions/{session_id}      -- show a session ("current" allowed)
  DELETE /api/v1/sessions/{session_id}      -- revoke a session ("current" = logout)
  GET    /api/v1/users/{user_id}/sessions   -- list a user's sessions ("current" allowed)

Security:
  POST /sessions is rate-limited per IP (Settings.login_rate_limit).
  IdentityService.login() provides timing equalization -- use it, never inline.
  Cache-Control: no-store on every response that carries a token.
  Session secrets are never rendered -- SessionResponse has no such field.
  DELETE returns 204 only after the session is gone from the store AND the
  verification cache.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.limiter import limiter
from api.models import SessionCreate, SessionResponse
from auth.dependencies import AuthContext, accept_token, get_identity_service, require_token
from auth.service import IdentityService
from core.config import get_settings
from core.errors import BadCredentialsError

# Auth policy:
# - POST   /sessions:                 public (credentials) or token (acting for user_id)
# - GET    /sessions/{id}:            requires token + ownership (or admin)
# - DELETE /sessions/{id}:            requires token + ownership (or admin)
# - GET    /users/{user_id}/sessions: requires token + ownership (or admin)
router = APIRouter()


def _login_rate_limit() -> str:
    return get_settings().login_rate_limit


@limiter.limit(_login_rate_limit)
@router.post("/sessions", response_model=SessionResponse, status_code=201)
def create_session(
    request: Request,
    response: Response,
    body: SessionCreate,
    auth: AuthContext | None = Depends(accept_token),
) -> SessionResponse:
    """Open a new session and return its token.

    Username/password wins when both are supplied. Without valid credentials,
    an authenticated caller may open a session for body.user_id (or for
    itself when user_id is omitted or "current"), subject to authorization.
    Wrong credentials and a missing identity both yield the same 401.
    """
    service: IdentityService = get_identity_service(request)
    response.headers["Cache-Control"] = "no-store"

    if body.username and body.password:
        try:
            session = service.login(body.username, body.password)
            return SessionResponse.from_session(session)
        except BadCredentialsError:
            if auth is None:
                raise

    if auth is None:
        raise BadCredentialsError()

    if body.user_id is None or body.user_id == "current":
        target = auth.user
    else:
        target = service.get_user(body.user_id)
    session = service.issue_for(auth.user, target)
    return SessionResponse.from_session(session)


@router.get("/sessions/{session_id}", response_model=SessionResponse)
def show_session(
    request: Request,
    response: Response,
    session_id: str,
    auth: AuthContext = Depends(require_token),
) -> SessionResponse:
    """Show a session. Owner or admin only."""
    service: IdentityService = get_identity_service(request)
    session = auth.session if session_id == "current" else service.get_session(session_id)
    service.require_authorized(auth.user, session)
    response.headers["Cache-Control"] = "no-store"
    return SessionResponse.from_session(session)


@router.delete("/sessions/{session_id}", status_code=204)
def delete_session(
    request: Request,
    session_id: str,
    auth: AuthContext = Depends(require_token),
) -> Response:
    """Revoke a session. Its token stops verifying immediately."""
    service: IdentityService = get_identity_service(request)
    session = auth.session if session_id == "current" else service.get_session(session_id)
    service.require_authorized(auth.user, session)
    service.revoke(session)
    return Response(status_code=204)


@router.get("/users/{user_id}/sessions", response_model=list[SessionResponse])
def list_sessions(
    request: Request,
    response: Response,
    user_id: str,
    auth: AuthContext = Depends(require_token),
) -> list[SessionResponse]:
    """List every session of a user. Owner or admin only."""
    service: IdentityService = get_identity_service(request)
    if user_id == "current":
        user = auth.user
    else:
        user = service.get_user(user_id)
        service.require_authorized(auth.user, user)
    response.headers["Cache-Control"] = "no-store"
    return [SessionResponse.from_session(s) for s in service.list_sessions(user)]
