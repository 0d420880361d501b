"""
auth/service.py -- IdentityService, the single entry point into the token core.

Wires the codec, issuer, verifier, cache and stores together and exposes the
operations the HTTP layer and the CLI consume:

  verify(token, required_role)   -> (User, Session)   raises InvalidTokenError
  accept_if_present(token)       -> (User, Session) | None
  issue(user)                    -> Session           raises PersistenceError
  revoke(session)                -> None              raises PersistenceError
  authorize(actor, target)       -> bool

plus the user/session lookups and lifecycle helpers the routes need.

Revocation ordering: the session is deleted from the store and then evicted
from the cache, and only then does revoke() return. Nothing observes a
"destroyed" session whose token the cache would still accept.
"""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING, Any, Optional

from auth.authorization import is_authorized
from auth.issuer import TokenIssuer
from auth.models import Role, Session, User
from auth.passwords import authenticate_user, hash_password
from auth.tokens import TokenCodec
from auth.verifier import TokenVerifier
from core.errors import BadCredentialsError, ObjectNotFoundError, UnauthorizedError

if TYPE_CHECKING:
    from auth.store import SessionStore, UserStore
    from cache.store import SessionCache
    from core.config import Settings

logger = logging.getLogger("identity.auth")


class IdentityService:
    """Facade over the token lifecycle and authorization core.

    Usage:
        service = IdentityService(user_store, session_store, SessionCache())
        session = service.login("alice", "secret")
        user, session = service.verify(session.token, Role.USER)
        service.revoke(session)
    """

    def __init__(
        self,
        user_store: UserStore,
        session_store: SessionStore,
        cache: Optional[SessionCache] = None,
        *,
        expire_seconds: int = 3600,
        secret_bytes: int = 32,
    ) -> None:
        self.user_store = user_store
        self.session_store = session_store
        self.cache = cache
        self.codec = TokenCodec()
        self.issuer = TokenIssuer(session_store, self.codec, expire_seconds=expire_seconds, secret_bytes=secret_bytes)
        self.verifier = TokenVerifier(user_store, session_store, cache, self.codec)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        user_store: UserStore,
        session_store: SessionStore,
        cache: Optional[SessionCache] = None,
    ) -> "IdentityService":
        return cls(
            user_store,
            session_store,
            cache,
            expire_seconds=settings.session_expire_seconds,
            secret_bytes=settings.session_secret_bytes,
        )

    # ------------------------------------------------------------------
    # Token lifecycle
    # ------------------------------------------------------------------

    def verify(self, token: str, required_role: Role = Role.PUBLIC) -> tuple[User, Session]:
        return self.verifier.verify(token, required_role)

    def accept_if_present(self, token: str | None) -> Optional[tuple[User, Session]]:
        return self.verifier.accept_if_present(token)

    def issue(self, user: User) -> Session:
        return self.issuer.issue(user)

    def login(self, username: str, password: str) -> Session:
        """Open a session for a username/password pair.

        Raises BadCredentialsError with the same message whether the username
        or the password was wrong.
        """
        user = authenticate_user(self.user_store, username, password)
        if user is None:
            logger.info("Failed login for username %r", username)
            raise BadCredentialsError()
        return self.issue(user)

    def issue_for(self, actor: User, target: User) -> Session:
        """Open a session for target on behalf of an authenticated actor."""
        self.require_authorized(actor, target)
        logger.info("User %s opening session for user %s", actor.id, target.id)
        return self.issue(target)

    def revoke(self, session: Session) -> None:
        """Destroy session. Its token is rejected from the next verify() on."""
        self.session_store.delete(session)
        if self.cache is not None:
            self.cache.invalidate_by_session(session.id)
        logger.info("Revoked session %s", session.id)

    def revoke_all(self, user: User) -> int:
        """Destroy every session owned by user. Returns the number revoked."""
        sessions = self.session_store.list_for_user(user.id)
        for session in sessions:
            self.revoke(session)
        return len(sessions)

    def purge_expired_sessions(self) -> int:
        """Delete sessions past their expiry from the store (and the cache)."""
        expired = self.session_store.list_expired()
        for session in expired:
            self.revoke(session)
        if expired:
            logger.info("Purged %d expired session(s)", len(expired))
        return len(expired)

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------

    def authorize(self, actor: Optional[User], target: Any) -> bool:
        return is_authorized(actor, target)

    def require_authorized(self, actor: Optional[User], target: Any) -> None:
        if not is_authorized(actor, target):
            raise UnauthorizedError()

    # ------------------------------------------------------------------
    # Lookups (outside the token path -- not-found stays distinct)
    # ------------------------------------------------------------------

    def get_user(self, user_id: str) -> User:
        user = self.user_store.get_by_id(user_id)
        if user is None:
            raise ObjectNotFoundError(f"User {user_id} cannot be found.")
        return user

    def get_session(self, session_id: str) -> Session:
        session = self.session_store.get_by_id(session_id)
        if session is None:
            raise ObjectNotFoundError(f"Session {session_id} cannot be found.")
        return session

    def list_sessions(self, user: User) -> list[Session]:
        return self.session_store.list_for_user(user.id)

    def list_users(self) -> list[User]:
        return self.user_store.list_users()

    # ------------------------------------------------------------------
    # User lifecycle
    # ------------------------------------------------------------------

    def create_user(self, username: str, password: str | None, role: Role = Role.USER) -> User:
        """Create a user. Raises ConflictError if the username is taken."""
        user = User(
            id=str(uuid.uuid4()),
            username=username,
            role=role,
            hashed_password=hash_password(password) if password else None,
        )
        self.user_store.create_user(user)
        logger.info("Created user %s (%s)", user.id, role.name)
        return user

    def update_user(self, user: User, **fields) -> User:
        if "password" in fields:
            password = fields.pop("password")
            fields["hashed_password"] = hash_password(password) if password else None
        if fields:
            self.user_store.update_user(user.id, **fields)
        return self.get_user(user.id)

    def delete_user(self, user: User) -> None:
        """Delete user and every session it owns (shared lifetime)."""
        self.revoke_all(user)
        self.user_store.delete_user(user.id)
        logger.info("Deleted user %s", user.id)
