"""
auth/verifier.py -- Turns a raw token into an authenticated (User, Session).

Two-phase decode:
  The signing key is per session, so the signature cannot be checked until we
  know which session the token claims to belong to -- and that claim cannot be
  trusted until the signature is checked. The verifier reads the claims
  unverified, trusts session_id only far enough to fetch that session's
  secret, then verifies the signature with it. A forged session_id simply
  fails verification against the wrong secret.

Information hiding:
  Every failure -- malformed token, missing claim, unknown user, unknown
  session, insufficient role, bad signature, expiry -- leaves this module as
  the same InvalidTokenError. The specific reason is logged, never returned.

Cache:
  A hit on the exact token string skips the session lookup and the signature
  check. The owner is still resolved and the role threshold still applied on
  every call, so a verification cached at PUBLIC never satisfies ADMIN and a
  deleted user's token stops working immediately.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from auth.models import Role
from auth.tokens import TokenCodec
from core.errors import InvalidTokenError, TokenError

if TYPE_CHECKING:
    from auth.models import Session, User
    from auth.store import SessionStore, UserStore
    from cache.store import SessionCache

logger = logging.getLogger("identity.auth")


class TokenVerifier:
    def __init__(
        self,
        user_store: UserStore,
        session_store: SessionStore,
        cache: Optional[SessionCache] = None,
        codec: TokenCodec | None = None,
    ) -> None:
        self.user_store = user_store
        self.session_store = session_store
        self.cache = cache
        self.codec = codec or TokenCodec()

    def verify(self, token: str, required_role: Role = Role.PUBLIC) -> tuple[User, Session]:
        """Authenticate token and require the owner to hold at least required_role.

        Raises:
            InvalidTokenError: for every kind of rejection.
            PersistenceError: a store lookup failed (not a verdict on the token).
        """
        try:
            claims = self.codec.decode_unverified(token)
        except TokenError as exc:
            raise self._reject(f"undecodable ({exc.message})") from None

        user_id = claims.get("user_id")
        session_id = claims.get("session_id")
        if not isinstance(user_id, str) or not isinstance(session_id, str) or not user_id or not session_id:
            raise self._reject("user_id or session_id claim missing")

        session = self.cache.get(token) if self.cache is not None else None
        if session is not None:
            user = self.user_store.get_by_id(session.user_id)
            if user is None or user.role < required_role:
                raise self._reject("cached session owner missing or below required role")
            return user, session

        user = self.user_store.get_by_id(user_id)
        session = self.session_store.get_by_id(session_id)
        if user is None or session is None:
            raise self._reject("user or session does not exist")
        if session.user_id != user.id:
            raise self._reject("session does not belong to claimed user")
        if user.role < required_role:
            raise self._reject("role below threshold")

        try:
            self.codec.decode_verified(token, session.secret)
        except TokenError as exc:
            raise self._reject(f"verification failed ({exc.message})") from None

        if self.cache is not None:
            self.cache.put(token, session)
        return user, session

    def accept_if_present(self, token: str | None) -> Optional[tuple[User, Session]]:
        """Non-strict verify: any failure means "unauthenticated", never an error.

        Store failures are swallowed too -- optional authentication must not
        turn an otherwise public request into an error.
        """
        if not token:
            return None
        try:
            return self.verify(token)
        except Exception as exc:  # noqa: BLE001 -- every failure degrades to anonymous
            logger.info("Ignoring optional token: %s", exc)
            return None

    @staticmethod
    def _reject(reason: str) -> InvalidTokenError:
        logger.debug("Token rejected: %s", reason)
        return InvalidTokenError()
