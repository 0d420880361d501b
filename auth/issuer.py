"""
auth/issuer.py -- Creates sessions and the token bound to each one.

Every call generates a brand-new secret. Secrets are never reused across
sessions, so a token can only ever verify against the session it was minted
for.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from auth.models import Session
from auth.tokens import TokenCodec, generate_session_secret

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import SessionStore

logger = logging.getLogger("identity.auth")


class TokenIssuer:
    def __init__(
        self,
        session_store: SessionStore,
        codec: TokenCodec | None = None,
        expire_seconds: int = 3600,
        secret_bytes: int = 32,
    ) -> None:
        self.session_store = session_store
        self.codec = codec or TokenCodec()
        self.expire_seconds = expire_seconds
        self.secret_bytes = secret_bytes

    def issue(self, user: User) -> Session:
        """Create, sign and persist a new session for user.

        No side effects on user. PersistenceError from the store propagates
        unchanged -- the session is not retried.
        """
        now = datetime.now(timezone.utc)
        expires_at = now + timedelta(seconds=self.expire_seconds)
        session = Session(
            id=str(uuid.uuid4()),
            user_id=user.id,
            secret=generate_session_secret(self.secret_bytes),
            created_at=now,
            expires_at=expires_at,
        )
        claims = {
            "user_id": user.id,
            "session_id": session.id,
            "iat": int(now.timestamp()),
            "exp": int(expires_at.timestamp()),
        }
        session.token = self.codec.encode(claims, session.secret)
        self.session_store.save(session)
        logger.info("Issued session %s for user %s", session.id, user.id)
        return session
