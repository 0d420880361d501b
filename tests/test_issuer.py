"""Unit tests for auth/issuer.py TokenIssuer.

Covers:
- Issued sessions are persisted with a fresh secret and the expected claims
- Secrets and ids are never reused across sessions
- The issued token verifies only against its own session's secret
- A store failure surfaces as PersistenceError without retry
"""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from auth.issuer import TokenIssuer
from auth.tokens import TokenCodec
from core.errors import PersistenceError, SignatureInvalidError


class TestIssue:
    def test_session_persisted(self, make_user, session_store) -> None:
        user = make_user()
        session = TokenIssuer(session_store).issue(user)
        stored = session_store.get_by_id(session.id)
        assert stored is not None
        assert stored.user_id == user.id
        assert stored.token == session.token
        assert stored.secret == session.secret

    def test_claims_bind_user_and_session(self, make_user, session_store) -> None:
        user = make_user()
        session = TokenIssuer(session_store).issue(user)
        claims = TokenCodec().decode_verified(session.token, session.secret)
        assert claims["user_id"] == user.id
        assert claims["session_id"] == session.id
        assert claims["exp"] == int(session.expires_at.timestamp())
        assert claims["exp"] - claims["iat"] == 3600

    def test_expiry_follows_configuration(self, make_user, session_store) -> None:
        session = TokenIssuer(session_store, expire_seconds=90).issue(make_user())
        assert session.expires_at - session.created_at == timedelta(seconds=90)

    def test_secret_length_follows_configuration(self, make_user, session_store) -> None:
        session = TokenIssuer(session_store, secret_bytes=48).issue(make_user())
        assert len(session.secret) == 96

    def test_fresh_secret_and_id_per_session(self, make_user, session_store) -> None:
        user = make_user()
        issuer = TokenIssuer(session_store)
        sessions = [issuer.issue(user) for _ in range(5)]
        assert len({s.id for s in sessions}) == 5
        assert len({s.secret for s in sessions}) == 5
        assert len({s.token for s in sessions}) == 5

    def test_token_does_not_verify_with_other_session_secret(self, make_user, session_store) -> None:
        user = make_user()
        issuer = TokenIssuer(session_store)
        first, second = issuer.issue(user), issuer.issue(user)
        with pytest.raises(SignatureInvalidError):
            TokenCodec().decode_verified(first.token, second.secret)

    def test_secret_not_in_repr(self, make_user, session_store) -> None:
        session = TokenIssuer(session_store).issue(make_user())
        assert session.secret not in repr(session)

    def test_user_is_not_modified(self, make_user, session_store) -> None:
        user = make_user()
        before = (user.id, user.username, user.role, user.hashed_password)
        TokenIssuer(session_store).issue(user)
        assert (user.id, user.username, user.role, user.hashed_password) == before


class TestIssueFailure:
    def test_store_failure_propagates_without_retry(self, make_user) -> None:
        store = MagicMock()
        store.save.side_effect = PersistenceError("Session write failed.")
        with pytest.raises(PersistenceError):
            TokenIssuer(store).issue(make_user())
        assert store.save.call_count == 1
