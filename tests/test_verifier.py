"""Unit tests for auth/verifier.py TokenVerifier.

Covers:
- Issue -> verify round trip returns the owning user and session
- Tampered, expired, forged and structurally incomplete tokens all fold into InvalidTokenError
- Role threshold (including on a cache hit)
- Cache hit skips the session lookup; results match with and without a cache
- Revoked and deleted-user tokens are rejected immediately
- accept_if_present degrades every failure to None
- Store failures surface as PersistenceError, not as a token verdict
"""

import time
from unittest.mock import MagicMock

import pytest

from auth.issuer import TokenIssuer
from auth.models import Role
from auth.tokens import TokenCodec
from auth.verifier import TokenVerifier
from cache.store import SessionCache
from core.errors import InvalidTokenError, PersistenceError


@pytest.fixture
def issuer(session_store) -> TokenIssuer:
    return TokenIssuer(session_store)


@pytest.fixture
def verifier(user_store, session_store, cache) -> TokenVerifier:
    return TokenVerifier(user_store, session_store, cache)


# ---------------------------------------------------------------------------
# TestVerifyHappyPath
# ---------------------------------------------------------------------------


class TestVerifyHappyPath:
    def test_round_trip(self, make_user, issuer, verifier) -> None:
        user = make_user()
        session = issuer.issue(user)
        got_user, got_session = verifier.verify(session.token)
        assert got_user.id == user.id
        assert got_session.id == session.id

    def test_successful_verify_populates_cache(self, make_user, issuer, verifier, cache) -> None:
        session = issuer.issue(make_user())
        verifier.verify(session.token)
        assert cache.get(session.token).id == session.id

    def test_same_result_without_cache(self, make_user, issuer, user_store, session_store) -> None:
        user = make_user()
        session = issuer.issue(user)
        uncached = TokenVerifier(user_store, session_store, cache=None)
        cached = TokenVerifier(user_store, session_store, cache=SessionCache())
        for v in (uncached, cached, cached):
            got_user, got_session = v.verify(session.token)
            assert (got_user.id, got_session.id) == (user.id, session.id)


# ---------------------------------------------------------------------------
# TestVerifyRejections
# ---------------------------------------------------------------------------


class TestVerifyRejections:
    @pytest.mark.parametrize("index", [0, 15, 31])
    def test_tampered_signature(self, make_user, issuer, verifier, flip_signature, index) -> None:
        session = issuer.issue(make_user())
        with pytest.raises(InvalidTokenError):
            verifier.verify(flip_signature(session.token, index))

    def test_tampered_token_after_valid_one_cached(self, make_user, issuer, verifier, flip_signature) -> None:
        """The cache is keyed by the exact token, so a variant is never a hit."""
        session = issuer.issue(make_user())
        verifier.verify(session.token)
        with pytest.raises(InvalidTokenError):
            verifier.verify(flip_signature(session.token))

    def test_expired_token(self, make_user, session_store, verifier) -> None:
        expired_issuer = TokenIssuer(session_store, expire_seconds=-10)
        session = expired_issuer.issue(make_user())
        with pytest.raises(InvalidTokenError):
            verifier.verify(session.token)

    @pytest.mark.parametrize("token", ["", "garbage", "a.b.c"])
    def test_malformed(self, verifier, token) -> None:
        with pytest.raises(InvalidTokenError):
            verifier.verify(token)

    @pytest.mark.parametrize(
        "claims",
        [
            {"session_id": "s-1"},
            {"user_id": "u-1"},
            {"user_id": "", "session_id": "s-1"},
            {"user_id": 42, "session_id": "s-1"},
        ],
    )
    def test_missing_or_bad_claims(self, verifier, claims) -> None:
        token = TokenCodec().encode({**claims, "exp": int(time.time()) + 60}, "k" * 64)
        with pytest.raises(InvalidTokenError):
            verifier.verify(token)

    def test_unknown_session(self, make_user, verifier) -> None:
        user = make_user()
        token = TokenCodec().encode(
            {"user_id": user.id, "session_id": "no-such-session", "exp": int(time.time()) + 60}, "k" * 64
        )
        with pytest.raises(InvalidTokenError):
            verifier.verify(token)

    def test_forged_session_id(self, make_user, issuer, verifier) -> None:
        """Claiming another user's session without its secret fails verification."""
        victim = make_user()
        attacker = make_user()
        victim_session = issuer.issue(victim)
        issuer.issue(attacker)
        forged = TokenCodec().encode(
            {"user_id": victim.id, "session_id": victim_session.id, "exp": int(time.time()) + 60},
            "attacker-chosen-secret" * 3,
        )
        with pytest.raises(InvalidTokenError):
            verifier.verify(forged)

    def test_session_of_other_user(self, make_user, issuer, verifier) -> None:
        alice, bob = make_user(), make_user()
        bob_session = issuer.issue(bob)
        token = TokenCodec().encode(
            {"user_id": alice.id, "session_id": bob_session.id, "exp": int(time.time()) + 60},
            bob_session.secret,
        )
        with pytest.raises(InvalidTokenError):
            verifier.verify(token)

    def test_rejection_message_does_not_reveal_reason(self, make_user, issuer, verifier, flip_signature) -> None:
        session = issuer.issue(make_user())
        messages = set()
        for token in ("garbage", flip_signature(session.token)):
            with pytest.raises(InvalidTokenError) as exc_info:
                verifier.verify(token)
            messages.add(exc_info.value.message)
        assert messages == {"Invalid token."}


# ---------------------------------------------------------------------------
# TestRoleGate
# ---------------------------------------------------------------------------


class TestRoleGate:
    def test_user_below_threshold_rejected(self, make_user, issuer, verifier) -> None:
        session = issuer.issue(make_user(role=Role.USER))
        with pytest.raises(InvalidTokenError):
            verifier.verify(session.token, Role.ADMIN)

    def test_admin_meets_every_threshold(self, make_user, issuer, verifier) -> None:
        session = issuer.issue(make_user(role=Role.ADMIN))
        for role in Role:
            verifier.verify(session.token, role)

    def test_cached_low_threshold_does_not_satisfy_high(self, make_user, issuer, verifier, cache) -> None:
        session = issuer.issue(make_user(role=Role.USER))
        verifier.verify(session.token, Role.PUBLIC)
        assert cache.get(session.token) is not None
        with pytest.raises(InvalidTokenError):
            verifier.verify(session.token, Role.ADMIN)

    def test_role_demotion_applies_to_cached_token(self, make_user, issuer, verifier, user_store) -> None:
        admin = make_user(role=Role.ADMIN)
        session = issuer.issue(admin)
        verifier.verify(session.token, Role.ADMIN)
        user_store.update_user(admin.id, role=Role.USER)
        with pytest.raises(InvalidTokenError):
            verifier.verify(session.token, Role.ADMIN)


# ---------------------------------------------------------------------------
# TestCacheBehaviour
# ---------------------------------------------------------------------------


class TestCacheBehaviour:
    def test_cache_hit_skips_session_lookup(self, make_user, issuer, user_store, session_store) -> None:
        spy = MagicMock(wraps=session_store)
        verifier = TokenVerifier(user_store, spy, SessionCache())
        session = issuer.issue(make_user())
        verifier.verify(session.token)
        verifier.verify(session.token)
        verifier.verify(session.token)
        assert spy.get_by_id.call_count == 1

    def test_cache_hit_skips_signature_check(self, make_user, issuer, user_store, session_store) -> None:
        codec = TokenCodec()
        spy = MagicMock(wraps=codec)
        verifier = TokenVerifier(user_store, session_store, SessionCache(), codec=spy)
        session = issuer.issue(make_user())
        verifier.verify(session.token)
        verifier.verify(session.token)
        assert spy.decode_verified.call_count == 1

    def test_deleted_user_rejected_despite_cache(self, make_user, issuer, verifier, user_store) -> None:
        user = make_user()
        session = issuer.issue(user)
        verifier.verify(session.token)
        user_store.delete_user(user.id)
        with pytest.raises(InvalidTokenError):
            verifier.verify(session.token)


# ---------------------------------------------------------------------------
# TestAcceptIfPresent
# ---------------------------------------------------------------------------


class TestAcceptIfPresent:
    @pytest.mark.parametrize("token", [None, "", "garbage"])
    def test_failures_become_none(self, verifier, token) -> None:
        assert verifier.accept_if_present(token) is None

    def test_valid_token_returns_identity(self, make_user, issuer, verifier) -> None:
        user = make_user()
        session = issuer.issue(user)
        result = verifier.accept_if_present(session.token)
        assert result is not None
        assert result[0].id == user.id

    def test_store_failure_becomes_none(self, make_user, issuer, session_store) -> None:
        session = issuer.issue(make_user())
        broken_users = MagicMock()
        broken_users.get_by_id.side_effect = PersistenceError("down")
        verifier = TokenVerifier(broken_users, session_store)
        assert verifier.accept_if_present(session.token) is None


# ---------------------------------------------------------------------------
# TestPersistenceFailure
# ---------------------------------------------------------------------------


class TestPersistenceFailure:
    def test_store_failure_is_not_a_token_verdict(self, make_user, issuer, user_store) -> None:
        session = issuer.issue(make_user())
        broken_sessions = MagicMock()
        broken_sessions.get_by_id.side_effect = PersistenceError("down")
        verifier = TokenVerifier(user_store, broken_sessions)
        with pytest.raises(PersistenceError):
            verifier.verify(session.token)
