"""
tests/conftest.py -- Shared test fixtures for identity unit and integration tests.

This module provides:
  - engine / user_store / session_store: per-test in-memory SQLite stores
  - cache / service: a SessionCache and an IdentityService wired to them
  - make_user: factory for users (password hashing only when asked for)
  - flip_signature: corrupts one byte of a token signature
  - api_client: module-scoped TestClient with a patched lifespan

Design: the API fixture uses a named shared-memory SQLite URI (not plain
:memory:) because TestClient runs the app in a separate thread. Plain
:memory: DBs are per-connection and would present a blank schema to that
thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.

Environment variables must be set before any api/ import so get_settings()
sees them on its first (cached) call.
"""

from __future__ import annotations

import asyncio
import base64
import os
import uuid
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager

os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("DATABASE_URL", "sqlite:///file:identity_default?mode=memory&cache=shared&uri=true")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.models import Role, User
from auth.passwords import hash_password
from auth.service import IdentityService
from auth.store import SessionStore, UserStore, make_engine
from cache.store import SessionCache

# ---------------------------------------------------------------------------
# Unit-level fixtures -- fresh database per test
# ---------------------------------------------------------------------------


@pytest.fixture
def engine():
    eng = make_engine("sqlite:///:memory:")
    yield eng
    eng.dispose()


@pytest.fixture
def user_store(engine) -> UserStore:
    return UserStore(engine=engine)


@pytest.fixture
def session_store(engine) -> SessionStore:
    return SessionStore(engine=engine)


@pytest.fixture
def cache() -> SessionCache:
    return SessionCache(ttl=300, max_entries=100)


@pytest.fixture
def service(user_store: UserStore, session_store: SessionStore, cache: SessionCache) -> IdentityService:
    return IdentityService(user_store, session_store, cache)


def _user_factory(user_store: UserStore) -> Callable[..., User]:
    def make(username: str | None = None, role: Role = Role.USER, password: str | None = None) -> User:
        user = User(
            id=str(uuid.uuid4()),
            username=username or f"user-{uuid.uuid4().hex[:8]}",
            role=role,
            hashed_password=hash_password(password) if password else None,
        )
        user_store.create_user(user)
        return user

    return make


@pytest.fixture
def make_user(user_store: UserStore) -> Callable[..., User]:
    """Create and persist a user. bcrypt only runs when a password is given."""
    return _user_factory(user_store)


@pytest.fixture
def flip_signature() -> Callable[..., str]:
    """Return a function that flips one bit of a token's decoded signature.

    Editing the base64 text directly can land on padding bits that decode to
    the same bytes, so the flip happens on the raw signature.
    """

    def flip(token: str, index: int = 0) -> str:
        header, payload, sig = token.split(".")
        raw = bytearray(base64.urlsafe_b64decode(sig + "=" * (-len(sig) % 4)))
        raw[index] ^= 0x01
        new_sig = base64.urlsafe_b64encode(bytes(raw)).rstrip(b"=").decode("ascii")
        return f"{header}.{payload}.{new_sig}"

    return flip


# ---------------------------------------------------------------------------
# API fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


def _patch_lifespan(user_store: UserStore, session_store: SessionStore, cache: SessionCache, service: IdentityService):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores into app.state so routes see isolated test
    DBs. The purge_task is a long-sleeping coroutine -- a real asyncio.Task
    is required because shutdown calls .cancel() on it.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.session_store = session_store
        app.state.cache = cache
        app.state.identity = service
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, IdentityService, Callable[..., User]], None, None]:
    """Yield (client, service, make_user) for API integration tests.

    Each test module gets its own shared-memory database, named after the
    module, so modules never see each other's users or sessions.
    """
    db_name = request.module.__name__.replace(".", "_")
    engine = make_engine(f"sqlite:///file:{db_name}?mode=memory&cache=shared&uri=true")
    user_store = UserStore(engine=engine)
    session_store = SessionStore(engine=engine)
    cache = SessionCache(ttl=300)
    service = IdentityService(user_store, session_store, cache)

    app.router.lifespan_context = _patch_lifespan(user_store, session_store, cache, service)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, service, _user_factory(user_store)

    engine.dispose()
