"""
cache/store.py -- In-process cache of verified tokens.

Maps a raw token string to the Session it was verified against, so repeated
requests with the same token skip the store lookups and the HMAC check.
Keyed by the exact token string -- never by session id -- so a token is only
trusted after that exact byte sequence passed signature verification once.

Coherence with revocation: the cache keeps a secondary index
session_id -> {tokens}. Destroying a session calls invalidate_by_session()
before the destroy is acknowledged, so a revoked token is rejected on the very
next verification instead of lingering until its TTL.

Invalidation also leaves a short-lived tombstone for the session id. A
verifier that fetched the session just before it was destroyed may call put()
after the eviction; the tombstone makes that late put() a no-op instead of
resurrecting the revoked token.

Thread safety: one lock guards all three dicts. Every public method takes the lock
for its whole body, so readers never see an entry without its index (or the
reverse). A simultaneous miss on the same token may verify twice; both writes
store the same session, which is harmless.

Usage:
    cache = SessionCache(ttl=300, max_entries=10000)
    session = cache.get(token)           # Session or None
    cache.put(token, session)
    cache.invalidate_by_session(session.id)
    cache.purge_expired()                # call periodically to trim old entries
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING, NamedTuple, Optional

if TYPE_CHECKING:
    from auth.models import Session

logger = logging.getLogger("identity.cache")

_DEFAULT_TTL = 300  # seconds
_DEFAULT_MAX_ENTRIES = 10000


class _Entry(NamedTuple):
    session: Session
    expires_at: float  # time.monotonic() deadline


class SessionCache:
    def __init__(self, ttl: int = _DEFAULT_TTL, max_entries: int = _DEFAULT_MAX_ENTRIES) -> None:
        self.ttl = ttl
        self.max_entries = max_entries
        self._entries: dict[str, _Entry] = {}
        self._by_session: dict[str, set[str]] = {}
        self._tombstones: dict[str, float] = {}  # session_id -> monotonic deadline
        self._lock = threading.Lock()

    def get(self, token: str) -> Optional[Session]:
        """Return the cached Session for token if present and not expired."""
        with self._lock:
            entry = self._entries.get(token)
            if entry is None:
                return None
            if time.monotonic() >= entry.expires_at:
                self._remove(token)
                return None
            return entry.session

    def put(self, token: str, session: Session) -> None:
        """Cache session under token, replacing any existing entry.

        The entry never outlives the session itself: its deadline is the
        earlier of the cache TTL and the session's expires_at. Sessions
        invalidated within the last TTL window are not cached again.
        """
        if self.ttl <= 0:
            return
        lifetime = float(self.ttl)
        if session.expires_at is not None:
            remaining = (session.expires_at - datetime.now(timezone.utc)).total_seconds()
            lifetime = min(lifetime, remaining)
        if lifetime <= 0:
            return
        with self._lock:
            now = time.monotonic()
            tombstone = self._tombstones.get(session.id)
            if tombstone is not None:
                if now < tombstone:
                    logger.debug("Refusing to cache revoked session %s", session.id)
                    return
                del self._tombstones[session.id]
            if token in self._entries:
                self._remove(token)
            while len(self._entries) >= self.max_entries:
                # dicts keep insertion order -- the first key is the oldest entry.
                self._remove(next(iter(self._entries)))
            self._entries[token] = _Entry(session, now + lifetime)
            self._by_session.setdefault(session.id, set()).add(token)

    def invalidate_by_session(self, session_id: str) -> int:
        """Drop every entry that resolves to session_id. Returns the number removed."""
        with self._lock:
            tokens = self._by_session.pop(session_id, set())
            for token in tokens:
                self._entries.pop(token, None)
            if self.ttl > 0:
                self._tombstones[session_id] = time.monotonic() + self.ttl
        if tokens:
            logger.debug("Evicted %d cached token(s) for session %s", len(tokens), session_id)
        return len(tokens)

    def purge_expired(self) -> int:
        """Delete all entries past their deadline. Returns number of entries removed."""
        now = time.monotonic()
        with self._lock:
            expired = [token for token, entry in self._entries.items() if now >= entry.expires_at]
            for token in expired:
                self._remove(token)
            stale = [sid for sid, deadline in self._tombstones.items() if now >= deadline]
            for sid in stale:
                del self._tombstones[sid]
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._by_session.clear()
            self._tombstones.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _remove(self, token: str) -> None:
        # Caller holds self._lock.
        entry = self._entries.pop(token, None)
        if entry is None:
            return
        tokens = self._by_session.get(entry.session.id)
        if tokens is not None:
            tokens.discard(token)
            if not tokens:
                del self._by_session[entry.session.id]

    def close(self) -> None:
        self.clear()
