"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in api/main.py (to mount as middleware) and in
api/routes/v1/sessions.py (to apply the login limit with @limiter.limit()).

A single shared instance means all routes share one in-memory counter store.
Instantiating it per module would give each module its own isolated counter
and the limits would never trigger.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
