"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in both api/main.py (to mount as middleware) and
api/routes/v1/auth.py (to apply the per-route login limit with @limiter.limit()).

Using a single shared instance ensures all routes share the same in-memory
counter store. This throttles request volume per client IP; the per-account
lockout in auth/limiter.py is a different mechanism and counts failures per
email regardless of source address.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
