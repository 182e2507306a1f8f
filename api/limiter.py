"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in api/main.py (to mount as middleware and register the 429
handler) and in api/routes/v1/auth.py (to apply per-route limits with
@limiter.limit()).

Using a single shared instance ensures all routes share the same in-memory
counter store. Each decorated route still gets its own counter, so
exhausting the login window does not block reset-password.

strategy="moving-window" gives a true sliding window: the 6th attempt
inside any 15-minute span is refused, not just within a fixed bucket.

The key is the socket address. X-Forwarded-For is client-supplied and is
never read here; behind a reverse proxy run uvicorn with --proxy-headers
and --forwarded-allow-ips so the socket address is the real client.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://", strategy="moving-window")
