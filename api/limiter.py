"""
api/limiter.py -- Shared slowapi rate limiter instance.

Imported by api/main.py (mounted as middleware) and api/routes/v1/auth.py
(per-route limits on login and resend-otp with @limiter.limit()).

One shared instance means every route shares the same in-memory counter
store; separate instances per module would never trip their limits.

Every route without its own limit gets DEFAULT_RATE_LIMIT per client IP.
GET /api/v1/health is exempt. Both limit strings are read from Settings on
each request, so changing them needs no new Limiter.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings


def login_rate_limit() -> str:
    """Limit string for login and resend-otp, read from Settings at request time."""
    return get_settings().login_rate_limit


def default_rate_limit() -> str:
    return get_settings().default_rate_limit


limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[default_rate_limit],
    storage_uri="memory://",
)
