"""Rate limiting for the HTTP shim (slowapi).

The limiter is module-level so routers can decorate individual endpoints
and ``main.create_app`` can attach it to ``app.state``.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from leave_engine.config import settings

# Per client IP; state-changing leave endpoints use a tighter limit.
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.RATE_LIMIT_DEFAULT],
)
