"""Rate limiting (slowapi): one limiter, keyed by client address.

The application applies ``rate_limit_default`` to every route through the
middleware; credential endpoints add tighter per-route limits with
``@limiter.limit``.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from src.config.settings import settings

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.rate_limit_default],
    enabled=settings.rate_limit_enabled,
)
