"""Shared HTTP rate limiter (slowapi, in-memory storage).

This is the coarse per-IP limiter in front of every route. The magic-code
failure limit is separate and persistent (services/security_log.py), so it
holds across workers and restarts without a shared cache.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from .config import settings

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.rate_limit_default],
    enabled=settings.rate_limit_enabled,
)
