"""
api/limiter.py -- Shared slowapi rate limiter for the public entry points.

api/main.py mounts it as middleware; api/routes/v1/auth.py and
api/routes/v1/associations.py apply per-route limits with @limiter.limit().

Only unauthenticated routes are limited (login, register, association code
lookup): those are the ones an attacker can hammer without credentials.
Limits are keyed on the client IP. Counters live in process memory, so
each worker process counts separately.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://", headers_enabled=False)
