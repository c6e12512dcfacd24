"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Two token sources are checked in priority order:
  1. Authorization: Bearer <token> header -- API clients.
  2. JWT cookie ("access_token") -- set by the login route for browsers.

Both converge on SessionClaims after verification. No database lookup happens
here: a token is valid if its signature and expiry check out, nothing else.

try_get_current_claims() is the soft variant (returns None on failure).
get_current_claims() wraps it and raises InvalidToken (HTTP 401).
Role and association checks are NOT done here -- they belong to
auth/access.py, which the lifecycle manager calls for every operation.

Layer rule: no imports from api/ or membership/.
  auth/dependencies.py may import from fastapi (for Request) because this
  module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Request

from auth.models import SessionClaims
from auth.tokens import verify_session_token
from core.errors import InvalidToken


def _extract_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return request.cookies.get("access_token") or None


def try_get_current_claims(request: Request) -> SessionClaims | None:
    """Return the verified claims for this request, or None.

    Never raises -- callers that need a hard 401 should use get_current_claims().
    """
    token = _extract_token(request)
    if not token:
        return None
    return verify_session_token(token)


def get_current_claims(request: Request) -> SessionClaims:
    """Require authentication. Raises InvalidToken (HTTP 401) otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(claims: SessionClaims = Depends(get_current_claims)): ...
    """
    claims = try_get_current_claims(request)
    if claims is None:
        raise InvalidToken()
    return claims
