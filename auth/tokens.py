"""
auth/tokens.py -- Session token issue and verification (JWT).

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       user id (sub), email, role, association_id, iat and exp. Verification
       returns None on any failure -- malformed structure, bad signature,
       expiry in the past, or missing/unknown claims all look the same to the
       caller, which turns None into one generic InvalidToken.

  Lifetime: there is no server-side session table, so a token cannot be
       revoked before it expires. The default lifetime (24h) is the only
       mitigation; deployments shorten it with TOKEN_EXPIRE_SECONDS.

  Clock skew: not compensated. python-jose runs with zero leeway, so a token
       is rejected as soon as now > exp.

  SECRET_KEY: sourced from core.config.get_settings(). The Settings class
       validates the key at startup [M6].

Layer rule: no imports from api/ or membership/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from auth.models import ROLE_SUPER_ADMIN, ROLES, SessionClaims
from core.config import get_settings

logger = logging.getLogger("memberportal.auth")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton [M6]
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def issue_session_token(claims: SessionClaims, ttl: timedelta | None = None) -> str:
    """Encode a signed JWT carrying the identity claims plus iat and exp.

    Args:
        claims: Identity to embed. issued_at / expires_at on the input are
                ignored; they are computed here.
        ttl:    Token lifetime. Defaults to Settings.token_expire_seconds.
    """
    lifetime = ttl if ttl is not None else timedelta(seconds=_settings.token_expire_seconds)
    now = datetime.now(timezone.utc)
    payload = claims.to_payload()
    payload["iat"] = now
    payload["exp"] = now + lifetime
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def verify_session_token(token: str) -> SessionClaims | None:
    """Decode and verify a JWT. Returns SessionClaims or None on any failure.

    Returning None (rather than raising) keeps the caller simple: any invalid
    token is treated as unauthenticated, and the reason is never exposed.
    """
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
        claims = SessionClaims.from_payload(payload)
    except (JWTError, KeyError, TypeError, ValueError, OverflowError, AttributeError):
        return None
    if claims.role not in ROLES:
        return None
    if claims.association_id is None and claims.role != ROLE_SUPER_ADMIN:
        return None
    return claims


# ---------------------------------------------------------------------------
# Cookie helper
# ---------------------------------------------------------------------------


def set_auth_cookie(response, token: str, expire_seconds: int = 0) -> None:
    """Write the session token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST -- CSRF mitigation for most cases.
    secure: only sent over HTTPS when SECURE_COOKIES=true (set in production).
    max_age: matches the JWT expiry so both expire together.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    response.set_cookie(
        "access_token",
        value=token,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
        max_age=duration,
    )
