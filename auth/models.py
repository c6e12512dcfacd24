"""
auth/models.py -- Identity dataclasses for authentication and authorization.

Pattern: Data class (pure data container, near-zero logic). Mirrors the
approach in membership/models.py -- dataclasses own domain shape; the token
module, evaluator, and lifecycle manager do the work.

SessionClaims is the only identity the core trusts after login. It is derived
from a verified token and never persisted: there is no session table.

Layer rule: no imports from api/ or membership/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

ROLE_MEMBER = "member"
ROLE_ADMIN = "admin"
ROLE_SUPER_ADMIN = "super_admin"
ROLES = (ROLE_MEMBER, ROLE_ADMIN, ROLE_SUPER_ADMIN)


@dataclass(frozen=True)
class SessionClaims:
    """Identity carried by a session token.

    association_id is None only for super_admin. issued_at / expires_at are
    filled in by the token verifier; claims built before issuing leave them None.
    """

    user_id: str
    email: str
    role: str  # "member", "admin", "super_admin"
    association_id: str | None = None
    issued_at: datetime | None = None
    expires_at: datetime | None = None

    @property
    def is_super_admin(self) -> bool:
        return self.role == ROLE_SUPER_ADMIN

    def to_payload(self) -> dict:
        """Return the identity claims as a JWT payload (without iat/exp)."""
        return {
            "sub": self.user_id,
            "email": self.email,
            "role": self.role,
            "association_id": self.association_id,
        }

    @classmethod
    def from_payload(cls, payload: dict) -> "SessionClaims":
        """Build claims from a decoded JWT payload. Raises KeyError on missing claims."""
        return cls(
            user_id=payload["sub"],
            email=payload["email"],
            role=payload["role"],
            association_id=payload.get("association_id"),
            issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        )
