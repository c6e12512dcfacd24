"""
auth/passwords.py -- Password hashing and verification (bcrypt).

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which current
bcrypt releases reject with an explicit error. Direct bcrypt usage is simpler
and has no compatibility shim.

bcrypt only reads the first 72 bytes of its input, and bcrypt 5 raises
ValueError instead of ignoring the rest. Both functions therefore cut the
UTF-8 encoding to 72 bytes before calling bcrypt, so any password the API
accepts (up to 128 characters, possibly multi-byte) hashes and verifies.

The cost factor comes from Settings.bcrypt_rounds (default 12). gensalt()
draws a fresh random salt per call, so hashing the same password twice yields
two different stored values that both verify.

Both functions are pure and hold no state, so they are safe to call from any
number of threads at once.

Layer rule: no imports from api/ or membership/. Import from core/ is allowed.
"""

from __future__ import annotations

import bcrypt

from core.config import get_settings

BCRYPT_MAX_BYTES = 72


def _secret(plain: str) -> bytes:
    return plain.encode("utf-8")[:BCRYPT_MAX_BYTES]


def hash_password(plain: str, rounds: int | None = None) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Only the first 72 UTF-8 bytes take part in the hash; verify_password
    applies the same cut.
    """
    cost = rounds if rounds is not None else get_settings().bcrypt_rounds
    return bcrypt.hashpw(_secret(plain), bcrypt.gensalt(rounds=cost)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    Never raises: a None, empty, or corrupted hash simply fails verification.
    """
    try:
        return bcrypt.checkpw(_secret(plain), hashed.encode("utf-8"))
    except (ValueError, TypeError, AttributeError):
        return False


# Timing equalization dummy hash [C1].
# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones. Login verifies against this when the email is
# unknown so response time does not reveal whether an account exists.
DUMMY_HASH: str = hash_password("memberportal_timing_dummy")
