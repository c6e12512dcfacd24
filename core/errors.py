"""
core/errors.py -- Error taxonomy shared by the auth and membership layers.

Every failure the core reports to a caller is a PortalError subclass carrying
a machine-readable code, a human-readable message, and the HTTP status the
API layer should use. The API maps these onto the ErrorResponse envelope in
one exception handler; nothing below api/ knows about HTTP beyond the
status_code hint.

Families:
  ValidationFailed    -- malformed or unacceptable input; resubmit to recover.
  AuthFailure         -- bad credentials or token. Deliberately generic: the
                         message never says whether the email, the password,
                         the association, the signature, or the expiry failed.
  PendingApproval     -- real account, not usable yet. Not a security failure.
  AuthorizationDenied -- authenticated but not permitted.
  NotFound            -- target record does not exist.
  Conflict            -- duplicate email/code, illegal or repeated transition.
  ResourceExhausted   -- connection pool timeout.
  Unexpected          -- anything else. Logged in full, reported opaquely.

Layer rule: core/ is the kernel. No imports from api/, auth/, or membership/.
"""

from __future__ import annotations


class PortalError(Exception):
    """Base class for every error the core surfaces to callers."""

    code: str = "error"
    message: str = "Request failed."
    status_code: int = 500

    def __init__(self, message: str | None = None, *, detail: str | None = None) -> None:
        super().__init__(message or self.message)
        if message:
            self.message = message
        self.detail = detail


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class ValidationFailed(PortalError):
    code = "validation_error"
    message = "Request validation failed."
    status_code = 400


class InvalidAssociation(ValidationFailed):
    code = "invalid_association"
    message = "Invalid association."


class WrongCurrentPassword(ValidationFailed):
    code = "wrong_current_password"
    message = "Current password is incorrect."


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


class AuthFailure(PortalError):
    code = "unauthorized"
    message = "Authentication required."
    status_code = 401


class InvalidCredentials(AuthFailure):
    code = "bad_credentials"
    message = "Invalid credentials."


class InvalidToken(AuthFailure):
    """Malformed, forged, and expired tokens all raise this one error."""

    code = "invalid_token"
    message = "Invalid or expired token."


class PendingApproval(PortalError):
    code = "pending_approval"
    message = "Account pending approval."
    status_code = 403

    def __init__(self, status: str = "pending") -> None:
        super().__init__(detail=status)
        self.status = status


# ---------------------------------------------------------------------------
# Authorization / lookup
# ---------------------------------------------------------------------------


class AuthorizationDenied(PortalError):
    code = "forbidden"
    message = "Insufficient permissions."
    status_code = 403


class NotFound(PortalError):
    code = "not_found"
    message = "Not found."
    status_code = 404


# ---------------------------------------------------------------------------
# Conflicts
# ---------------------------------------------------------------------------


class Conflict(PortalError):
    code = "conflict"
    message = "Conflicting request."
    status_code = 409


class DuplicateAccount(Conflict):
    code = "duplicate_account"
    message = "User already exists with this email."


class DuplicateCode(Conflict):
    code = "duplicate_code"
    message = "Association code already exists."


class AlreadyApproved(Conflict):
    code = "already_approved"
    message = "Member is already approved."


class InvalidTransition(Conflict):
    code = "invalid_transition"
    message = "Status change not allowed."


# ---------------------------------------------------------------------------
# Infrastructure
# ---------------------------------------------------------------------------


class ResourceExhausted(PortalError):
    code = "resource_exhausted"
    message = "Service busy, try again shortly."
    status_code = 503


class Unexpected(PortalError):
    code = "internal_error"
    message = "An unexpected error occurred."
    status_code = 500
