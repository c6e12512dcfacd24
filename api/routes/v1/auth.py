"""
api/routes/v1/auth.py -- Registration, login, and account self-service endpoints.

Routes:
  POST /api/v1/auth/register         -- create a pending member account (public)
  POST /api/v1/auth/login            -- password login; returns JWT and sets cookie
  POST /api/v1/auth/logout           -- clears cookie; 200
  GET  /api/v1/auth/me               -- caller's user, member, and association
  POST /api/v1/auth/change-password  -- requires current password

Handlers stay thin: they unpack the request, call AccountLifecycle, and map
the result to a response model. PortalError subclasses raised by the
lifecycle manager are turned into the error envelope by api/main.py.

Security:
  [H2] POST /login and /register are rate-limited per IP (LOGIN_RATE_LIMIT).
  [C1] Timing equalization lives in AccountLifecycle.login() -- never inline
       a lookup + verify here.
  [M5] Cache-Control: no-store on login responses.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    AssociationResponse,
    ChangePasswordRequest,
    LoginRequest,
    LoginResponse,
    MemberResponse,
    MeResponse,
    MessageResponse,
    RegisterRequest,
    RegisterResponse,
    UserResponse,
)
from auth.dependencies import get_current_claims
from auth.models import SessionClaims
from auth.tokens import set_auth_cookie
from core.config import get_settings
from membership.lifecycle import AccountLifecycle

_settings = get_settings()

# Auth policy:
# - POST /api/v1/auth/register:         public -- new members sign themselves up
# - POST /api/v1/auth/login:            public -- login endpoint must be unauthenticated
# - POST /api/v1/auth/logout:           public -- clearing a cookie needs no prior auth
# - GET  /api/v1/auth/me:               requires auth (get_current_claims)
# - POST /api/v1/auth/change-password:  requires auth (get_current_claims)
router = APIRouter()


def _lifecycle(request: Request) -> AccountLifecycle:
    return request.app.state.lifecycle


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(_settings.login_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/register", response_model=RegisterResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> RegisterResponse:
    """Register a new member. The account stays pending until an admin approves it."""
    result = _lifecycle(request).register(
        name=body.name,
        email=body.email,
        password=body.password,
        association_id=body.association_id,
        phone=body.phone,
    )
    return RegisterResponse(user_id=result.user_id, member_id=result.member_id, member_code=result.member_code)


@limiter.limit(_settings.login_rate_limit)  # [H2] brute-force mitigation
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; return the token and set the JWT cookie.

    Wrong email, wrong password, wrong association, and inactive association
    all produce the same "bad_credentials" error. A pending member with the
    right password gets "pending_approval" instead, so the UI can explain.
    """
    result = _lifecycle(request).login(body.email, body.password, body.association_id)
    claims = result.claims
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            access_token=result.token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=_settings.token_expire_seconds,
            user_id=claims.user_id,
            email=claims.email,
            role=claims.role,
            association_id=claims.association_id,
        ).model_dump(),
    )
    set_auth_cookie(resp, result.token)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/auth/logout", response_model=MessageResponse)
async def logout() -> JSONResponse:
    """Clear the JWT cookie. The token itself stays valid until it expires."""
    resp = JSONResponse(content={"message": "Logged out."})
    resp.delete_cookie("access_token")
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
def me(request: Request, claims: SessionClaims = Depends(get_current_claims)) -> MeResponse:
    """Return the caller's own user, member, and association records."""
    profile = _lifecycle(request).get_profile(claims)
    return MeResponse(
        user=UserResponse.from_user(profile.user),
        member=MemberResponse.from_member(profile.member) if profile.member else None,
        association=AssociationResponse.from_association(profile.association) if profile.association else None,
    )


@router.post("/auth/change-password", response_model=MessageResponse)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    claims: SessionClaims = Depends(get_current_claims),
) -> MessageResponse:
    """Change the caller's password. Existing tokens are not revoked."""
    _lifecycle(request).change_password(
        claims.user_id,
        body.current_password,
        body.new_password,
        caller=claims,
    )
    return MessageResponse(message="Password changed successfully.")
