"""
api/routes/v1/members.py -- Member management routes.

Routes (in registration order to avoid FastAPI path capture conflicts):
  GET   /members                     -- paginated, filtered list (admin)
  GET   /members/stats/summary       -- counts per status (admin)
  GET   /members/{member_id}         -- member detail (admin, or the member themself)
  PUT   /members/{member_id}         -- update profile fields (admin, or self)
  POST  /members/{member_id}/approve -- pending -> active (admin)
  PATCH /members/{member_id}/status  -- activate / deactivate / suspend (admin)

No role checks happen here. Every route passes the caller's claims to
AccountLifecycle, which asks auth/access.py before touching any row.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from api.models import (
    MemberListResponse,
    MemberResponse,
    MemberStatusChange,
    MemberUpdate,
    PaginationMeta,
    StatsResponse,
)
from auth.dependencies import get_current_claims
from auth.models import SessionClaims
from membership.lifecycle import AccountLifecycle

router = APIRouter()


def _lifecycle(request: Request) -> AccountLifecycle:
    return request.app.state.lifecycle


# ---------------------------------------------------------------------------
# GET /members -- list
# ---------------------------------------------------------------------------


@router.get("/members", response_model=MemberListResponse)
def list_members(
    request: Request,
    status: Optional[str] = Query(default=None),
    search: Optional[str] = Query(default=None, max_length=100),
    page: int = Query(default=1),
    limit: int = Query(default=50),
    association_id: Optional[str] = Query(default=None, description="super_admin only"),
    claims: SessionClaims = Depends(get_current_claims),
) -> MemberListResponse:
    """List members of the caller's association, newest first.

    search matches name or email, case-insensitively. The pagination total
    counts every member matching the same filters, not just this page.
    """
    result = _lifecycle(request).list_members(
        claims,
        status=status,
        search=search,
        page=page,
        limit=limit,
        association_id=association_id,
    )
    return MemberListResponse(
        members=[MemberResponse.from_member(m) for m in result.items],
        pagination=PaginationMeta(
            page=result.page,
            limit=result.limit,
            total=result.total_count,
            pages=(result.total_count + result.limit - 1) // result.limit,
        ),
    )


# ---------------------------------------------------------------------------
# GET /members/stats/summary -- must be registered before /members/{member_id}
# ---------------------------------------------------------------------------


@router.get("/members/stats/summary", response_model=StatsResponse)
def member_stats(
    request: Request,
    association_id: Optional[str] = Query(default=None, description="super_admin only"),
    claims: SessionClaims = Depends(get_current_claims),
) -> StatsResponse:
    """Return member counts per status for the caller's association."""
    counts = _lifecycle(request).member_stats(claims, association_id)
    return StatsResponse(**counts)


# ---------------------------------------------------------------------------
# Single member
# ---------------------------------------------------------------------------


@router.get("/members/{member_id}", response_model=MemberResponse)
def get_member(
    request: Request,
    member_id: str,
    claims: SessionClaims = Depends(get_current_claims),
) -> MemberResponse:
    return MemberResponse.from_member(_lifecycle(request).get_member(claims, member_id))


@router.put("/members/{member_id}", response_model=MemberResponse)
def update_member(
    request: Request,
    member_id: str,
    body: MemberUpdate,
    claims: SessionClaims = Depends(get_current_claims),
) -> MemberResponse:
    """Update profile fields. Changing the email also changes the login email."""
    # exclude_unset: an explicit null clears phone, address or date_of_birth.
    fields = body.model_dump(exclude_unset=True)
    if fields.get("membership_type") is not None:
        fields["membership_type"] = body.membership_type.value
    member = _lifecycle(request).update_member(claims, member_id, **fields)
    return MemberResponse.from_member(member)


@router.post("/members/{member_id}/approve", response_model=MemberResponse)
def approve_member(
    request: Request,
    member_id: str,
    claims: SessionClaims = Depends(get_current_claims),
) -> MemberResponse:
    """Approve a pending member. Sends the approval email after commit."""
    return MemberResponse.from_member(_lifecycle(request).approve_member(claims, member_id))


@router.patch("/members/{member_id}/status", response_model=MemberResponse)
def set_member_status(
    request: Request,
    member_id: str,
    body: MemberStatusChange,
    claims: SessionClaims = Depends(get_current_claims),
) -> MemberResponse:
    member = _lifecycle(request).set_member_status(claims, member_id, body.status.value)
    return MemberResponse.from_member(member)
