"""
api/routes/v1/associations.py -- Association (tenant) routes.

Routes (in registration order to avoid FastAPI path capture conflicts):
  GET   /associations                         -- list (super_admin: all, admin: own)
  POST  /associations                         -- create (super_admin)
  GET   /associations/by-code/{code}          -- public lookup for the registration form
  GET   /associations/{association_id}        -- detail (admin of that association)
  PUT   /associations/{association_id}        -- rename / describe (admin of that association)
  PATCH /associations/{association_id}/status -- activate / deactivate (super_admin)
"""

from fastapi import APIRouter, Depends, Request

from api.limiter import limiter
from api.models import (
    AssociationCreate,
    AssociationResponse,
    AssociationStatusChange,
    AssociationUpdate,
    PublicAssociationResponse,
)
from auth.dependencies import get_current_claims
from auth.models import SessionClaims
from membership.associations import AssociationService

router = APIRouter()


def _service(request: Request) -> AssociationService:
    return request.app.state.associations


@router.get("/associations", response_model=list[AssociationResponse])
def list_associations(
    request: Request,
    claims: SessionClaims = Depends(get_current_claims),
) -> list[AssociationResponse]:
    rows = _service(request).list_associations(claims)
    return [AssociationResponse.from_association(a, member_count=count) for a, count in rows]


@router.post("/associations", response_model=AssociationResponse, status_code=201)
def create_association(
    request: Request,
    body: AssociationCreate,
    claims: SessionClaims = Depends(get_current_claims),
) -> AssociationResponse:
    """Create a new association. super_admin only; the code must be unused."""
    association = _service(request).create_association(claims, body.name, body.code, body.description)
    return AssociationResponse.from_association(association)


# Public, so rate-limited like the other unauthenticated entry points.
@limiter.limit("30/minute")
@router.get("/associations/by-code/{code}", response_model=PublicAssociationResponse)
def get_association_by_code(request: Request, code: str) -> PublicAssociationResponse:
    """Resolve an association code to its id. Only active associations are found."""
    association = _service(request).get_association_by_code(code)
    return PublicAssociationResponse(id=association.id, name=association.name, code=association.code)


@router.get("/associations/{association_id}", response_model=AssociationResponse)
def get_association(
    request: Request,
    association_id: str,
    claims: SessionClaims = Depends(get_current_claims),
) -> AssociationResponse:
    return AssociationResponse.from_association(_service(request).get_association(claims, association_id))


@router.put("/associations/{association_id}", response_model=AssociationResponse)
def update_association(
    request: Request,
    association_id: str,
    body: AssociationUpdate,
    claims: SessionClaims = Depends(get_current_claims),
) -> AssociationResponse:
    association = _service(request).update_association(
        claims, association_id, name=body.name, description=body.description
    )
    return AssociationResponse.from_association(association)


@router.patch("/associations/{association_id}/status", response_model=AssociationResponse)
def set_association_status(
    request: Request,
    association_id: str,
    body: AssociationStatusChange,
    claims: SessionClaims = Depends(get_current_claims),
) -> AssociationResponse:
    """Activate or deactivate an association. super_admin only."""
    association = _service(request).set_association_status(claims, association_id, body.status)
    return AssociationResponse.from_association(association)
