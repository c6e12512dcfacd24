"""
API request and response models for the member portal REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in membership/models.py
and auth/models.py, which own the internal domain representation. Route
handlers map between the two.

Request models only check shape and size. Business rules (password length,
email format, association code format) are enforced by the membership layer
so the CLI and the API reject the same inputs with the same errors.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from membership.models import Association, Member, User

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class MemberStatusEnum(str, Enum):
    pending = "pending"
    active = "active"
    inactive = "inactive"
    suspended = "suspended"


class MembershipTypeEnum(str, Enum):
    regular = "regular"
    premium = "premium"
    student = "student"
    senior = "senior"
    honorary = "honorary"


# ---------------------------------------------------------------------------
# Auth -- request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=255)
    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1, max_length=128)
    association_id: str = Field(min_length=1, max_length=36)
    phone: Optional[str] = Field(default=None, max_length=20)


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login.

    association_id is the tenant the user is signing in to. Only
    super_admin may omit it (unless ALLOW_LOGIN_WITHOUT_ASSOCIATION=true).
    """

    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=128)
    association_id: Optional[str] = Field(default=None, max_length=36)


class ChangePasswordRequest(BaseModel):
    """Request body for POST /api/v1/auth/change-password."""

    current_password: str = Field(min_length=1, max_length=128)
    new_password: str = Field(min_length=1, max_length=128)


# ---------------------------------------------------------------------------
# Auth -- response models
# ---------------------------------------------------------------------------


class RegisterResponse(BaseModel):
    """Response for POST /api/v1/auth/register."""

    model_config = ConfigDict(frozen=True)

    message: str = "Registration successful. Your account is pending approval."
    user_id: str
    member_id: str
    member_code: str


class LoginResponse(BaseModel):
    """Response for POST /api/v1/auth/login."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user_id: str
    email: str
    role: str
    association_id: Optional[str] = None


class UserResponse(BaseModel):
    """User identity without credentials."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    name: str
    role: str
    association_id: Optional[str]
    last_login: Optional[str]
    created_at: str

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        # password_hash is never copied into a response model.
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            role=user.role,
            association_id=user.association_id,
            last_login=user.last_login,
            created_at=user.created_at,
        )


# ---------------------------------------------------------------------------
# Associations
# ---------------------------------------------------------------------------


class AssociationCreate(BaseModel):
    """Request body for POST /api/v1/associations."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=255)
    code: str = Field(min_length=2, max_length=10)
    description: Optional[str] = Field(default=None, max_length=2000)


class AssociationUpdate(BaseModel):
    """Request body for PUT /api/v1/associations/{id}."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=2000)


class AssociationStatusChange(BaseModel):
    status: str = Field(pattern=r"^(active|inactive)$")


class AssociationResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    code: str
    status: str
    description: Optional[str]
    created_at: str
    member_count: Optional[int] = None

    @classmethod
    def from_association(cls, association: Association, member_count: Optional[int] = None) -> "AssociationResponse":
        return cls(
            id=association.id,
            name=association.name,
            code=association.code,
            status=association.status,
            description=association.description,
            created_at=association.created_at,
            member_count=member_count,
        )


class PublicAssociationResponse(BaseModel):
    """Response for the unauthenticated GET /api/v1/associations/by-code/{code}."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    code: str


# ---------------------------------------------------------------------------
# Members
# ---------------------------------------------------------------------------


class MemberUpdate(BaseModel):
    """Request body for PUT /api/v1/members/{id}.

    Omitted fields are left unchanged. An explicit null clears phone,
    address or date_of_birth and is ignored for the other fields.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    email: Optional[str] = Field(default=None, min_length=3, max_length=255)
    phone: Optional[str] = Field(default=None, max_length=20)
    address: Optional[str] = Field(default=None, max_length=500)
    date_of_birth: Optional[str] = Field(default=None, pattern=r"^\d{4}-\d{2}-\d{2}$")
    membership_type: Optional[MembershipTypeEnum] = None


class MemberStatusChange(BaseModel):
    """Request body for PATCH /api/v1/members/{id}/status."""

    status: MemberStatusEnum


class MemberResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    association_id: str
    member_code: str
    status: str
    name: str
    email: str
    phone: Optional[str]
    address: Optional[str]
    date_of_birth: Optional[str]
    membership_type: str
    created_at: str
    updated_at: str
    last_login: Optional[str] = None

    @classmethod
    def from_member(cls, member: Member) -> "MemberResponse":
        return cls(
            id=member.id,
            user_id=member.user_id,
            association_id=member.association_id,
            member_code=member.member_code,
            status=member.status,
            name=member.name,
            email=member.email,
            phone=member.phone,
            address=member.address,
            date_of_birth=member.date_of_birth,
            membership_type=member.membership_type,
            created_at=member.created_at,
            updated_at=member.updated_at,
            last_login=member.last_login,
        )


class PaginationMeta(BaseModel):
    model_config = ConfigDict(frozen=True)

    page: int
    limit: int
    total: int
    pages: int


class MemberListResponse(BaseModel):
    """Response for GET /api/v1/members."""

    model_config = ConfigDict(frozen=True)

    members: list[MemberResponse]
    pagination: PaginationMeta


class StatsResponse(BaseModel):
    """Response for GET /api/v1/members/stats/summary."""

    model_config = ConfigDict(frozen=True)

    total: int
    active: int
    pending: int
    inactive: int
    suspended: int


class MeResponse(BaseModel):
    """Response for GET /api/v1/auth/me."""

    model_config = ConfigDict(frozen=True)

    user: UserResponse
    member: Optional[MemberResponse] = None
    association: Optional[AssociationResponse] = None


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


# ---------------------------------------------------------------------------
# Errors / health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
