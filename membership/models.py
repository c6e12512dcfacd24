"""
membership/models.py -- Domain dataclasses for associations, users, and members.

These are pure data containers with zero logic. Status transitions live in
membership/lifecycle.py; persistence lives in membership/store.py.

id is None before the record is written to the database. Identifiers are
UUID strings generated by the store, so tenant ids are not guessable.
"""

from dataclasses import dataclass, field
from typing import Optional

ASSOCIATION_STATUSES = ("active", "inactive")
MEMBER_STATUSES = ("pending", "active", "inactive", "suspended")
MEMBERSHIP_TYPES = ("regular", "premium", "student", "senior", "honorary")


@dataclass
class Association:
    """A tenant. Only active associations accept registrations and logins."""

    name: str
    code: str  # unique, upper-case alphanumeric
    status: str = "active"  # "active" | "inactive"
    description: Optional[str] = None
    id: Optional[str] = None
    created_at: str = ""


@dataclass
class User:
    """An identity that can log in.

    association_id is None only for super_admin. email is stored lower-cased;
    uniqueness is global, not per association.
    """

    email: str
    name: str
    role: str  # "member" | "admin" | "super_admin"
    password_hash: str
    association_id: Optional[str] = None
    id: Optional[str] = None
    last_login: Optional[str] = None
    created_at: str = ""


@dataclass
class Member:
    """The membership record paired 1:1 with a member User.

    association_id always equals the owning User's association_id.
    member_code is the human-readable id: association code + 6-digit counter.
    """

    user_id: str
    association_id: str
    name: str
    email: str
    status: str = "pending"  # "pending" | "active" | "inactive" | "suspended"
    member_code: str = ""
    phone: Optional[str] = None
    address: Optional[str] = None
    date_of_birth: Optional[str] = None  # YYYY-MM-DD
    membership_type: str = "regular"
    id: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""
    # Read-only join columns, filled by list/detail queries.
    last_login: Optional[str] = None


@dataclass
class MemberPage:
    """One page of list_members results plus the filtered total."""

    items: list[Member] = field(default_factory=list)
    total_count: int = 0
    page: int = 1
    limit: int = 50


@dataclass
class Profile:
    """The caller's own view: user, optional member record, optional association."""

    user: User
    member: Optional[Member] = None
    association: Optional[Association] = None
