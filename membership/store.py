"""
membership/store.py -- SQLAlchemy Core persistence layer for the portal.

Pattern: Repository + Data Mapper. MembershipStore is the repository; the
_row_to_* functions are the mappers. Lifecycle and route code never touch SQL
directly.

Unlike a store that opens its own connections, every method here takes the
connection as its first argument. The connection comes from
DataGateway.session() or DataGateway.transaction(), which means:
  - several calls can share one transaction (user + member at registration),
  - every query runs with a SecurityContext bound, and tenant-scoped reads
    apply gateway.tenant_filter() against it.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Emails are lower-cased before every write and lookup, and the users.email
  UNIQUE constraint makes uniqueness global and case-insensitive.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    Column,
    ForeignKey,
    MetaData,
    String,
    Table,
    Text,
    case,
    func,
    or_,
    select,
)
from sqlalchemy.engine import Connection

from membership.gateway import DataGateway, tenant_filter
from membership.models import Association, Member, User

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_associations = Table(
    "associations",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("name", String(255), nullable=False),
    Column("code", String(10), nullable=False, unique=True),
    Column("status", String(20), nullable=False, server_default="active"),
    Column("description", Text),
    Column("created_at", String(32), nullable=False),
    CheckConstraint("status IN ('active', 'inactive')", name="ck_association_status"),
)

_users = Table(
    "users",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),  # stored lower-cased
    Column("password_hash", Text, nullable=False),
    Column("name", String(255), nullable=False),
    Column("role", String(20), nullable=False, server_default="member"),
    Column("association_id", String(36), ForeignKey("associations.id")),
    Column("last_login", String(32)),
    Column("created_at", String(32), nullable=False),
    CheckConstraint("role IN ('member', 'admin', 'super_admin')", name="ck_user_role"),
    CheckConstraint("role = 'super_admin' OR association_id IS NOT NULL", name="ck_user_association"),
)

_members = Table(
    "members",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), ForeignKey("users.id"), nullable=False, unique=True),
    Column("association_id", String(36), ForeignKey("associations.id"), nullable=False),
    Column("member_code", String(20), nullable=False, unique=True),
    Column("status", String(20), nullable=False, server_default="pending"),
    Column("name", String(255), nullable=False),
    Column("email", String(255), nullable=False),
    Column("phone", String(20)),
    Column("address", String(500)),
    Column("date_of_birth", String(10)),  # YYYY-MM-DD
    Column("membership_type", String(20), nullable=False, server_default="regular"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    CheckConstraint(
        "status IN ('pending', 'active', 'inactive', 'suspended')",
        name="ck_member_status",
    ),
)

# Tables carrying a tenant column, for the optional PostgreSQL row policies.
_TENANT_TABLES = {"users": "association_id", "members": "association_id"}

# Profile fields an update_member call may change.
MEMBER_PROFILE_FIELDS = frozenset({"name", "email", "phone", "address", "date_of_birth", "membership_type"})

_MEMBER_CODE_DIGITS = 6


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _new_id() -> str:
    return str(uuid.uuid4())


def normalize_email(email: str) -> str:
    return email.strip().lower()


def format_member_code(association_code: str, counter: int) -> str:
    """Return e.g. ACME000042 for ("ACME", 42)."""
    return f"{association_code}{counter:0{_MEMBER_CODE_DIGITS}d}"


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class MembershipStore:
    """Repository for Association, User, and Member records.

    Usage:
        gateway = DataGateway("sqlite:///portal.db")
        store = MembershipStore(gateway)
        with gateway.transaction(SecurityContext.system()) as conn:
            assoc_id = store.insert_association(conn, Association(name="Acme", code="ACME"))
    """

    def __init__(self, gateway: DataGateway) -> None:
        self.gateway = gateway
        metadata.create_all(gateway.engine)
        gateway.install_row_policies(_TENANT_TABLES)

    # ------------------------------------------------------------------
    # Associations
    # ------------------------------------------------------------------

    def insert_association(self, conn: Connection, association: Association) -> str:
        """Insert an association and return its id.

        Raises sqlalchemy.exc.IntegrityError if the code already exists.
        """
        association_id = _new_id()
        conn.execute(
            _associations.insert().values(
                id=association_id,
                name=association.name,
                code=association.code,
                status=association.status,
                description=association.description,
                created_at=_now_iso(),
            )
        )
        return association_id

    def get_association(self, conn: Connection, association_id: str) -> Optional[Association]:
        """Fetch an association by id, or None if missing or outside the caller's tenant."""
        row = conn.execute(
            _associations.select().where(
                (_associations.c.id == association_id) & tenant_filter(conn, _associations.c.id)
            )
        ).first()
        return _row_to_association(row) if row is not None else None

    def get_association_by_code(self, conn: Connection, code: str) -> Optional[Association]:
        row = conn.execute(_associations.select().where(_associations.c.code == code.upper())).first()
        return _row_to_association(row) if row is not None else None

    def code_exists(self, conn: Connection, code: str) -> bool:
        row = conn.execute(select(_associations.c.id).where(_associations.c.code == code.upper())).first()
        return row is not None

    def list_associations(self, conn: Connection) -> list[tuple[Association, int]]:
        """Return visible associations with their member counts, ordered by name."""
        member_count = func.count(_members.c.id)
        rows = conn.execute(
            select(_associations, member_count.label("member_count"))
            .select_from(_associations.outerjoin(_members, _members.c.association_id == _associations.c.id))
            .where(tenant_filter(conn, _associations.c.id))
            .group_by(*_associations.c)
            .order_by(_associations.c.name)
        ).fetchall()
        return [(_row_to_association(r), r.member_count) for r in rows]

    def update_association(self, conn: Connection, association_id: str, **fields) -> bool:
        """Update name and/or description. The code is immutable once members exist."""
        unknown = set(fields) - {"name", "description"}
        if unknown:
            raise ValueError(f"Unknown association fields: {unknown!r}")
        result = conn.execute(
            _associations.update()
            .where((_associations.c.id == association_id) & tenant_filter(conn, _associations.c.id))
            .values(**fields)
        )
        return result.rowcount > 0

    def set_association_status(self, conn: Connection, association_id: str, status: str) -> bool:
        result = conn.execute(
            _associations.update().where(_associations.c.id == association_id).values(status=status)
        )
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def email_exists(self, conn: Connection, email: str) -> bool:
        """Global check, deliberately not tenant-filtered: email uniqueness spans associations."""
        row = conn.execute(select(_users.c.id).where(_users.c.email == normalize_email(email))).first()
        return row is not None

    def insert_user(self, conn: Connection, user: User) -> str:
        """Insert a user and return its id.

        Raises sqlalchemy.exc.IntegrityError if the email already exists --
        the lifecycle manager treats that as a concurrent duplicate.
        """
        user_id = _new_id()
        conn.execute(
            _users.insert().values(
                id=user_id,
                email=normalize_email(user.email),
                password_hash=user.password_hash,
                name=user.name,
                role=user.role,
                association_id=user.association_id,
                created_at=_now_iso(),
            )
        )
        return user_id

    def get_user(self, conn: Connection, user_id: str) -> Optional[User]:
        row = conn.execute(
            _users.select().where((_users.c.id == user_id) & tenant_filter(conn, _users.c.association_id))
        ).first()
        return _row_to_user(row) if row is not None else None

    def get_user_by_email(self, conn: Connection, email: str) -> Optional[User]:
        row = conn.execute(_users.select().where(_users.c.email == normalize_email(email))).first()
        return _row_to_user(row) if row is not None else None

    def update_password(self, conn: Connection, user_id: str, password_hash: str) -> bool:
        result = conn.execute(_users.update().where(_users.c.id == user_id).values(password_hash=password_hash))
        return result.rowcount > 0

    def update_user_email(self, conn: Connection, user_id: str, email: str) -> bool:
        result = conn.execute(_users.update().where(_users.c.id == user_id).values(email=normalize_email(email)))
        return result.rowcount > 0

    def touch_last_login(self, conn: Connection, user_id: str) -> None:
        """Stamp the current UTC timestamp as last_login for the given user."""
        conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=_now_iso()))

    # ------------------------------------------------------------------
    # Members
    # ------------------------------------------------------------------

    def next_member_code(self, conn: Connection, association: Association) -> str:
        """Return the next free member code for association.

        Reads the highest existing code with this association's prefix. Two
        concurrent registrations can compute the same value; the UNIQUE
        constraint on member_code rejects the loser, which retries.
        """
        prefix = association.code
        row = conn.execute(
            select(func.max(_members.c.member_code)).where(
                (_members.c.association_id == association.id) & _members.c.member_code.startswith(prefix)
            )
        ).first()
        current = row[0] if row is not None else None
        counter = 0
        if current:
            suffix = current[len(prefix) :]
            counter = int(suffix) if suffix.isdigit() else 0
        return format_member_code(prefix, counter + 1)

    def insert_member(self, conn: Connection, member: Member) -> str:
        """Insert a member record and return its id."""
        member_id = _new_id()
        now = _now_iso()
        conn.execute(
            _members.insert().values(
                id=member_id,
                user_id=member.user_id,
                association_id=member.association_id,
                member_code=member.member_code,
                status=member.status,
                name=member.name,
                email=normalize_email(member.email),
                phone=member.phone,
                address=member.address,
                date_of_birth=member.date_of_birth,
                membership_type=member.membership_type,
                created_at=now,
                updated_at=now,
            )
        )
        return member_id

    def _member_query(self, conn: Connection):
        return (
            select(_members, _users.c.last_login)
            .select_from(_members.outerjoin(_users, _members.c.user_id == _users.c.id))
            .where(tenant_filter(conn, _members.c.association_id))
        )

    def get_member(self, conn: Connection, member_id: str) -> Optional[Member]:
        row = conn.execute(self._member_query(conn).where(_members.c.id == member_id)).first()
        return _row_to_member(row) if row is not None else None

    def get_member_by_user(self, conn: Connection, user_id: str) -> Optional[Member]:
        row = conn.execute(self._member_query(conn).where(_members.c.user_id == user_id)).first()
        return _row_to_member(row) if row is not None else None

    def list_members(
        self,
        conn: Connection,
        association_id: Optional[str] = None,
        status: Optional[str] = None,
        search: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Member], int]:
        """Return (page of members, total matching count), newest first.

        The total honours the same association/status/search filters as the
        page. association_id=None means "every association the bound context
        can see".
        """
        conditions = [tenant_filter(conn, _members.c.association_id)]
        if association_id is not None:
            conditions.append(_members.c.association_id == association_id)
        if status:
            conditions.append(_members.c.status == status)
        if search:
            conditions.append(
                or_(
                    _members.c.name.icontains(search, autoescape=True),
                    _members.c.email.icontains(search, autoescape=True),
                )
            )

        total = conn.execute(select(func.count()).select_from(_members).where(*conditions)).scalar() or 0
        rows = conn.execute(
            select(_members, _users.c.last_login)
            .select_from(_members.outerjoin(_users, _members.c.user_id == _users.c.id))
            .where(*conditions)
            .order_by(_members.c.created_at.desc(), _members.c.id)
            .limit(limit)
            .offset(offset)
        ).fetchall()
        return [_row_to_member(r) for r in rows], total

    def transition_status(self, conn: Connection, member_id: str, from_status: str, to_status: str) -> bool:
        """Move a member from from_status to to_status atomically.

        The WHERE clause includes the expected current status, so two
        concurrent transitions cannot both succeed. Returns False if the row
        is missing, outside the bound tenant, or no longer in from_status.
        """
        result = conn.execute(
            _members.update()
            .where(
                (_members.c.id == member_id)
                & (_members.c.status == from_status)
                & tenant_filter(conn, _members.c.association_id)
            )
            .values(status=to_status, updated_at=_now_iso())
        )
        return result.rowcount > 0

    def update_member_profile(self, conn: Connection, member_id: str, **fields) -> bool:
        """Update profile fields on a member. Only MEMBER_PROFILE_FIELDS are accepted.

        Unknown keys raise ValueError rather than being silently ignored.
        """
        unknown = set(fields) - MEMBER_PROFILE_FIELDS
        if unknown:
            raise ValueError(f"Unknown member fields: {unknown!r}")
        if "email" in fields:
            fields["email"] = normalize_email(fields["email"])
        result = conn.execute(
            _members.update()
            .where((_members.c.id == member_id) & tenant_filter(conn, _members.c.association_id))
            .values(updated_at=_now_iso(), **fields)
        )
        return result.rowcount > 0

    def status_counts(self, conn: Connection, association_id: str) -> dict[str, int]:
        """Return total/active/pending/inactive/suspended counts for one association."""

        def _count(status: str):
            return func.count(case((_members.c.status == status, 1)))

        row = conn.execute(
            select(
                func.count(_members.c.id).label("total"),
                _count("active").label("active"),
                _count("pending").label("pending"),
                _count("inactive").label("inactive"),
                _count("suspended").label("suspended"),
            ).where((_members.c.association_id == association_id) & tenant_filter(conn, _members.c.association_id))
        ).first()
        return {
            "total": row.total or 0,
            "active": row.active or 0,
            "pending": row.pending or 0,
            "inactive": row.inactive or 0,
            "suspended": row.suspended or 0,
        }

    def close(self) -> None:
        self.gateway.close()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_association(row) -> Association:
    return Association(
        id=row.id,
        name=row.name,
        code=row.code,
        status=row.status,
        description=row.description,
        created_at=row.created_at,
    )


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        name=row.name,
        role=row.role,
        password_hash=row.password_hash,
        association_id=row.association_id,
        last_login=row.last_login,
        created_at=row.created_at,
    )


def _row_to_member(row) -> Member:
    return Member(
        id=row.id,
        user_id=row.user_id,
        association_id=row.association_id,
        member_code=row.member_code,
        status=row.status,
        name=row.name,
        email=row.email,
        phone=row.phone,
        address=row.address,
        date_of_birth=row.date_of_birth,
        membership_type=row.membership_type,
        created_at=row.created_at,
        updated_at=row.updated_at,
        # last_login only exists on rows from the users join.
        last_login=getattr(row, "last_login", None),
    )
