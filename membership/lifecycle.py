"""
membership/lifecycle.py -- Account Lifecycle Manager.

Owns registration, login, token authentication, password changes, and the
member status state machine:

    pending ──approve──> active <──> inactive
                           │            │
                           └──> suspended <┘   (suspended -> active|inactive by admin)

Every operation follows the same shape:
  1. Validate input and check for conflicts (no transaction open yet).
  2. Look up the target under the system context just far enough to know
     whose record it is, then ask auth/access.py whether the caller may act.
  3. Do the read or write under the *caller's* SecurityContext, so the
     gateway's row filter applies as a second check.
  4. After commit, hand any notification to the dispatcher. Its failure is
     logged there and never reaches the caller.

Security:
  [C1] login() always runs bcrypt, against DUMMY_HASH when the email is
       unknown, so response time does not reveal which accounts exist.
  Every login failure except PendingApproval is the same InvalidCredentials:
  unknown email, wrong password, wrong association, inactive association.
"""

from __future__ import annotations

import logging
import re
from datetime import date
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.access import Action, Target, require
from auth.models import ROLE_ADMIN, ROLE_MEMBER, ROLE_SUPER_ADMIN, SessionClaims
from auth.passwords import DUMMY_HASH, hash_password, verify_password
from auth.tokens import issue_session_token, verify_session_token
from core.config import Settings, get_settings
from core.errors import (
    AlreadyApproved,
    DuplicateAccount,
    InvalidAssociation,
    InvalidCredentials,
    InvalidToken,
    InvalidTransition,
    NotFound,
    PendingApproval,
    Unexpected,
    ValidationFailed,
    WrongCurrentPassword,
)
from membership.gateway import SecurityContext
from membership.models import MEMBER_STATUSES, MEMBERSHIP_TYPES, Member, MemberPage, Profile, User
from membership.notifier import NotificationDispatcher
from membership.store import MembershipStore, normalize_email

logger = logging.getLogger("memberportal.lifecycle")

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

# Attempts at picking a free member code before giving up on a registration.
_MEMBER_CODE_ATTEMPTS = 3

MAX_PAGE_SIZE = 100

# Profile fields a PUT may set back to null.
CLEARABLE_PROFILE_FIELDS = frozenset({"phone", "address", "date_of_birth"})

# Administrative status changes. pending -> active goes through approve_member().
ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"active"}),
    "active": frozenset({"inactive", "suspended"}),
    "inactive": frozenset({"active", "suspended"}),
    "suspended": frozenset({"active", "inactive"}),
}


@dataclass(frozen=True)
class Registration:
    user_id: str
    member_id: str
    member_code: str


@dataclass(frozen=True)
class LoginResult:
    token: str
    claims: SessionClaims


class AccountLifecycle:
    """Registration, login, and member workflow on top of MembershipStore."""

    def __init__(
        self,
        store: MembershipStore,
        dispatcher: NotificationDispatcher,
        settings: Optional[Settings] = None,
    ) -> None:
        self.store = store
        self.gateway = store.gateway
        self.dispatcher = dispatcher
        self.settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Validation helpers
    # ------------------------------------------------------------------

    def _check_password(self, password: str) -> None:
        if len(password) < self.settings.min_password_length:
            raise ValidationFailed(f"Password must be at least {self.settings.min_password_length} characters.")

    @staticmethod
    def _check_email(email: str) -> str:
        normalized = normalize_email(email)
        if not _EMAIL_RE.match(normalized):
            raise ValidationFailed("A valid email address is required.")
        return normalized

    @staticmethod
    def _check_date(value) -> str:
        text = str(value)
        if not _DATE_RE.match(text):
            raise ValidationFailed("date_of_birth must be YYYY-MM-DD.")
        try:
            return date.fromisoformat(text).isoformat()
        except ValueError as exc:
            raise ValidationFailed(f"date_of_birth {text!r} is not a calendar date.") from exc

    @staticmethod
    def _check_name(name: str) -> str:
        name = name.strip()
        if not name:
            raise ValidationFailed("Name is required.")
        return name

    def _locate_member(self, member_id: str) -> Member:
        """Find a member regardless of tenant, for the authorization decision only."""
        with self.gateway.session(SecurityContext.system()) as conn:
            member = self.store.get_member(conn, member_id)
        if member is None:
            raise NotFound("Member not found.")
        return member

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(
        self,
        name: str,
        email: str,
        password: str,
        association_id: str,
        phone: Optional[str] = None,
    ) -> Registration:
        """Create a pending member account: one User plus one Member, atomically.

        Raises ValidationFailed, DuplicateAccount, or InvalidAssociation before
        any transaction starts. A duplicate that slips in concurrently is caught
        by the UNIQUE constraint, rolled back, and reported as DuplicateAccount.
        """
        name = self._check_name(name)
        email = self._check_email(email)
        self._check_password(password)

        system = SecurityContext.system()
        with self.gateway.session(system) as conn:
            if self.store.email_exists(conn, email):
                raise DuplicateAccount()
            association = self.store.get_association(conn, association_id)
        if association is None or association.status != "active":
            raise InvalidAssociation()

        password_hash = hash_password(password)

        member: Optional[Member] = None
        for attempt in range(1, _MEMBER_CODE_ATTEMPTS + 1):
            try:
                with self.gateway.transaction(system) as conn:
                    user_id = self.store.insert_user(
                        conn,
                        User(
                            email=email,
                            name=name,
                            role=ROLE_MEMBER,
                            password_hash=password_hash,
                            association_id=association.id,
                        ),
                    )
                    member = Member(
                        user_id=user_id,
                        association_id=association.id,
                        name=name,
                        email=email,
                        phone=phone,
                        status="pending",
                        member_code=self.store.next_member_code(conn, association),
                    )
                    member.id = self.store.insert_member(conn, member)
                break
            except IntegrityError as exc:
                with self.gateway.session(system) as conn:
                    if self.store.email_exists(conn, email):
                        raise DuplicateAccount() from exc
                if attempt == _MEMBER_CODE_ATTEMPTS:
                    logger.error("Gave up allocating a member code for association %s: %s", association.code, exc)
                    raise Unexpected("Could not allocate a member code.") from exc
                logger.info("Member code collision for association %s, retrying", association.code)

        self.dispatcher.welcome(member, association)
        logger.info(
            "New user registered: user=%s member=%s association=%s",
            member.user_id,
            member.id,
            association.id,
        )
        return Registration(user_id=member.user_id, member_id=member.id, member_code=member.member_code)

    def provision_user(
        self,
        email: str,
        name: str,
        password: str,
        role: str,
        association_id: Optional[str] = None,
    ) -> str:
        """Create an admin or super_admin account directly. Operator tooling only.

        Members must go through register() so they get a Member record and
        the approval workflow.
        """
        if role not in (ROLE_ADMIN, ROLE_SUPER_ADMIN):
            raise ValidationFailed("Only admin and super_admin accounts can be provisioned.")
        name = self._check_name(name)
        email = self._check_email(email)
        self._check_password(password)
        if role == ROLE_SUPER_ADMIN:
            association_id = None

        system = SecurityContext.system()
        with self.gateway.session(system) as conn:
            if self.store.email_exists(conn, email):
                raise DuplicateAccount()
            if role == ROLE_ADMIN:
                association = self.store.get_association(conn, association_id) if association_id else None
                if association is None or association.status != "active":
                    raise InvalidAssociation()

        try:
            with self.gateway.transaction(system) as conn:
                user_id = self.store.insert_user(
                    conn,
                    User(
                        email=email,
                        name=name,
                        role=role,
                        password_hash=hash_password(password),
                        association_id=association_id,
                    ),
                )
        except IntegrityError as exc:
            raise DuplicateAccount() from exc
        logger.info("Provisioned %s account %s", role, user_id)
        return user_id

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def login(self, email: str, password: str, association_id: Optional[str] = None) -> LoginResult:
        """Verify credentials and return a session token.

        Raises InvalidCredentials for every credential or tenant problem and
        PendingApproval when a member's credentials are right but the
        account is not active yet.
        """
        with self.gateway.session(SecurityContext.system()) as conn:
            user = self.store.get_user_by_email(conn, email)
            member = None
            association = None
            if user is not None:
                if user.role == ROLE_MEMBER:
                    member = self.store.get_member_by_user(conn, user.id)
                if user.association_id is not None:
                    association = self.store.get_association(conn, user.association_id)

        # Always pay the bcrypt cost, even for unknown emails [C1].
        password_ok = verify_password(password, user.password_hash if user is not None else DUMMY_HASH)

        if user is None or not password_ok:
            logger.warning("Login failed: invalid credentials (association=%s)", association_id)
            raise InvalidCredentials()
        if association_id is not None and user.association_id != association_id:
            logger.warning("Login failed: association mismatch for user %s", user.id)
            raise InvalidCredentials()
        if user.role != ROLE_SUPER_ADMIN:
            if association_id is None and not self.settings.allow_login_without_association:
                logger.warning("Login failed: association required for user %s", user.id)
                raise InvalidCredentials()
            if association is None or association.status != "active":
                logger.warning("Login failed: association inactive for user %s", user.id)
                raise InvalidCredentials()
        if user.role == ROLE_MEMBER and (member is None or member.status != "active"):
            raise PendingApproval(member.status if member is not None else "pending")

        claims = SessionClaims(
            user_id=user.id,
            email=user.email,
            role=user.role,
            association_id=user.association_id,
        )
        with self.gateway.transaction(SecurityContext.for_caller(claims)) as conn:
            self.store.touch_last_login(conn, user.id)

        token = issue_session_token(claims)
        logger.info("User logged in: user=%s role=%s", user.id, user.role)
        return LoginResult(token=token, claims=verify_session_token(token) or claims)

    def authenticate(self, token: str) -> SessionClaims:
        """Return the claims of a valid token; InvalidToken for anything else."""
        claims = verify_session_token(token)
        if claims is None:
            raise InvalidToken()
        return claims

    def change_password(
        self,
        user_id: str,
        current_password: str,
        new_password: str,
        caller: Optional[SessionClaims] = None,
    ) -> None:
        """Replace a user's password after checking the current one.

        When caller is given (the API always passes it) the change must pass
        the update_user rule, i.e. it is the caller's own account.
        """
        self._check_password(new_password)
        ctx = SecurityContext.for_caller(caller) if caller is not None else SecurityContext.system()
        with self.gateway.session(SecurityContext.system()) as conn:
            user = self.store.get_user(conn, user_id)
        if user is None:
            raise NotFound("User not found.")
        if caller is not None:
            require(caller, Action.UPDATE_USER, Target(association_id=user.association_id, owner_user_id=user.id))
        if not verify_password(current_password, user.password_hash):
            raise WrongCurrentPassword()

        with self.gateway.transaction(ctx) as conn:
            self.store.update_password(conn, user.id, hash_password(new_password))
        logger.info("Password changed for user %s", user.id)

    def get_profile(self, caller: SessionClaims) -> Profile:
        """Return the caller's own user, member, and association records."""
        require(caller, Action.READ_USER, Target(association_id=caller.association_id, owner_user_id=caller.user_id))
        with self.gateway.session(SecurityContext.for_caller(caller)) as conn:
            user = self.store.get_user(conn, caller.user_id)
            if user is None:
                raise NotFound("User not found.")
            member = self.store.get_member_by_user(conn, user.id)
            association = self.store.get_association(conn, user.association_id) if user.association_id else None
        return Profile(user=user, member=member, association=association)

    # ------------------------------------------------------------------
    # Members
    # ------------------------------------------------------------------

    def list_members(
        self,
        caller: SessionClaims,
        status: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 50,
        association_id: Optional[str] = None,
    ) -> MemberPage:
        """Return one page of members in the caller's association.

        super_admin may pass association_id to pick a tenant, or omit it to
        list across all of them. Anyone else naming a foreign association is
        denied by the evaluator.
        """
        if page < 1:
            raise ValidationFailed("page must be >= 1.")
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValidationFailed(f"limit must be between 1 and {MAX_PAGE_SIZE}.")
        if status is not None and status not in MEMBER_STATUSES:
            raise ValidationFailed(f"Unknown member status {status!r}.")

        scope = association_id or caller.association_id
        require(caller, Action.LIST_MEMBERS, Target(association_id=scope))

        with self.gateway.session(SecurityContext.for_caller(caller)) as conn:
            items, total = self.store.list_members(
                conn,
                association_id=scope,
                status=status,
                search=search.strip() if search else None,
                limit=limit,
                offset=(page - 1) * limit,
            )
        return MemberPage(items=items, total_count=total, page=page, limit=limit)

    def get_member(self, caller: SessionClaims, member_id: str) -> Member:
        target = self._locate_member(member_id)
        require(
            caller,
            Action.READ_MEMBER,
            Target(association_id=target.association_id, owner_user_id=target.user_id),
        )
        with self.gateway.session(SecurityContext.for_caller(caller)) as conn:
            member = self.store.get_member(conn, member_id)
        if member is None:
            raise NotFound("Member not found.")
        return member

    def update_member(self, caller: SessionClaims, member_id: str, **fields) -> Member:
        """Update profile fields. An email change is mirrored onto the User row in the same transaction."""
        target = self._locate_member(member_id)
        require(
            caller,
            Action.UPDATE_MEMBER,
            Target(association_id=target.association_id, owner_user_id=target.user_id),
        )

        # None leaves required fields alone and clears the optional ones.
        updates = {k: v for k, v in fields.items() if v is not None or k in CLEARABLE_PROFILE_FIELDS}
        if "name" in updates:
            updates["name"] = self._check_name(updates["name"])
        if "email" in updates:
            updates["email"] = self._check_email(updates["email"])
        if "membership_type" in updates and updates["membership_type"] not in MEMBERSHIP_TYPES:
            raise ValidationFailed(f"Unknown membership type {updates['membership_type']!r}.")
        if updates.get("date_of_birth") is not None:
            updates["date_of_birth"] = self._check_date(updates["date_of_birth"])
        if not updates:
            raise ValidationFailed("No fields to update.")

        email_changed = "email" in updates and updates["email"] != target.email
        if email_changed:
            with self.gateway.session(SecurityContext.system()) as conn:
                if self.store.email_exists(conn, updates["email"]):
                    raise DuplicateAccount()

        try:
            with self.gateway.transaction(SecurityContext.for_caller(caller)) as conn:
                if not self.store.update_member_profile(conn, member_id, **updates):
                    raise NotFound("Member not found.")
                if email_changed:
                    self.store.update_user_email(conn, target.user_id, updates["email"])
                member = self.store.get_member(conn, member_id)
        except IntegrityError as exc:
            raise DuplicateAccount() from exc
        logger.info("Member %s updated by user %s", member_id, caller.user_id)
        return member

    def approve_member(self, caller: SessionClaims, member_id: str) -> Member:
        """Move a pending member to active and send the approval notification.

        Safe to call twice: the second call raises AlreadyApproved. The update
        is conditional on status='pending', so concurrent approvals cannot
        both succeed.
        """
        target = self._locate_member(member_id)
        require(
            caller,
            Action.APPROVE_MEMBER,
            Target(association_id=target.association_id, owner_user_id=target.user_id),
        )
        if target.status == "active":
            raise AlreadyApproved()
        if target.status != "pending":
            raise InvalidTransition(f"Cannot approve a member in status {target.status!r}.")

        with self.gateway.transaction(SecurityContext.for_caller(caller)) as conn:
            if not self.store.transition_status(conn, member_id, "pending", "active"):
                raise AlreadyApproved()
            member = self.store.get_member(conn, member_id)
            association = self.store.get_association(conn, member.association_id)

        self.dispatcher.approval(member, association)
        logger.info("Member %s approved by user %s", member_id, caller.user_id)
        return member

    def set_member_status(self, caller: SessionClaims, member_id: str, status: str) -> Member:
        """Apply an administrative status change (activate, deactivate, suspend)."""
        if status not in MEMBER_STATUSES:
            raise ValidationFailed(f"Unknown member status {status!r}.")
        target = self._locate_member(member_id)
        require(
            caller,
            Action.CHANGE_MEMBER_STATUS,
            Target(association_id=target.association_id, owner_user_id=target.user_id),
        )
        if target.status == "pending" and status == "active":
            return self.approve_member(caller, member_id)
        if status not in ALLOWED_TRANSITIONS.get(target.status, frozenset()):
            raise InvalidTransition(f"Cannot change status from {target.status!r} to {status!r}.")

        with self.gateway.transaction(SecurityContext.for_caller(caller)) as conn:
            if not self.store.transition_status(conn, member_id, target.status, status):
                raise InvalidTransition("Member status changed concurrently; reload and retry.")
            member = self.store.get_member(conn, member_id)
        logger.info("Member %s status %s -> %s by user %s", member_id, target.status, status, caller.user_id)
        return member

    def member_stats(self, caller: SessionClaims, association_id: Optional[str] = None) -> dict[str, int]:
        """Return member counts per status for one association."""
        scope = association_id or caller.association_id
        if scope is None:
            raise ValidationFailed("association_id is required.")
        require(caller, Action.VIEW_STATS, Target(association_id=scope))
        with self.gateway.session(SecurityContext.for_caller(caller)) as conn:
            return self.store.status_counts(conn, scope)
