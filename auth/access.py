"""
auth/access.py -- Access Control Evaluator.

One ordered rule table decides every (caller, action, target) question in the
portal. Route handlers and the lifecycle manager never re-derive role or
association checks on their own; they call authorize() or require().

Rules, evaluated in order, first match wins:
  1. super_admin                                   -> allow
  2. target has an association != caller's         -> deny
  3. role-gated action, caller is admin            -> allow
     role-gated action, any other role             -> deny
  4. self-access action on the caller's own record -> allow
  5. default                                       -> deny

Record actions (read/update a member or user record) are role-gated when the
target belongs to someone else, and fall through to the self-access rule when
it is the caller's own record. That keeps "members read their own profile"
and "admins read any profile in their association" in the same table without
an extra rule.

Platform actions (creating associations, listing all of them, changing an
association's status) are in neither set, so only rule 1 can allow them.

authorize() is a pure function over its arguments: no I/O, no globals. The
storage layer applies its own row filter as a second line of defence (see
membership/gateway.py), but this module is the primary enforcement point.

Layer rule: no imports from api/ or membership/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from auth.models import ROLE_ADMIN, ROLE_SUPER_ADMIN, SessionClaims
from core.errors import AuthorizationDenied

logger = logging.getLogger("memberportal.auth")


class Action(str, Enum):
    READ_MEMBER = "read_member"
    UPDATE_MEMBER = "update_member"
    READ_USER = "read_user"
    UPDATE_USER = "update_user"
    LIST_MEMBERS = "list_members"
    APPROVE_MEMBER = "approve_member"
    CHANGE_MEMBER_STATUS = "change_member_status"
    VIEW_STATS = "view_stats"
    VIEW_ASSOCIATION = "view_association"
    UPDATE_ASSOCIATION = "update_association"
    CREATE_ASSOCIATION = "create_association"
    LIST_ALL_ASSOCIATIONS = "list_all_associations"
    SET_ASSOCIATION_STATUS = "set_association_status"


# Actions that always need admin or super_admin.
ROLE_GATED_ACTIONS = frozenset(
    {
        Action.LIST_MEMBERS,
        Action.APPROVE_MEMBER,
        Action.CHANGE_MEMBER_STATUS,
        Action.VIEW_STATS,
        Action.VIEW_ASSOCIATION,
        Action.UPDATE_ASSOCIATION,
    }
)

# Actions on a single member/user record; self-access applies to these.
RECORD_ACTIONS = frozenset(
    {
        Action.READ_MEMBER,
        Action.UPDATE_MEMBER,
        Action.READ_USER,
        Action.UPDATE_USER,
    }
)

_ADMIN_ROLES = frozenset({ROLE_ADMIN, ROLE_SUPER_ADMIN})


@dataclass(frozen=True)
class Target:
    """The resource an action is aimed at.

    association_id is None for global resources (creating an association,
    listing every association). owner_user_id is the user who owns a
    member/user record, None for association-wide targets.
    """

    association_id: str | None = None
    owner_user_id: str | None = None


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str

    def __bool__(self) -> bool:
        return self.allowed


def _is_role_gated(caller: SessionClaims, action: Action, target: Target) -> bool:
    if action in ROLE_GATED_ACTIONS:
        return True
    return action in RECORD_ACTIONS and target.owner_user_id != caller.user_id


def authorize(caller: SessionClaims, action: Action, target: Target) -> Decision:
    """Return the Decision for caller performing action on target."""
    if caller.role == ROLE_SUPER_ADMIN:
        return Decision(True, "super_admin")

    if target.association_id is not None and target.association_id != caller.association_id:
        return Decision(False, "association_mismatch")

    if _is_role_gated(caller, action, target):
        if caller.role in _ADMIN_ROLES:
            return Decision(True, "admin_role")
        return Decision(False, "role_required")

    if action in RECORD_ACTIONS and target.owner_user_id == caller.user_id:
        return Decision(True, "self_access")

    return Decision(False, "default_deny")


def require(caller: SessionClaims, action: Action, target: Target) -> None:
    """Raise AuthorizationDenied unless authorize() allows the action."""
    decision = authorize(caller, action, target)
    if not decision.allowed:
        logger.warning(
            "Authorization denied: user=%s role=%s action=%s reason=%s",
            caller.user_id,
            caller.role,
            action.value,
            decision.reason,
        )
        raise AuthorizationDenied()
