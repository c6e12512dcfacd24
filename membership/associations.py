"""
membership/associations.py -- Association (tenant) management.

Creating associations and switching them on or off is platform work for
super_admin. Association admins may view and rename their own association.
get_association_by_code() is the one public lookup: the registration form
resolves the code a prospective member types in to an association id.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.access import Action, Target, authorize, require
from auth.models import SessionClaims
from core.errors import DuplicateCode, NotFound, ValidationFailed
from membership.gateway import SecurityContext
from membership.models import ASSOCIATION_STATUSES, Association
from membership.store import MembershipStore

logger = logging.getLogger("memberportal.associations")

_CODE_RE = re.compile(r"^[A-Z0-9]{2,10}$")


def normalize_code(code: str) -> str:
    """Upper-case and validate an association code. Raises ValidationFailed."""
    normalized = code.strip().upper()
    if not _CODE_RE.match(normalized):
        raise ValidationFailed("Association code must be 2-10 letters or digits.")
    return normalized


class AssociationService:
    def __init__(self, store: MembershipStore) -> None:
        self.store = store
        self.gateway = store.gateway

    def create_association(
        self,
        caller: Optional[SessionClaims],
        name: str,
        code: str,
        description: Optional[str] = None,
    ) -> Association:
        """Create an active association.

        caller=None is reserved for operator tooling (the CLI), which runs
        with the system context. Raises DuplicateCode if the code is taken.
        """
        if caller is not None:
            require(caller, Action.CREATE_ASSOCIATION, Target())
        name = name.strip()
        if not name:
            raise ValidationFailed("Association name is required.")
        code = normalize_code(code)

        ctx = SecurityContext.for_caller(caller) if caller is not None else SecurityContext.system()
        try:
            with self.gateway.transaction(ctx) as conn:
                if self.store.code_exists(conn, code):
                    raise DuplicateCode()
                association_id = self.store.insert_association(
                    conn, Association(name=name, code=code, description=description)
                )
                association = self.store.get_association(conn, association_id)
        except IntegrityError as exc:
            raise DuplicateCode() from exc
        logger.info("Association created: %s (%s)", association.code, association.id)
        return association

    def get_association_by_code(self, code: str) -> Association:
        """Public lookup used by the registration form. Only active associations are returned."""
        with self.gateway.session(SecurityContext.system()) as conn:
            association = self.store.get_association_by_code(conn, code.strip())
        if association is None or association.status != "active":
            raise NotFound("Association not found.")
        return association

    def get_association(self, caller: SessionClaims, association_id: str) -> Association:
        require(caller, Action.VIEW_ASSOCIATION, Target(association_id=association_id))
        with self.gateway.session(SecurityContext.for_caller(caller)) as conn:
            association = self.store.get_association(conn, association_id)
        if association is None:
            raise NotFound("Association not found.")
        return association

    def list_associations(self, caller: SessionClaims) -> list[tuple[Association, int]]:
        """Return (association, member_count) pairs the caller may see.

        super_admin sees every association; an admin sees only their own.
        """
        if not authorize(caller, Action.LIST_ALL_ASSOCIATIONS, Target()):
            require(caller, Action.VIEW_ASSOCIATION, Target(association_id=caller.association_id))
        with self.gateway.session(SecurityContext.for_caller(caller)) as conn:
            return self.store.list_associations(conn)

    def update_association(
        self,
        caller: SessionClaims,
        association_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Association:
        require(caller, Action.UPDATE_ASSOCIATION, Target(association_id=association_id))
        fields = {}
        if name is not None:
            if not name.strip():
                raise ValidationFailed("Association name is required.")
            fields["name"] = name.strip()
        if description is not None:
            fields["description"] = description
        if not fields:
            raise ValidationFailed("No fields to update.")
        with self.gateway.transaction(SecurityContext.for_caller(caller)) as conn:
            if not self.store.update_association(conn, association_id, **fields):
                raise NotFound("Association not found.")
            return self.store.get_association(conn, association_id)

    def set_association_status(self, caller: SessionClaims, association_id: str, status: str) -> Association:
        """Activate or deactivate an association.

        Deactivating blocks new registrations and logins for its users;
        tokens already issued stay valid until they expire.
        """
        if status not in ASSOCIATION_STATUSES:
            raise ValidationFailed(f"Unknown association status {status!r}.")
        require(caller, Action.SET_ASSOCIATION_STATUS, Target(association_id=association_id))
        with self.gateway.transaction(SecurityContext.for_caller(caller)) as conn:
            if not self.store.set_association_status(conn, association_id, status):
                raise NotFound("Association not found.")
            association = self.store.get_association(conn, association_id)
        logger.info("Association %s set to %s by user %s", association_id, status, caller.user_id)
        return association
