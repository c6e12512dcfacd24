"""
tests/conftest.py -- Shared test fixtures for member portal tests.

This module provides:
  - RecordingNotifier: captures notifications instead of sending them
  - make_portal(): isolated in-memory DB with two associations, their admins,
    and a super_admin, plus the services wired on top
  - portal: function-scoped Portal for service-level tests
  - api_client: module-scoped TestClient wired to its own Portal

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool and the gateway pools
several connections. Plain :memory: DBs are per-connection and would present
a blank schema to each of them. The named URI format
(file:name?mode=memory&cache=shared&uri=true) shares one in-memory instance
across all connections in the same process.

Environment must be set before any auth/core import:
  DEBUG=true         -- get_settings() auto-generates SECRET_KEY.
  BCRYPT_ROUNDS=4    -- minimum cost; keeps the suite fast.
  ALLOWED_HOSTS      -- TestClient sends Host: testserver.
  LOGIN_RATE_LIMIT   -- the suite logs in far more than 10 times a minute.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass

# CRITICAL: Set before any auth/core import -- get_settings() is cached on first call.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.models import ROLE_ADMIN, ROLE_SUPER_ADMIN, SessionClaims
from membership.associations import AssociationService
from membership.gateway import DataGateway
from membership.lifecycle import AccountLifecycle
from membership.models import Association, Member
from membership.notifier import NotificationDispatcher
from membership.store import MembershipStore

ADMIN_PASSWORD = "adminpass123"
MEMBER_PASSWORD = "memberpass123"

# ---------------------------------------------------------------------------
# Notifier double
# ---------------------------------------------------------------------------


class RecordingNotifier:
    """Records (kind, member email, association code) tuples. Can be told to fail."""

    def __init__(self, fail: bool = False) -> None:
        self.sent: list[tuple[str, str, str]] = []
        self.fail = fail

    def _record(self, kind: str, member: Member, association: Association) -> None:
        if self.fail:
            raise ConnectionError("mail provider unreachable")
        self.sent.append((kind, member.email, association.code))

    def send_welcome(self, member: Member, association: Association) -> None:
        self._record("welcome", member, association)

    def send_approval(self, member: Member, association: Association) -> None:
        self._record("approval", member, association)


# ---------------------------------------------------------------------------
# Portal builder
# ---------------------------------------------------------------------------


@dataclass
class Portal:
    """A fully wired portal over an isolated database, with seed data."""

    gateway: DataGateway
    store: MembershipStore
    lifecycle: AccountLifecycle
    associations: AssociationService
    notifier: RecordingNotifier
    assoc_a: Association
    assoc_b: Association
    admin_a: SessionClaims
    admin_b: SessionClaims
    super_admin: SessionClaims

    def register_member(self, name: str, email: str, association: Association | None = None):
        association = association or self.assoc_a
        return self.lifecycle.register(name, email, MEMBER_PASSWORD, association.id)

    def active_member(self, name: str, email: str, association: Association | None = None) -> SessionClaims:
        """Register and approve a member, then log them in. Returns their claims."""
        association = association or self.assoc_a
        reg = self.register_member(name, email, association)
        approver = self.admin_a if association.id == self.assoc_a.id else self.admin_b
        self.lifecycle.approve_member(approver, reg.member_id)
        return self.lifecycle.login(email, MEMBER_PASSWORD, association.id).claims


def _db_url(db_suffix: str) -> str:
    return f"sqlite:///file:test_portal_{db_suffix}?mode=memory&cache=shared&uri=true"


def make_portal(db_suffix: str, pool_size: int = 5, notifier: RecordingNotifier | None = None) -> Portal:
    """Create an isolated portal: associations ALPHA and BETA, one admin each, one super_admin."""
    gateway = DataGateway(_db_url(db_suffix), pool_size=pool_size, pool_timeout=1.0)
    store = MembershipStore(gateway)
    notifier = notifier or RecordingNotifier()
    lifecycle = AccountLifecycle(store, NotificationDispatcher(notifier))
    associations = AssociationService(store)

    assoc_a = associations.create_association(None, "Alpha Club", "ALPHA")
    assoc_b = associations.create_association(None, "Beta Society", "BETA")

    lifecycle.provision_user("admin-a@example.com", "Admin A", ADMIN_PASSWORD, ROLE_ADMIN, assoc_a.id)
    lifecycle.provision_user("admin-b@example.com", "Admin B", ADMIN_PASSWORD, ROLE_ADMIN, assoc_b.id)
    lifecycle.provision_user("root@example.com", "Root", ADMIN_PASSWORD, ROLE_SUPER_ADMIN)

    return Portal(
        gateway=gateway,
        store=store,
        lifecycle=lifecycle,
        associations=associations,
        notifier=notifier,
        assoc_a=assoc_a,
        assoc_b=assoc_b,
        admin_a=lifecycle.login("admin-a@example.com", ADMIN_PASSWORD, assoc_a.id).claims,
        admin_b=lifecycle.login("admin-b@example.com", ADMIN_PASSWORD, assoc_b.id).claims,
        super_admin=lifecycle.login("root@example.com", ADMIN_PASSWORD).claims,
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def portal() -> Generator[Portal, None, None]:
    """Fresh portal per test -- each gets its own uniquely named in-memory DB."""
    p = make_portal(uuid.uuid4().hex)
    yield p
    p.store.close()


def _patch_lifespan(p: Portal):
    """Return an async context manager that replaces the real lifespan.

    Wires the test portal into app.state so TestClient routes see the
    isolated test DB and the recording notifier, not real infrastructure.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.gateway = p.gateway
        app.state.store = p.store
        app.state.lifecycle = p.lifecycle
        app.state.associations = p.associations
        app.state.dispatcher = p.lifecycle.dispatcher
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, Portal], None, None]:
    """Yield (client, portal) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so tests
    hit real route handlers, middleware, and exception handlers.
    """
    p = make_portal(f"api_{uuid.uuid4().hex}")
    app.router.lifespan_context = _patch_lifespan(p)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, p

    p.store.close()
