"""
membership/gateway.py -- Tenant-Scoped Data Gateway.

Owns the SQLAlchemy engine and its bounded connection pool, and is the only
way the rest of the code base reaches the database. Every logical operation
checks out its own connection, binds the caller's SecurityContext to it, does
its work, and hands the connection back with the binding cleared.

Two entry points:
  session(ctx)      -- read-only work. Whatever the driver auto-begins is
                       rolled back on exit.
  transaction(ctx)  -- begin -> statements -> commit. Any exception rolls the
                       whole transaction back before it propagates, so callers
                       never observe partial state. A caller that stops
                       waiting does not change this: the with-block either
                       commits or rolls back.

Security context binding:
  The context is stored on the checked-out connection (Connection.info) and,
  on PostgreSQL, published to the session with set_config(..., true) so
  row-level-security policies can read it. The set_config values are
  transaction-local and die with the transaction; the info entry is removed
  in a finally block and again by a pool "checkin" listener. A pooled
  connection therefore never carries one request's identity into another.
  There is no module-level "current user" anywhere.

Row visibility:
  tenant_filter(conn, column) builds the WHERE predicate restricting a query
  to the bound caller's association. The repository applies it to every
  tenant-scoped read as a second line of defence behind auth/access.py.

Pool policy:
  QueuePool, pool_size=DB_POOL_SIZE (default 20), no overflow, acquisition
  timeout DB_POOL_TIMEOUT (default 2s). Exhaustion becomes ResourceExhausted
  instead of an unbounded wait.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from sqlalchemy import create_engine, event, false, text, true
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.pool import QueuePool

from auth.models import ROLE_SUPER_ADMIN, SessionClaims
from core.errors import ResourceExhausted

logger = logging.getLogger("memberportal.gateway")

SYSTEM_ROLE = "system"

_CONTEXT_KEY = "memberportal.security_context"


@dataclass(frozen=True)
class SecurityContext:
    """Identity bound to a connection for the duration of one operation.

    The system context is used by flows that run before any identity exists
    (registration, the login lookup) and by admin tooling. It sees every row.
    """

    user_id: str
    role: str
    association_id: str | None = None

    @classmethod
    def system(cls) -> "SecurityContext":
        return cls(user_id="", role=SYSTEM_ROLE)

    @classmethod
    def for_caller(cls, claims: SessionClaims) -> "SecurityContext":
        return cls(user_id=claims.user_id, role=claims.role, association_id=claims.association_id)

    @property
    def sees_all_tenants(self) -> bool:
        return self.role in (ROLE_SUPER_ADMIN, SYSTEM_ROLE)


# ---------------------------------------------------------------------------
# Connection hooks
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign keys on each new SQLite connection.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


def _clear_context_on_checkin(dbapi_conn, connection_record) -> None:
    """Drop any security context still attached when a connection returns to the pool."""
    if connection_record is not None:
        connection_record.info.pop(_CONTEXT_KEY, None)


def bound_context(conn: Connection) -> SecurityContext:
    """Return the SecurityContext bound to conn.

    Raises RuntimeError if none is bound: a tenant-scoped query reached the
    database outside session()/transaction(), which is a programming error.
    """
    ctx = conn.info.get(_CONTEXT_KEY)
    if ctx is None:
        raise RuntimeError("No security context bound to this connection")
    return ctx


def tenant_filter(conn: Connection, column):
    """Return the row-visibility predicate for column under the bound context."""
    ctx = bound_context(conn)
    if ctx.sees_all_tenants:
        return true()
    if ctx.association_id is None:
        return false()
    return column == ctx.association_id


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------


class DataGateway:
    """Pooled, context-binding access to the portal database.

    Usage:
        gateway = DataGateway("sqlite:///portal.db")
        with gateway.transaction(SecurityContext.system()) as conn:
            conn.execute(...)
            conn.execute(...)
        gateway.close()
    """

    def __init__(self, db_url: str, pool_size: int = 20, pool_timeout: float = 2.0) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            # Connections are checked out from FastAPI's worker threads.
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(
            db_url,
            connect_args=connect_args,
            poolclass=QueuePool,
            pool_size=pool_size,
            max_overflow=0,
            pool_timeout=pool_timeout,
        )
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        event.listen(self.engine, "checkin", _clear_context_on_checkin)

    @property
    def is_postgres(self) -> bool:
        return self.engine.dialect.name == "postgresql"

    # ------------------------------------------------------------------
    # Checkout / binding
    # ------------------------------------------------------------------

    def _checkout(self) -> Connection:
        try:
            return self.engine.connect()
        except PoolTimeoutError as exc:
            logger.error("Connection pool exhausted: %s", self.engine.pool.status())
            raise ResourceExhausted() from exc

    def _bind(self, conn: Connection, ctx: SecurityContext) -> None:
        conn.info[_CONTEXT_KEY] = ctx
        if self.is_postgres:
            conn.execute(
                text(
                    "SELECT set_config('app.current_user_id', :uid, true), "
                    "set_config('app.current_role', :role, true), "
                    "set_config('app.current_association_id', :aid, true)"
                ),
                {"uid": ctx.user_id, "role": ctx.role, "aid": ctx.association_id or ""},
            )

    @staticmethod
    def _unbind(conn: Connection) -> None:
        conn.info.pop(_CONTEXT_KEY, None)

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    @contextmanager
    def session(self, ctx: SecurityContext) -> Iterator[Connection]:
        """Yield a connection bound to ctx for read-only work."""
        conn = self._checkout()
        try:
            self._bind(conn, ctx)
            yield conn
        finally:
            self._unbind(conn)
            conn.close()

    @contextmanager
    def transaction(self, ctx: SecurityContext) -> Iterator[Connection]:
        """Yield a connection inside one transaction bound to ctx.

        Commits when the block exits normally; rolls back fully and re-raises
        on any exception.
        """
        conn = self._checkout()
        try:
            with conn.begin():
                self._bind(conn, ctx)
                yield conn
        finally:
            self._unbind(conn)
            conn.close()

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.session(SecurityContext.system()) as conn:
                conn.execute(text("SELECT 1"))
            return True
        except Exception:
            logger.exception("Database health check failed")
            return False

    # ------------------------------------------------------------------
    # Optional storage-level enforcement (PostgreSQL only)
    # ------------------------------------------------------------------

    def install_row_policies(self, tables: dict[str, str]) -> None:
        """Enable row-level security keyed on the bound context.

        tables maps table name -> tenant column. Policy names and columns are
        hardcoded by the caller (not user input), so interpolation is safe.
        No-op on other dialects; auth/access.py remains the primary check.
        """
        if not self.is_postgres:
            return
        with self.engine.begin() as conn:
            for table, column in tables.items():
                conn.execute(text(f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY"))  # nosemgrep
                conn.execute(text(f"DROP POLICY IF EXISTS {table}_tenant_isolation ON {table}"))  # nosemgrep
                conn.execute(
                    text(
                        f"CREATE POLICY {table}_tenant_isolation ON {table} USING ("  # nosemgrep
                        "current_setting('app.current_role', true) IN ('super_admin', 'system') "
                        f"OR {column}::text = current_setting('app.current_association_id', true))"
                    )
                )
        logger.info("Row-level security policies installed on %s", ", ".join(tables))

    def close(self) -> None:
        self.engine.dispose()
