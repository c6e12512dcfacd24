#!/usr/bin/env python3
"""
Member Portal -- operator command line.

Bootstraps a deployment: creates the schema, the first associations, and the
admin accounts that approve members through the API. Runs against the
database named by DATABASE_URL, with the system security context.

Usage:
  python main.py init-db
  python main.py create-association "Acme Rowing Club" ACME
  python main.py create-admin admin@acme.org "Ada Admin" --association ACME
  python main.py create-admin root@example.org "Root" --super-admin
  python main.py list-associations

Passwords are read interactively, or from the environment variable named by
--password-env for unattended provisioning. They are never accepted as a
command-line argument (shell history, process list).
"""

import argparse
import getpass
import logging
import os
import sys
from typing import Optional

from auth.models import ROLE_ADMIN, ROLE_SUPER_ADMIN
from core.config import get_settings
from core.errors import PortalError
from membership.associations import AssociationService
from membership.gateway import DataGateway, SecurityContext
from membership.lifecycle import AccountLifecycle
from membership.notifier import LogNotifier, NotificationDispatcher
from membership.store import MembershipStore

logger = logging.getLogger("memberportal.cli")


def _read_password(env_var: Optional[str]) -> str:
    if env_var:
        value = os.environ.get(env_var, "")
        if not value:
            raise SystemExit(f"  [!] Environment variable {env_var} is empty or unset.")
        return value
    first = getpass.getpass("Password: ")
    second = getpass.getpass("Repeat password: ")
    if first != second:
        raise SystemExit("  [!] Passwords do not match.")
    return first


def _open_store() -> MembershipStore:
    settings = get_settings()
    gateway = DataGateway(settings.database_url, pool_size=2, pool_timeout=settings.db_pool_timeout)
    return MembershipStore(gateway)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_init_db(store: MembershipStore, args: argparse.Namespace) -> None:
    # MembershipStore() already created the tables.
    print(f"  Schema ready ({store.gateway.engine.dialect.name}).")


def cmd_create_association(store: MembershipStore, args: argparse.Namespace) -> None:
    association = AssociationService(store).create_association(None, args.name, args.code, args.description)
    print(f"  Created association {association.code}: {association.id}")


def cmd_create_admin(store: MembershipStore, args: argparse.Namespace) -> None:
    association_id = None
    if not args.super_admin:
        if not args.association:
            raise SystemExit("  [!] --association CODE is required unless --super-admin is given.")
        association = AssociationService(store).get_association_by_code(args.association)
        association_id = association.id

    password = _read_password(args.password_env)
    lifecycle = AccountLifecycle(store, NotificationDispatcher(LogNotifier()))
    role = ROLE_SUPER_ADMIN if args.super_admin else ROLE_ADMIN
    user_id = lifecycle.provision_user(args.email, args.name, password, role, association_id)
    print(f"  Created {role} {args.email.lower()}: {user_id}")


def cmd_list_associations(store: MembershipStore, args: argparse.Namespace) -> None:
    with store.gateway.session(SecurityContext.system()) as conn:
        rows = store.list_associations(conn)
    if not rows:
        print("  No associations yet.")
        return
    print(f"  {'CODE':<12}{'STATUS':<10}{'MEMBERS':>8}  NAME")
    for association, count in rows:
        print(f"  {association.code:<12}{association.status:<10}{count:>8}  {association.name}")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    parser = argparse.ArgumentParser(
        prog="member-portal",
        description="Operator tooling for the multi-tenant member portal.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-association "Acme Rowing Club" ACME
  python main.py create-admin admin@acme.org "Ada Admin" --association ACME
  ADMIN_PW=... python main.py create-admin root@example.org Root --super-admin --password-env ADMIN_PW
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    p = sub.add_parser("init-db", help="Create the database schema")
    p.set_defaults(func=cmd_init_db)

    p = sub.add_parser("create-association", help="Create a new association (tenant)")
    p.add_argument("name", help="Display name")
    p.add_argument("code", help="Unique code, 2-10 letters or digits (prefix of member numbers)")
    p.add_argument("--description", default=None)
    p.set_defaults(func=cmd_create_association)

    p = sub.add_parser("create-admin", help="Create an admin or super_admin account")
    p.add_argument("email")
    p.add_argument("name")
    p.add_argument("--association", metavar="CODE", help="Association code the admin manages")
    p.add_argument("--super-admin", action="store_true", help="Create a platform-wide super_admin")
    p.add_argument(
        "--password-env",
        metavar="VAR",
        default=None,
        help="Read the password from this environment variable instead of prompting",
    )
    p.set_defaults(func=cmd_create_admin)

    p = sub.add_parser("list-associations", help="List associations with member counts")
    p.set_defaults(func=cmd_list_associations)

    args = parser.parse_args()
    if not getattr(args, "func", None):
        parser.print_help()
        return

    store = _open_store()
    try:
        args.func(store, args)
    except PortalError as exc:
        print(f"  [!] {exc.message}", file=sys.stderr)
        sys.exit(1)
    finally:
        store.close()


if __name__ == "__main__":
    main()
