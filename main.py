#!/usr/bin/env python3
"""
Neóptica intranet -- management commands.

Usage:
  python main.py seed
  python main.py seed --admin-email admin@neoptica.com --admin-name "Ana Admin"
  python main.py create-admin --email admin@neoptica.com --name "Ana Admin"
  python main.py purge-audit --days 180
  python main.py serve --host 0.0.0.0 --port 8000

Passwords are read from the ADMIN_PASSWORD environment variable or prompted
for interactively; they are never accepted as command-line arguments.

Environment variables:
  SECRET_KEY, AUTH_DATABASE_URL, CATALOG_DATABASE_URL, AUDIT_DATABASE_URL,
  and the rest of the settings documented in core/config.py.
"""

import argparse
import getpass
import logging
import sys
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.exc import IntegrityError

from audit.store import AuditStore
from audit.trail import log_success
from auth.models import ROLE_ADMIN, User
from auth.store import UserStore
from auth.tokens import hash_password
from core import validators
from core.config import get_settings

logger = logging.getLogger("neoptica.cli")


def _read_password() -> str:
    """Return a strong password from ADMIN_PASSWORD or an interactive prompt."""
    password = get_settings().admin_password
    if not password:
        password = getpass.getpass("Admin password: ")
        if password != getpass.getpass("Repeat password: "):
            raise SystemExit("Passwords do not match.")
    if not validators.fits_password_limit(password):
        raise SystemExit(validators.PASSWORD_TOO_LONG_MESSAGE)
    if not validators.is_strong_password(password):
        raise SystemExit(validators.PASSWORD_RULES_MESSAGE)
    return password


def ensure_system_user(store: UserStore) -> int:
    """Create the inactive system account if missing and return its ID.

    The system user owns rows created by maintenance jobs. It has no password
    and no roles, so it can never log in.
    """
    email = get_settings().system_user_email
    existing = store.get_by_email(email)
    if existing is not None:
        return existing.id
    user_id = store.create_user(User(name="System", email=email, is_active=False, email_verified=True), roles=[])
    logger.info("System user created (id=%d)", user_id)
    return user_id


def create_admin(store: UserStore, email: str, name: str, password: str, created_by: Optional[int] = None) -> int:
    """Create an active admin account. Raises ValueError if the e-mail is taken or invalid."""
    email = email.strip().lower()
    if not validators.is_valid_email(email):
        raise ValueError(f"'{email}' is not a valid e-mail address.")
    if store.get_by_email(email) is not None:
        raise ValueError(f"A user with e-mail {email} already exists.")
    user = User(name=name.strip(), email=email, hashed_password=hash_password(password), email_verified=True)
    try:
        return store.create_user(user, roles=[ROLE_ADMIN], created_by=created_by)
    except IntegrityError as exc:
        raise ValueError(f"A user with e-mail {email} already exists.") from exc


def cmd_seed(args: argparse.Namespace) -> int:
    store = UserStore()
    try:
        seeded = store.seed_roles()
        print(f"  Roles: {seeded} created.")
        system_id = ensure_system_user(store)
        print(f"  System user: id {system_id}.")
        if args.admin_email:
            admin_id = create_admin(store, args.admin_email, args.admin_name, _read_password(), created_by=system_id)
            print(f"  Admin created: id {admin_id}.")
    except ValueError as exc:
        print(f"  [!] {exc}", file=sys.stderr)
        return 1
    finally:
        store.close()
    return 0


def cmd_create_admin(args: argparse.Namespace) -> int:
    store = UserStore()
    audit = AuditStore()
    try:
        store.seed_roles()
        system_id = ensure_system_user(store)
        admin_id = create_admin(store, args.email, args.name, _read_password(), created_by=system_id)
        log_success(
            audit,
            action="create_user",
            module="users",
            entity_type="User",
            entity_id=admin_id,
            message=f"Admin created from the command line: {args.email}",
            actor_id=system_id,
            details={"roles": [ROLE_ADMIN]},
        )
    except ValueError as exc:
        print(f"  [!] {exc}", file=sys.stderr)
        return 1
    finally:
        audit.close()
        store.close()
    print(f"  Admin created: id {admin_id}.")
    return 0


def cmd_purge_audit(args: argparse.Namespace) -> int:
    if args.days < 1:
        print("  [!] --days must be at least 1.", file=sys.stderr)
        return 1
    cutoff = (datetime.now(timezone.utc) - timedelta(days=args.days)).isoformat()
    audit = AuditStore()
    try:
        removed = audit.purge_older_than(cutoff)
    finally:
        audit.close()
    print(f"  Removed {removed} audit entries older than {args.days} day(s).")
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("asgi:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="neoptica",
        description="Management commands for the Neóptica intranet backend.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py seed
  ADMIN_PASSWORD='S3cure!pass' python main.py create-admin --email a@neoptica.com --name Ana
  python main.py purge-audit --days 365
  python main.py serve --reload
        """,
    )
    sub = parser.add_subparsers(dest="command", required=True, metavar="COMMAND")

    seed = sub.add_parser("seed", help="Create the roles, the system user and optionally an admin")
    seed.add_argument("--admin-email", metavar="EMAIL", help="Also create an admin with this e-mail")
    seed.add_argument("--admin-name", metavar="NAME", default="Administrator", help="Display name for --admin-email")
    seed.set_defaults(func=cmd_seed)

    admin = sub.add_parser("create-admin", help="Create an administrator account")
    admin.add_argument("--email", required=True, metavar="EMAIL")
    admin.add_argument("--name", required=True, metavar="NAME")
    admin.set_defaults(func=cmd_create_admin)

    purge = sub.add_parser("purge-audit", help="Delete audit entries older than N days")
    purge.add_argument("--days", type=int, required=True, metavar="N")
    purge.set_defaults(func=cmd_purge_audit)

    serve = sub.add_parser("serve", help="Run the API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--reload", action="store_true", help="Reload on code changes (development)")
    serve.set_defaults(func=cmd_serve)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
