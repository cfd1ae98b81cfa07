#!/usr/bin/env python3
"""
rolegate -- administration CLI for the credential store.

Usage:
  python main.py seed
  python main.py create-user alice alice@example.com --password s3cret!
  python main.py create-user root root@example.com --password s3cret! --role ADMIN --role USER
  python main.py authorities alice
  python main.py --db-url sqlite:///other.db authorities alice

Environment variables:
  DATABASE_URL   Store location when --db-url is not given.
  BCRYPT_ROUNDS  Work factor for new password hashes (default 12).

Exit status is 1 when an operation fails with a domain error (duplicate
username, unknown role, unknown user, ...); the message goes to stderr.
"""

import argparse
import sys
from typing import Optional

from auth.authorities import AuthorityResolver
from auth.errors import AuthError, UserNotFound
from auth.service import register_user
from auth.store import CredentialStore
from core.config import get_settings


def _seed(store: CredentialStore, args: argparse.Namespace) -> None:
    for name in get_settings().bootstrap_roles:
        role = store.ensure_role(name)
        print(f"  role {role.name} (id={role.id})")


def _create_user(store: CredentialStore, args: argparse.Namespace) -> None:
    """Register a user directly against the store. No signing key is needed."""
    settings = get_settings()
    user = register_user(
        store,
        args.username,
        args.email,
        args.password,
        role_names=args.roles,
        default_role=settings.default_role,
        bcrypt_rounds=settings.bcrypt_rounds,
    )
    role_names = ",".join(r.name for r in store.get_user_roles(user.id))
    print(f"  created user {user.username} (id={user.id}, roles={role_names})")


def _authorities(store: CredentialStore, args: argparse.Namespace) -> None:
    user = store.get_user_by_username(args.username)
    if user is None:
        raise UserNotFound(f"User not found: {args.username}")
    for authority in sorted(AuthorityResolver(store).resolve(user.id)):
        print(authority)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rolegate",
        description="Manage rolegate users and roles from the command line.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py seed
  python main.py create-user alice alice@example.com --password s3cret!
  python main.py authorities alice
        """,
    )
    parser.add_argument(
        "--db-url",
        metavar="URL",
        default=None,
        help="SQLAlchemy database URL (default: DATABASE_URL setting)",
    )
    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")

    seed = subparsers.add_parser("seed", help="Create the bootstrap roles if they are missing")
    seed.set_defaults(handler=_seed)

    create = subparsers.add_parser("create-user", help="Register a user with a password and roles")
    create.add_argument("username", metavar="USERNAME")
    create.add_argument("email", metavar="EMAIL")
    create.add_argument("--password", required=True, help="Initial password (stored as a bcrypt hash)")
    create.add_argument(
        "--role",
        dest="roles",
        action="append",
        metavar="ROLE",
        help="Role name to grant; repeat for several (default: the DEFAULT_ROLE setting)",
    )
    create.set_defaults(handler=_create_user)

    authorities = subparsers.add_parser("authorities", help="Print the resolved authorities of a user")
    authorities.add_argument("username", metavar="USERNAME")
    authorities.set_defaults(handler=_authorities)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 0

    store = CredentialStore(args.db_url or get_settings().database_url)
    try:
        args.handler(store, args)
    except AuthError as exc:
        print(f"  [!] {exc.message}", file=sys.stderr)
        return 1
    finally:
        store.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
