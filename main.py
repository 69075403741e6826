#!/usr/bin/env python3
"""
AuthKit -- operator commands for the authentication service.

Usage:
  python main.py create-master --email root@example.com --name Ada --last-name Lovelace
  python main.py create-master --email root@example.com --name Ada --last-name Lovelace --password '...'
  python main.py purge-tokens

create-master provisions the first MASTER account. Self-registration only ever
creates USERs and the hierarchy only lets a MASTER create another MASTER, so a
fresh database needs this command once.

Environment variables:
  DATABASE_URL  SQLAlchemy URL of the account database (default: auth/authkit.db)
  SECRET_KEY    Required unless DEBUG=true (see core/config.py)
"""

from __future__ import annotations

import argparse
import getpass
import sys
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.models import Account, Role
from auth.store import AccountStore
from auth.tokens import hash_password
from core.config import get_settings

_MIN_PASSWORD_LENGTH = 8


def _prompt_password() -> Optional[str]:
    """Ask twice without echo. Returns None if the entries differ."""
    first = getpass.getpass("  Password: ")
    second = getpass.getpass("  Repeat password: ")
    if first != second:
        print("  [!] Passwords do not match.")
        return None
    return first


def create_master(store: AccountStore, email: str, name: str, last_name: str, password: str) -> Optional[int]:
    """Create an enabled MASTER account. Returns its id, or None if the email is taken."""
    if store.get_by_email(email) is not None:
        return None
    account = Account(
        email=email,
        name=name,
        last_name=last_name,
        password_hash=hash_password(password),
        role=Role.MASTER,
    )
    try:
        return store.create_account(account)
    except IntegrityError:
        return None


def _cmd_create_master(args: argparse.Namespace, store: AccountStore) -> int:
    password = args.password if args.password is not None else _prompt_password()
    if password is None:
        return 1
    if len(password) < _MIN_PASSWORD_LENGTH:
        print(f"  [!] Password must be at least {_MIN_PASSWORD_LENGTH} characters.")
        return 1

    account_id = create_master(store, args.email, args.name, args.last_name, password)
    if account_id is None:
        print(f"  [!] An enabled account already uses {args.email}.")
        return 1
    print(f"  MASTER account {account_id} created for {args.email}.")
    return 0


def _cmd_purge_tokens(args: argparse.Namespace, store: AccountStore) -> int:
    removed = store.purge_expired_refresh_tokens()
    print(f"  {removed} expired refresh token(s) removed.")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="authkit",
        description="Operator commands for the AuthKit authentication service.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-master --email root@example.com --name Ada --last-name Lovelace
  DATABASE_URL=postgresql://... python main.py purge-tokens
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    master = sub.add_parser("create-master", help="Provision a MASTER account")
    master.add_argument("--email", required=True, help="Login email of the new account")
    master.add_argument("--name", required=True, help="First name")
    master.add_argument("--last-name", required=True, dest="last_name", help="Last name")
    master.add_argument(
        "--password",
        metavar="PASSWORD",
        help="Password (prompted without echo when omitted; avoid passing it on shared hosts)",
    )
    master.set_defaults(handler=_cmd_create_master)

    purge = sub.add_parser("purge-tokens", help="Delete expired refresh tokens")
    purge.set_defaults(handler=_cmd_purge_tokens)

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 2

    store = AccountStore(get_settings().database_url)
    try:
        return args.handler(args, store)
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
