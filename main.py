#!/usr/bin/env python3
"""
Tasklane auth -- operator command line.

Talks to the same database as the API (DATABASE_URL). Intended for bootstrap
and support tasks that have no HTTP endpoint.

Usage:
  python main.py create-user alice@example.com --role admin --name "Alice"
  python main.py delete-user alice@example.com
  python main.py set-role alice@example.com manager
  python main.py show-user alice@example.com
  python main.py unlock alice@example.com
  python main.py reset-2fa alice@example.com
  python main.py purge

Passwords are read with getpass (or TASKLANE_PASSWORD for scripted use) and
are never accepted as a command-line argument.
"""

import argparse
import getpass
import logging
import os
import sys
import time

from sqlalchemy.exc import IntegrityError

from auth.engine import build_engine
from auth.models import Role, SecondFactorMethod, User
from auth.passwords import hash_password
from auth.store import UserStore
from core.config import get_settings
from core.errors import AuthError
from mail.sender import build_sender

_MIN_PASSWORD_LENGTH = 8


def _read_password() -> str:
    """Prompt twice for a password unless TASKLANE_PASSWORD is set."""
    env_password = os.environ.get("TASKLANE_PASSWORD")
    if env_password:
        return env_password
    first = getpass.getpass("  Password: ")
    second = getpass.getpass("  Confirm:  ")
    if first != second:
        raise SystemExit("  [!] Passwords do not match.")
    return first


def cmd_create_user(store: UserStore, args: argparse.Namespace) -> int:
    password = _read_password()
    if len(password) < _MIN_PASSWORD_LENGTH:
        print(f"  [!] Password must be at least {_MIN_PASSWORD_LENGTH} characters.")
        return 1
    user = User(email=args.email, hashed_password=hash_password(password), role=args.role, name=args.name)
    try:
        user_id = store.create_user(user)
    except IntegrityError:
        print(f"  [!] A user with email '{args.email}' already exists.")
        return 1
    print(f"  Created {args.role} {args.email} (id {user_id}).")
    return 0


def cmd_delete_user(store: UserStore, args: argparse.Namespace) -> int:
    user = store.get_by_email(args.email)
    if user is None:
        print(f"  [!] No user '{args.email}'.")
        return 1
    store.delete_user(user.id)
    store.reset_failures(user.email)
    print(f"  Deleted {user.email}. Outstanding refresh tokens stop working immediately.")
    return 0


def cmd_set_role(store: UserStore, args: argparse.Namespace) -> int:
    user = store.get_by_email(args.email)
    if user is None:
        print(f"  [!] No user '{args.email}'.")
        return 1
    store.update_user(user.id, role=args.role)
    print(f"  {user.email}: {user.role} -> {args.role} (takes effect on next token refresh).")
    return 0


def cmd_show_user(store: UserStore, args: argparse.Namespace) -> int:
    settings = get_settings()
    user = store.get_by_email(args.email)
    if user is None:
        print(f"  [!] No user '{args.email}'.")
        return 1
    failures, _ = store.get_failures(user.email, time.time(), settings.login_failure_window_seconds)
    print(f"  id:        {user.id}")
    print(f"  email:     {user.email}")
    print(f"  name:      {user.name or '-'}")
    print(f"  role:      {user.role}")
    state = "enabled" if user.second_factor_enabled else "pending" if user.second_factor_method != "none" else "off"
    print(f"  2FA:       {user.second_factor_method} ({state})")
    print(f"  failures:  {failures}/{settings.login_max_failures}")
    return 0


def cmd_unlock(store: UserStore, args: argparse.Namespace) -> int:
    store.reset_failures(args.email.strip().lower())
    print(f"  Cleared failed-login counter for {args.email}.")
    return 0


def cmd_reset_2fa(store: UserStore, args: argparse.Namespace) -> int:
    """Support path for a user who lost their authenticator. No code required."""
    user = store.get_by_email(args.email)
    if user is None:
        print(f"  [!] No user '{args.email}'.")
        return 1
    with store.transaction() as conn:
        store.update_user(
            user.id,
            conn=conn,
            second_factor_enabled=False,
            second_factor_method=SecondFactorMethod.none.value,
            totp_secret=None,
        )
        store.delete_email_otps(user.id, conn=conn)
    print(f"  Two-factor authentication removed for {user.email}.")
    return 0


def cmd_purge(store: UserStore, args: argparse.Namespace) -> int:
    settings = get_settings()
    engine = build_engine(settings, store, build_sender(settings, logging.getLogger("tasklane.auth")))
    codes, attempts = engine.purge_expired()
    print(f"  Purged {codes} expired code(s), {attempts} lapsed attempt counter(s).")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="tasklane-auth",
        description="Operator tasks for the Tasklane authentication database.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-user admin@example.com --role admin
  TASKLANE_PASSWORD=changeme123 python main.py create-user bot@example.com
  python main.py unlock alice@example.com
  DATABASE_URL=sqlite:///other.db python main.py purge
        """,
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log engine activity to stderr",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    roles = [r.value for r in Role]

    p = sub.add_parser("create-user", help="Create a user (password prompted)")
    p.add_argument("email")
    p.add_argument("--role", choices=roles, default=Role.member.value)
    p.add_argument("--name", default="")
    p.set_defaults(func=cmd_create_user)

    p = sub.add_parser("delete-user", help="Delete a user and their outstanding codes")
    p.add_argument("email")
    p.set_defaults(func=cmd_delete_user)

    p = sub.add_parser("set-role", help="Change a user's role")
    p.add_argument("email")
    p.add_argument("role", choices=roles)
    p.set_defaults(func=cmd_set_role)

    p = sub.add_parser("show-user", help="Print a user's account and 2FA state")
    p.add_argument("email")
    p.set_defaults(func=cmd_show_user)

    p = sub.add_parser("unlock", help="Clear a locked account's failure counter")
    p.add_argument("email")
    p.set_defaults(func=cmd_unlock)

    p = sub.add_parser("reset-2fa", help="Remove a user's second factor without a code")
    p.add_argument("email")
    p.set_defaults(func=cmd_reset_2fa)

    p = sub.add_parser("purge", help="Delete expired email codes and lapsed attempt counters")
    p.set_defaults(func=cmd_purge)

    args = parser.parse_args()
    if not getattr(args, "func", None):
        parser.print_help()
        return

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    store = UserStore(get_settings().database_url)
    try:
        code = args.func(store, args)
    except AuthError as exc:
        print(f"  [!] {exc.message}")
        code = 1
    finally:
        store.close()
    sys.exit(code)


if __name__ == "__main__":
    main()
