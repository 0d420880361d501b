#!/usr/bin/env python3
"""
Identity service administration CLI.

Usage:
  python main.py create-user alice --password secret
  python main.py create-user root --password secret --role admin
  python main.py issue alice
  python main.py verify <token>
  python main.py verify <token> --role admin
  python main.py purge-sessions

Operates directly on the database named by DATABASE_URL (see core/config.py).

There is deliberately no "revoke" command: the verification cache lives in the
API process, and revoking from another process could not evict it. Revoke
through DELETE /api/v1/sessions/{id} instead.
"""

import argparse
import getpass
import sys

from sqlalchemy.engine import Engine

from auth.models import Role
from auth.service import IdentityService
from auth.store import SessionStore, UserStore, make_engine
from core.config import get_settings
from core.errors import IdentityError, InvalidTokenError

_ROLE_CHOICES = [r.name.lower() for r in Role]


def _build_service() -> tuple[IdentityService, Engine]:
    settings = get_settings()
    engine = make_engine(settings.database_url)
    service = IdentityService.from_settings(settings, UserStore(engine=engine), SessionStore(engine=engine))
    return service, engine


def _cmd_create_user(service: IdentityService, args: argparse.Namespace) -> int:
    password = args.password or getpass.getpass("Password: ")
    user = service.create_user(args.username, password, Role[args.role.upper()])
    print(f"  Created user {user.username} ({user.role.name}) id={user.id}")
    return 0


def _cmd_issue(service: IdentityService, args: argparse.Namespace) -> int:
    user = service.user_store.get_by_username(args.username)
    if user is None:
        print(f"  [!] No user named '{args.username}'.")
        return 1
    session = service.issue(user)
    print(f"  Session {session.id} (expires {session.expires_at.isoformat()})")
    print(session.token)
    return 0


def _cmd_verify(service: IdentityService, args: argparse.Namespace) -> int:
    try:
        user, session = service.verify(args.token, Role[args.role.upper()])
    except InvalidTokenError:
        print("  [!] Invalid token.")
        return 1
    print(f"  Valid: user {user.username} ({user.role.name}), session {session.id}")
    return 0


def _cmd_purge_sessions(service: IdentityService, args: argparse.Namespace) -> int:
    count = service.purge_expired_sessions()
    print(f"  Purged {count} expired session(s).")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="identity",
        description="Administer users and session tokens.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p_create = sub.add_parser("create-user", help="Create a user account")
    p_create.add_argument("username")
    p_create.add_argument("--password", help="Password (prompted for if omitted)")
    p_create.add_argument("--role", choices=_ROLE_CHOICES, default="user")
    p_create.set_defaults(func=_cmd_create_user)

    p_issue = sub.add_parser("issue", help="Open a session for a user and print its token")
    p_issue.add_argument("username")
    p_issue.set_defaults(func=_cmd_issue)

    p_verify = sub.add_parser("verify", help="Verify a token")
    p_verify.add_argument("token")
    p_verify.add_argument("--role", choices=_ROLE_CHOICES, default="public", help="Minimum role required")
    p_verify.set_defaults(func=_cmd_verify)

    p_purge = sub.add_parser("purge-sessions", help="Delete expired sessions")
    p_purge.set_defaults(func=_cmd_purge_sessions)

    args = parser.parse_args(argv)

    service, engine = _build_service()
    try:
        return args.func(service, args)
    except IdentityError as exc:
        print(f"  [!] {exc.message}")
        return 1
    finally:
        engine.dispose()


if __name__ == "__main__":
    sys.exit(main())
