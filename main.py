#!/usr/bin/env python3
"""
tokenguard -- operations CLI for the token blacklist.

Usage:
  python main.py cleanup
  python main.py revoke-user auth0|42 --reason PASSWORD_CHANGE
  python main.py revoke-user auth0|42 --reason ADMIN_REVOCATION --by admin-7 --provider
  python main.py blacklist --owner auth0|42 --expires-at 2026-10-18T12:00:00+00:00 --reason LOGOUT < token.txt
  python main.py blacklist --identifier 3f2a...e9 --owner auth0|42 --expires-at 2026-10-18T12:00:00+00:00 --reason LOGOUT
  python main.py status auth0|42
  python main.py check < token.txt

Raw tokens are read from stdin, never from arguments, so they do not end up
in shell history or process listings.

`cleanup` is meant for cron when the API's built-in cleanup loop is not
running (e.g. several replicas share one database and only one should clean).

Configuration comes from the environment / .env (see core/config.py).
Exit status: 0 on success, 1 on any rejected or failed operation.
"""

import argparse
import logging
import sys
from datetime import datetime
from typing import Optional

from auth.blacklist import mask_identifier
from auth.handler import TokenHandler, build_token_handler
from auth.store import TokenStorageError, TokenStore
from core.config import get_settings

logger = logging.getLogger("tokenguard.cli")


def _read_token() -> str:
    token = sys.stdin.readline().strip()
    if token[:7].lower() == "bearer ":
        token = token[7:].strip()
    return token


def _cmd_cleanup(handler: TokenHandler, args: argparse.Namespace) -> int:
    removed = handler.cleanup_expired_entries()
    print(f"  Removed {removed} expired record(s).")
    return 0


def _cmd_revoke_user(handler: TokenHandler, args: argparse.Namespace) -> int:
    revocation = handler.blacklist_all_user_tokens(args.auth_identifier, args.reason, args.by)
    print(f"  All tokens for {revocation.owner_auth_identifier} issued before {revocation.revoked_at.isoformat()} revoked.")
    if args.provider:
        if handler.revoke_user_tokens(args.auth_identifier):
            print("  Provider sessions revoked.")
        else:
            print("  [!] Provider revocation unavailable; global revocation still applies.")
    return 0


def _cmd_blacklist(handler: TokenHandler, args: argparse.Namespace) -> int:
    identifier = args.identifier
    if not identifier:
        token = _read_token()
        if not token:
            print("  [!] No token on stdin and no --identifier given.")
            return 1
        identifier = handler.get_token_identifier(token)
    try:
        expires_at = datetime.fromisoformat(args.expires_at)
    except ValueError:
        print(f"  [!] '{args.expires_at}' is not an ISO 8601 timestamp.")
        return 1
    entry = handler.blacklist_token(identifier, args.owner, args.reason, expires_at, args.by)
    print(f"  Token {mask_identifier(identifier)} blacklisted (entry {entry.entry_id}).")
    return 0


def _cmd_status(handler: TokenHandler, args: argparse.Namespace) -> int:
    revoked_at = handler.get_user_token_revocation_time(args.auth_identifier)
    if revoked_at is None:
        print(f"  {args.auth_identifier}: no active global revocation.")
    else:
        print(f"  {args.auth_identifier}: tokens issued before {revoked_at.isoformat()} are revoked.")
    return 0


def _cmd_check(handler: TokenHandler, args: argparse.Namespace) -> int:
    token = _read_token()
    if not token:
        print("  [!] No token on stdin.")
        return 1
    result = handler.verify_and_unpack(token)
    if result.is_valid and result.token is not None:
        print(f"  valid: {result.token.auth_identifier} (expires {result.token.expires_at.isoformat()})")
        return 0
    print(f"  rejected: {result.error.value if result.error else 'UNKNOWN'}")
    return 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tokenguard",
        description="Token blacklist and revocation operations.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("cleanup", help="Delete expired blacklist entries and revocations")

    revoke = sub.add_parser("revoke-user", help="Revoke every token issued to a user so far")
    revoke.add_argument("auth_identifier", help="Provider subject (uid/sub) of the user")
    revoke.add_argument("--reason", required=True, help="A configured blacklist reason")
    revoke.add_argument("--by", default=None, metavar="USER_ID", help="Acting user id (omit for self-service)")
    revoke.add_argument("--provider", action="store_true", help="Also revoke sessions at the identity provider")

    blacklist = sub.add_parser("blacklist", help="Blacklist a single token (raw token on stdin)")
    blacklist.add_argument("--identifier", default=None, help="Precomputed token identifier instead of stdin")
    blacklist.add_argument("--owner", required=True, help="Provider subject of the token owner")
    blacklist.add_argument("--expires-at", required=True, help="Token expiry, ISO 8601")
    blacklist.add_argument("--reason", required=True, help="A configured blacklist reason")
    blacklist.add_argument("--by", default=None, metavar="USER_ID", help="Acting user id")

    status = sub.add_parser("status", help="Show a user's global revocation")
    status.add_argument("auth_identifier")

    sub.add_parser("check", help="Verify a token read from stdin")
    return parser


_COMMANDS = {
    "cleanup": _cmd_cleanup,
    "revoke-user": _cmd_revoke_user,
    "blacklist": _cmd_blacklist,
    "status": _cmd_status,
    "check": _cmd_check,
}


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )

    store = TokenStore(settings.blacklist_db_url, settings.blacklist_table)
    try:
        handler = build_token_handler(settings, store)
        return _COMMANDS[args.command](handler, args)
    except ValueError as e:  # InvalidBlacklistReason, empty owner
        print(f"  [!] {e}")
        return 1
    except TokenStorageError as e:
        logger.error("Token storage unavailable: %s", e)
        print("  [!] Token storage is unavailable. Nothing was changed.")
        return 1
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
