#!/usr/bin/env python3
"""
CODEGEN -- account and session management from the command line.

Each invocation is one "tab": it restores whatever the persistent scope
remembers, runs one command, and exits. Only sessions written to the
persistent scope (registration, or login with --remember) survive to the
next invocation.

Usage:
  python main.py register --name "Alice Doe" --username alice --email alice@x.io
  python main.py login alice@x.io --remember
  python main.py whoami
  python main.py whoami --json
  python main.py update --organization "Acme University"
  python main.py check-username alice
  python main.py check-email alice@x.io
  python main.py peers
  python main.py challenges
  python main.py complete beginners
  python main.py logout

Environment variables:
  SECRET_KEY         Token signing key, at least 32 characters. Required unless DEBUG=true.
  DEBUG              true to auto-generate SECRET_KEY for local experiments.
  DATA_DIR           Where accounts.db and storage.db live (default: ~/.codegen).
  AUTH_PROVIDER      local (default) or supabase.
  SUPABASE_URL       Project URL, for AUTH_PROVIDER=supabase.
  SUPABASE_ANON_KEY  Public anon key, for AUTH_PROVIDER=supabase.
"""

import argparse
import asyncio
import getpass
import json
import logging
import sys
from typing import Optional

from auth.errors import AuthError
from auth.facade import AuthFacade, Notification
from auth.factory import build_facade
from auth.models import USER_TYPES, RegisterData
from auth.policy import password_problems
from practice.challenges import CHALLENGES, complete_challenge
from practice.ledger import ChallengeLedger
from storage.store import Scope

logger = logging.getLogger("codegen.cli")


def _print_notification(note: Notification) -> None:
    marker = "[!]" if note.variant == "destructive" else "[*]"
    print(f"  {marker} {note.title}: {note.description}")


def _read_password(given: Optional[str], confirm: bool = False) -> str:
    """Use --password if given, otherwise prompt without echo."""
    if given is not None:
        return given
    password = getpass.getpass("  Password: ")
    if confirm:
        problems = password_problems(password)
        if problems:
            print(f"  [!] Password must contain {', '.join(problems)}.")
        if getpass.getpass("  Confirm password: ") != password:
            raise SystemExit("  [!] Passwords do not match.")
    return password


def _print_user(facade: AuthFacade, as_json: bool) -> None:
    user = facade.user
    if user is None:
        print("  Not signed in.")
        return
    if as_json:
        print(json.dumps(user.as_dict(), indent=2))
        return
    print(f"\n  {user.full_name} (@{user.username})")
    print("  " + "-" * 40)
    print(f"  Email          {user.email}")
    print(f"  Type           {user.user_type}")
    print(f"  Organization   {user.organization or '-'}")
    print(f"  Solved         {user.problems_solved}")
    print(f"  Points         {user.points}")
    print(f"  Rank           {user.rank}")
    print(f"  Last login     {user.last_login or '-'}")
    print(f"  Session        {'valid' if facade.validate_session() else 'expired'}\n")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


async def _cmd_register(facade: AuthFacade, args: argparse.Namespace) -> int:
    data = RegisterData(
        full_name=args.name,
        username=args.username,
        email=args.email,
        password=_read_password(args.password, confirm=args.password is None),
        user_type=args.user_type,
        organization=args.organization,
    )
    await facade.register(data)
    _print_user(facade, as_json=False)
    return 0


async def _cmd_login(facade: AuthFacade, args: argparse.Namespace) -> int:
    await facade.login(args.email, _read_password(args.password), remember=args.remember)
    if not args.remember:
        print("  Session will end when this command exits. Use --remember to stay signed in.")
    return 0


async def _cmd_logout(facade: AuthFacade, args: argparse.Namespace) -> int:
    if not facade.is_authenticated:
        print("  Not signed in.")
        return 0
    await facade.logout()
    return 0


async def _cmd_whoami(facade: AuthFacade, args: argparse.Namespace) -> int:
    _print_user(facade, as_json=args.json)
    return 0 if facade.is_authenticated else 1


async def _cmd_update(facade: AuthFacade, args: argparse.Namespace) -> int:
    patch = {
        key: value
        for key, value in (
            ("full_name", args.name),
            ("username", args.username),
            ("email", args.email),
            ("organization", args.organization),
            ("user_type", args.user_type),
            ("profile_image", args.profile_image),
        )
        if value is not None
    }
    if not patch:
        print("  Nothing to update.")
        return 0
    await facade.update_user(**patch)
    _print_user(facade, as_json=False)
    return 0


async def _cmd_check_username(facade: AuthFacade, args: argparse.Namespace) -> int:
    available = await facade.check_username_availability(args.username)
    print(f"  {args.username}: {'available' if available else 'taken'}")
    return 0 if available else 1


async def _cmd_check_email(facade: AuthFacade, args: argparse.Namespace) -> int:
    available = await facade.check_email_availability(args.email)
    print(f"  {args.email}: {'available' if available else 'registered'}")
    return 0 if available else 1


async def _cmd_peers(facade: AuthFacade, args: argparse.Namespace) -> int:
    peers = await facade.peers()
    if not peers:
        print("  No peers from your organization yet.")
        return 0
    print(f"\n  {'Name':<28} {'Username':<18} {'Solved':>6} {'Points':>7} {'Rank':>4}")
    for peer in peers:
        print(f"  {peer.full_name:<28} {peer.username:<18} {peer.problems_solved:>6} {peer.points:>7} {peer.rank:>4}")
    print()
    return 0


async def _cmd_challenges(facade: AuthFacade, args: argparse.Namespace) -> int:
    ledger = ChallengeLedger(facade.session_store.storage(Scope.PERSISTENT))
    done = set(ledger.completed(facade.user.id)) if facade.user is not None else set()
    print()
    for challenge in CHALLENGES:
        mark = "x" if challenge.id in done else " "
        print(f"  [{mark}] {challenge.id:<14} {challenge.points:>3} pts  {challenge.title}")
        print(f"      {challenge.url}")
    print()
    return 0


async def _cmd_complete(facade: AuthFacade, args: argparse.Namespace) -> int:
    ledger = ChallengeLedger(facade.session_store.storage(Scope.PERSISTENT))
    try:
        awarded = await complete_challenge(facade, ledger, args.challenge)
    except KeyError:
        print(f"  [!] Unknown challenge '{args.challenge}'. Run 'challenges' to list them.")
        return 2
    if not awarded:
        print(f"  Challenge '{args.challenge}' was already completed.")
    _print_user(facade, as_json=False)
    return 0


_COMMANDS = {
    "register": _cmd_register,
    "login": _cmd_login,
    "logout": _cmd_logout,
    "whoami": _cmd_whoami,
    "update": _cmd_update,
    "check-username": _cmd_check_username,
    "check-email": _cmd_check_email,
    "peers": _cmd_peers,
    "challenges": _cmd_challenges,
    "complete": _cmd_complete,
}


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="codegen",
        description="Manage your CODEGEN account and session.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Show debug logging")
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    p = sub.add_parser("register", help="Create an account and sign in")
    p.add_argument("--name", required=True, help="Full name")
    p.add_argument("--username", required=True)
    p.add_argument("--email", required=True)
    p.add_argument("--password", help="Password (prompted when omitted)")
    p.add_argument("--user-type", choices=USER_TYPES, default="student")
    p.add_argument("--organization", default="", help="College or company")

    p = sub.add_parser("login", help="Sign in with email and password")
    p.add_argument("email")
    p.add_argument("--password", help="Password (prompted when omitted)")
    p.add_argument("--remember", action="store_true", help="Stay signed in across invocations")

    sub.add_parser("logout", help="Sign out and forget the stored session")

    p = sub.add_parser("whoami", help="Show the signed-in profile")
    p.add_argument("--json", action="store_true", help="Output the profile as JSON")

    p = sub.add_parser("update", help="Edit profile fields")
    p.add_argument("--name")
    p.add_argument("--username")
    p.add_argument("--email")
    p.add_argument("--organization")
    p.add_argument("--user-type", choices=USER_TYPES)
    p.add_argument("--profile-image", metavar="URL")

    p = sub.add_parser("check-username", help="Is a username free?")
    p.add_argument("username")

    p = sub.add_parser("check-email", help="Is an email free?")
    p.add_argument("email")

    sub.add_parser("peers", help="List accounts from your organization")
    sub.add_parser("challenges", help="List practice challenges")

    p = sub.add_parser("complete", help="Mark a practice challenge as solved")
    p.add_argument("challenge", metavar="CHALLENGE-ID")
    return parser


async def _run(args: argparse.Namespace) -> int:
    failures: list[Notification] = []

    def notify(note: Notification) -> None:
        if note.variant == "destructive":
            failures.append(note)
        _print_notification(note)

    facade = build_facade(notify=notify)
    try:
        await facade.init(start_validator=False)
        return await _COMMANDS[args.command](facade, args)
    except AuthError as exc:
        logger.debug("Command %s failed: %s", args.command, exc.code)
        if not failures:
            print(f"  [!] {exc.message}")
        return 1
    finally:
        await facade.close()


def main() -> None:
    parser = _build_parser()
    args = parser.parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    if args.command is None:
        parser.print_help()
        return
    sys.exit(asyncio.run(_run(args)))


if __name__ == "__main__":
    main()
