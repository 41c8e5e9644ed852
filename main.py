#!/usr/bin/env python3
"""
Gatehouse -- Operator CLI.

Usage:
  python main.py create-admin --email ops@example.com --name "Ops Team"
  python main.py create-admin --email ops@example.com --name "Ops Team" --password 'Str0ng!pass'
  python main.py sweep

create-admin without --password generates a temporary password, emails it
(or logs a redacted notice when SMTP_HOST is unset) and requires a change at
first login. With --password the account is ready to use immediately.

Configuration comes from the environment / .env, exactly as for the API
(see core/config.py).
"""

import argparse
import asyncio
import logging
import sys

from auth.errors import AuthError
from auth.lifecycle import CredentialLifecycleOrchestrator
from auth.models import Principal, Role
from auth.passwords import password_problems
from auth.secret_store import SecretStore
from auth.store import AccountStore
from auth.sweeper import CleanupSweeper
from core.config import get_settings
from notify.mailer import EmailNotifier

logger = logging.getLogger("gatehouse.cli")

# Principal used for accounts created from the command line. id 0 never
# belongs to a stored account, so the welcome mail names "An administrator".
_CLI_PRINCIPAL = Principal(account_id=0, email="cli@localhost", role=Role.admin.value)


def _create_admin(args: argparse.Namespace) -> int:
    if args.password is not None:
        problems = password_problems(args.password)
        if problems:
            print(f"  [!] Password must contain {', '.join(problems)}.")
            return 2

    settings = get_settings()
    accounts = AccountStore(settings.database_url)
    secrets = SecretStore(settings.database_url)
    try:
        lifecycle = CredentialLifecycleOrchestrator.from_settings(
            settings,
            accounts=accounts,
            secrets=secrets,
            notifier=EmailNotifier.from_settings(settings),
        )
        created = asyncio.run(
            lifecycle.admin_create_account(
                _CLI_PRINCIPAL,
                email=args.email,
                full_name=args.name,
                role=Role.admin.value,
                password=args.password,
            )
        )
    except AuthError as exc:
        print(f"  [!] {exc.public_message}")
        return 1
    finally:
        secrets.close()
        accounts.close()

    print(f"Admin account created: id={created.account.id} email={created.account.email}")
    if created.temporary_password_sent:
        print("A temporary password was emailed. It must be changed at first login.")
    return 0


def _sweep(args: argparse.Namespace) -> int:
    settings = get_settings()
    accounts = AccountStore(settings.database_url)
    secrets = SecretStore(settings.database_url)
    try:
        result = CleanupSweeper(secrets, accounts).sweep()
    finally:
        secrets.close()
        accounts.close()
    for name, count in result.as_dict().items():
        print(f"  {name:<15} {count}")
    print(f"  {'total':<15} {result.total}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gatehouse",
        description="Gatehouse operator commands.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-admin --email ops@example.com --name "Ops Team"
  python main.py sweep
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    create = sub.add_parser("create-admin", help="Create an admin account")
    create.add_argument("--email", required=True, help="Email address of the new admin")
    create.add_argument("--name", required=True, help="Full name of the new admin")
    create.add_argument(
        "--password",
        default=None,
        help="Initial password. Omit to email a temporary password that must be changed at first login.",
    )
    create.set_defaults(handler=_create_admin)

    sweep = sub.add_parser("sweep", help="Delete expired and used secrets once, then exit")
    sweep.set_defaults(handler=_sweep)
    return parser


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(levelname)-5s %(name)s %(message)s")
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "handler", None):
        parser.print_help()
        return 0
    return args.handler(args)


if __name__ == "__main__":
    sys.exit(main())
