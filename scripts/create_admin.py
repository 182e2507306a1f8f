#!/usr/bin/env python3
"""
FolioAdmin -- create the admin account, or reset its password.

Usage:
  python scripts/create_admin.py --username admin@example.com
  ADMIN_USERNAME=admin@example.com ADMIN_PASSWORD=... python scripts/create_admin.py

Environment variables:
  ADMIN_USERNAME  Admin e-mail address (login handle and OTP channel).
  ADMIN_PASSWORD  Admin password, 6 characters to 72 bytes. Prompted for when
                  neither --password nor ADMIN_PASSWORD is given.
  DATABASE_URL    Same database the API uses (see core/config.py).

Resetting the password of an existing admin invalidates every session token
issued before the reset.
"""

import argparse
import getpass
import os
import sys

from auth.credentials import create_or_reset_admin
from auth.errors import AuthError
from auth.notify import mask_email
from auth.store import AccountStore


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="create-admin",
        description="Create the FolioAdmin admin account or reset its password.",
    )
    parser.add_argument(
        "--username",
        default=os.environ.get("ADMIN_USERNAME"),
        metavar="EMAIL",
        help="Admin e-mail address (default: $ADMIN_USERNAME)",
    )
    parser.add_argument(
        "--password",
        default=os.environ.get("ADMIN_PASSWORD"),
        help="Admin password (default: $ADMIN_PASSWORD, else prompt)",
    )
    parser.add_argument(
        "--db-url",
        default=None,
        metavar="URL",
        help="SQLAlchemy database URL (default: DATABASE_URL setting)",
    )
    args = parser.parse_args(argv)

    if not args.username:
        parser.error("an admin username is required (--username or ADMIN_USERNAME)")
    password = args.password or getpass.getpass("Admin password: ")

    store = AccountStore(db_url=args.db_url)
    try:
        account, created = create_or_reset_admin(store, args.username, password)
    except AuthError as exc:
        print(f"  [!] {exc.message}", file=sys.stderr)
        return 1
    finally:
        store.close()

    action = "created" if created else "password reset"
    print(f"  Admin account {action}: {mask_email(account.username)} (id {account.id})")
    return 0


if __name__ == "__main__":
    sys.exit(main())
