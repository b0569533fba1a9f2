"""Create the admin account, or reset its password if it already exists.

Usage:
    python seeds/create_admin.py
    python seeds/create_admin.py --email ops@example.com --password 'S3cret!'
"""

import argparse
import asyncio
import os
import sys
from pathlib import Path

_root = str(Path(__file__).resolve().parent.parent)
sys.path.insert(0, _root)

from dotenv import load_dotenv  # noqa: E402

load_dotenv()

from api.services.credentials import CredentialService  # noqa: E402
from database import Database  # noqa: E402
from processor.catalog import Role  # noqa: E402
from processor.identity import get_user_by_email, insert_user  # noqa: E402


async def ensure_admin(
    database: Database,
    credentials: CredentialService,
    email: str,
    password: str,
    full_name: str = "System Administrator",
) -> tuple[int, str]:
    """Return ``(user_id, action)`` where action is created / updated / unchanged.

    An existing account keeps its id and gets the admin role and the given
    password.
    """
    async with database.transaction() as session:
        user = await get_user_by_email(session, email)
        if user is None:
            user = await insert_user(
                session, credentials, full_name, email, password, role=Role.ADMIN.value,
            )
            return user.id, "created"
        if user.role == Role.ADMIN.value and credentials.verify_password(password, user.hashed_password):
            return user.id, "unchanged"
        user.role = Role.ADMIN.value
        user.hashed_password = credentials.hash_password(password)
        return user.id, "updated"


async def main():
    parser = argparse.ArgumentParser(description="Create or repair the admin account")
    parser.add_argument("--email", default=os.getenv("ADMIN_EMAIL", "admin@pubmarket.local"))
    parser.add_argument("--password", default=os.getenv("ADMIN_PASSWORD", "Admin123!"))
    parser.add_argument("--name", default="System Administrator")
    parser.add_argument("--database-url", default=None, help="Defaults to DATABASE_URL")
    args = parser.parse_args()

    async with Database(args.database_url) as database:
        user_id, action = await ensure_admin(
            database, CredentialService(), args.email, args.password, full_name=args.name,
        )

    print(f"Admin {args.email} (id={user_id}): {action}")
    if action != "unchanged":
        print("IMPORTANT: Change the password after first login!")


if __name__ == "__main__":
    asyncio.run(main())
