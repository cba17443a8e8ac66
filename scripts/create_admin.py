"""Idempotent admin-creation script.

Run it manually in the project's venv; nothing calls it automatically:
    python scripts/create_admin.py

If the username already exists the account just gains the Admin role,
otherwise a new admin is created. The password goes through the same
policy and Argon2 hashing as regular registration.
"""
import asyncio
import getpass
import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from db import AsyncSessionLocal, create_tables  # noqa: E402
from errors import ValidationError  # noqa: E402
from identity import IdentityStore  # noqa: E402


async def ensure_admin(username: str, password: str, email: str = None):
    await create_tables()
    async with AsyncSessionLocal() as session:
        store = IdentityStore(session)
        existing = await store.find_by_username(username)
        admin = await store.ensure_admin(username, password, email=email)
        print("Admin role ensured (no new user)" if existing else f"Admin created (id={admin.id})")


if __name__ == "__main__":
    username = os.environ.get("ADMIN_USERNAME") or input("admin username: ")
    email = os.environ.get("ADMIN_EMAIL") or None
    pw = os.environ.get("ADMIN_PASSWORD")
    if not pw:
        pw = getpass.getpass("admin password: ")
    try:
        asyncio.run(ensure_admin(username, pw, email))
    except ValidationError as exc:
        print(f"{exc.message} {'; '.join(exc.errors)}")
        sys.exit(1)
