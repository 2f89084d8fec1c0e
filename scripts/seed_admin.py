"""
Seed Admin User

Creates the initial administrator account. Admins cannot self-register, so
run this once per environment.

Usage:
    ADMIN_EMAIL=admin@example.com ADMIN_PASSWORD=... ADMIN_NAME="School Admin" \
        python scripts/seed_admin.py
"""

import asyncio
import os
import sys
from datetime import UTC, datetime

from school_sms.core.database import async_session_maker, close_db
from school_sms.core.security import hash_password
from school_sms.modules.users.models import UserRole
from school_sms.modules.users.repository import UserRepository


async def seed_admin() -> int:
    """Create the admin user if it doesn't exist."""
    email = os.environ.get("ADMIN_EMAIL", "").strip().lower()
    password = os.environ.get("ADMIN_PASSWORD", "")
    name = os.environ.get("ADMIN_NAME", "Administrator")

    if not email or len(password) < 8:
        print("ADMIN_EMAIL and ADMIN_PASSWORD (8+ characters) must be set")
        return 1

    async with async_session_maker() as db:
        repo = UserRepository(db)

        existing_user = await repo.get_by_email(email)
        if existing_user:
            print(f"User already exists: {email}")
            print(f"  ID: {existing_user.id}")
            print(f"  Role: {existing_user.role.value}")
            return 0

        admin_user = await repo.create(
            name=name,
            email=email,
            password_hash=hash_password(password),
            role=UserRole.ADMIN,
            email_verified=True,
        )
        await repo.update(admin_user, email_verified_at=datetime.now(UTC))
        await repo.commit()

        print("Admin created successfully!")
        print(f"  Email: {email}")
        print(f"  Name: {name}")
        print(f"  ID: {admin_user.id}")

    await close_db()
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(seed_admin()))
