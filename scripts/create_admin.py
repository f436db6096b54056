#!/usr/bin/env python3
"""
Create the first ADMIN account, or promote an existing account to ADMIN.
Run with: python -m scripts.create_admin --email admin@example.com --first-name Site --last-name Admin
The password is read from the ADMIN_PASSWORD environment variable or prompted for.
"""

import argparse
import getpass
import os
import sys

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from vetconnect.core.database import SessionLocal
from vetconnect.core.sanitization import sanitize_email, sanitize_name, validate_email
from vetconnect.core.security import get_password_hash
from vetconnect.models import ROLE_ADMIN, User
from vetconnect.services.auth_service import validate_password_strength
from vetconnect.services.user_service import UserService


def create_admin(email: str, first_name: str, last_name: str, password: str | None) -> None:
    email = sanitize_email(email)
    if not validate_email(email):
        raise SystemExit(f"Invalid email: {email}")

    db = SessionLocal()
    try:
        existing = UserService.get_user_by_email(db, email)
        if existing:
            if existing.is_admin:
                print(f"{email} is already an admin. Nothing to do.")
                return
            existing.role = ROLE_ADMIN
            db.commit()
            print(f"Promoted {email} to admin")
            return

        if password is None:
            password = getpass.getpass("Admin password: ")
        try:
            validate_password_strength(password)
        except ValueError as e:
            raise SystemExit(str(e))

        UserService.save(db, User(
            email=email,
            password_hash=get_password_hash(password),
            first_name=sanitize_name(first_name),
            last_name=sanitize_name(last_name),
            role=ROLE_ADMIN,
        ))
        print(f"Created admin: {email}")

    except Exception as e:
        db.rollback()
        print(f"Error creating admin: {e}")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create or promote a VetConnect admin account")
    parser.add_argument("--email", required=True)
    parser.add_argument("--first-name", default="Site")
    parser.add_argument("--last-name", default="Admin")
    args = parser.parse_args()

    create_admin(args.email, args.first_name, args.last_name, os.environ.get("ADMIN_PASSWORD"))
