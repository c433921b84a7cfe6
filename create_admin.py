#!/usr/bin/env python3
"""
Script to create an admin account in the configured store.

Only meaningful with DATABASE_URL set; the in-memory store is discarded on exit.
"""
import sys

from app import create_app
from auth import hash_password
from errors import ConstraintViolation, ValidationError
from storage import get_storage


def create_admin(app, email, name, password):
    """Create an admin user. Returns the user, or None when the e-mail is taken."""
    with app.app_context():
        storage = get_storage()
        if storage.get_user_by_email(email):
            print(f"❌ A user with email '{email}' already exists!")
            return None
        try:
            admin = storage.create_user({
                'email': email,
                'name': name,
                'password': hash_password(password),
                'role': 'admin',
            })
        except (ConstraintViolation, ValidationError) as e:
            print(f"❌ Could not create admin: {e.message}")
            return None
        print("✅ Admin account created successfully!")
        print(f"   Email: {admin.email}")
        print(f"   Admin ID: {admin.id}")
        return admin


if __name__ == '__main__':
    print("=" * 60)
    print("CREATE ADMIN ACCOUNT")
    print("=" * 60)

    email = input("Enter email (default: admin@wespark.io): ").strip() or "admin@wespark.io"
    name = input("Enter name (default: Admin User): ").strip() or "Admin User"
    password = input("Enter password: ").strip()
    if not password:
        print("❌ A password is required")
        sys.exit(1)

    print()
    if create_admin(create_app(), email, name, password) is None:
        sys.exit(1)
