#!/usr/bin/env python3
"""
Liyaqa - Create Super Admin
Run this script to create a platform super admin for production.

Usage:
    python scripts/create_admin.py

Or with environment variables:
    ADMIN_EMAIL=admin@liyaqa.com ADMIN_PASSWORD='S3cure!pass' python scripts/create_admin.py
"""
import os
import sys
import getpass

# Add parent directory to path so we can import the app
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv

from liyaqa import create_app
from liyaqa.exceptions import LiyaqaError
from liyaqa.models import DBUser, UserRole
from liyaqa.services.auth_service import auth_service, generate_password


def create_admin_user():
    """Create the super admin"""
    load_dotenv()
    app = create_app()

    with app.app_context():
        existing = DBUser.query.filter_by(role=UserRole.SUPER_ADMIN).first()
        if existing:
            print(f"\nSuper admin already exists: {existing.email}")
            response = input("Create another super admin? (y/N): ")
            if response.lower() != 'y':
                print("Aborted.")
                return

        # Get credentials from env or prompt
        email = os.environ.get('ADMIN_EMAIL')
        password = os.environ.get('ADMIN_PASSWORD')
        name = os.environ.get('ADMIN_NAME', 'Super Admin')

        if not email:
            print("\n" + "=" * 50)
            print("  LIYAQA")
            print("  Super Admin Setup")
            print("=" * 50 + "\n")
            email = input("Admin email: ").strip()

        if not email or '@' not in email:
            print("Error: Valid email required")
            return

        if not password:
            use_generated = input("Generate password? (Y/n): ").strip().lower()
            if use_generated != 'n':
                password = generate_password()
                print(f"\nGenerated password: {password}")
                print("   (Save this somewhere safe!)\n")
            else:
                password = getpass.getpass("Enter password: ")
                if password != getpass.getpass("Confirm password: "):
                    print("Error: Passwords don't match")
                    return

        try:
            user = auth_service.create_user(email, name, password, UserRole.SUPER_ADMIN)
        except LiyaqaError as e:
            print(f"Error: {e.message}")
            return

        print("\n" + "=" * 50)
        print("  SUPER ADMIN CREATED")
        print("=" * 50)
        print(f"\n  Email:    {user.email}")
        print(f"  Role:     {user.role}")
        print(f"  Password: {'*' * len(password)}")
        print("\n  Login with POST /api/auth/login")
        print("=" * 50 + "\n")


if __name__ == '__main__':
    create_admin_user()
