#!/usr/bin/env python3
"""
Seed the first super-admin user.

Reads SUPER_ADMIN_EMAIL and SUPER_ADMIN_PASSWORD from .env file.
Run from project root: python scripts/seed_super_admin.py
"""

import sys
import os

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, project_root)

# Load .env file
from dotenv import load_dotenv
load_dotenv(os.path.join(project_root, ".env"))

from supabase import create_client
from cochera.auth.roles import Role
from cochera.config import settings


def main():
    email = os.getenv("SUPER_ADMIN_EMAIL")
    password = os.getenv("SUPER_ADMIN_PASSWORD")

    if not email or not password:
        print("Error: SUPER_ADMIN_EMAIL and SUPER_ADMIN_PASSWORD must be set in .env")
        sys.exit(1)
    if not settings.supabase_service_role_key:
        print("Error: SUPABASE_SERVICE_ROLE_KEY must be set in .env")
        sys.exit(1)

    admin = create_client(settings.supabase_url, settings.supabase_service_role_key)

    existing = admin.table("profiles").select("id").eq("email", email).execute()
    if existing.data:
        print(f"Profile with email '{email}' already exists.")
        sys.exit(0)

    # Service-role admin API: the user is created already confirmed.
    created = admin.auth.admin.create_user({
        "email": email,
        "password": password,
        "email_confirm": True,
        "user_metadata": {"full_name": "Super Admin", "role": Role.SUPERADMIN.value},
    })
    user = created.user

    result = admin.table("profiles").upsert({
        "id": user.id,
        "email": email,
        "full_name": "Super Admin",
        "role": Role.SUPERADMIN.value,
    }, on_conflict="id").execute()

    if result.data:
        profile = result.data[0]
        print("Created super-admin:")
        print(f"  ID: {profile['id']}")
        print(f"  Email: {profile['email']}")
        print(f"  Set MASTER_ADMIN_ID={profile['id']} to enable the factory reset courtesy check.")
    else:
        print("Error: Failed to create super-admin profile")
        sys.exit(1)


if __name__ == "__main__":
    main()
