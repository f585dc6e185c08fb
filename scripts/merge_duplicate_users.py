#!/usr/bin/env python3
"""
Merge users whose emails differ only by case.

By default this is a dry run: memberships and ownership move to the canonical
user but duplicates are kept. Pass --delete to sum counts and delete them.
"""

import argparse
import asyncio
import os
import sys

# Add apps to path (so rallyboard.* imports work)
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
apps_path = os.path.join(project_root, "apps")
sys.path.insert(0, apps_path)

from rallyboard.database.db import AsyncSessionLocal  # noqa: E402
from rallyboard.services import maintenance_service  # noqa: E402


async def merge(delete_duplicates: bool):
    async with AsyncSessionLocal() as session:
        emails = await maintenance_service.find_duplicate_emails(session)
        if not emails:
            print("✓ No duplicate users found")
            return 0

        print(f"Found {len(emails)} duplicated email(s):")
        for email in emails:
            print(f"  - {email}")

        try:
            summary = await maintenance_service.merge_duplicate_users(session, delete_duplicates)
        except Exception as e:
            print(f"❌ Merge failed: {str(e)}")
            return 1

    for merged in summary["merged"]:
        action = "deleted" if delete_duplicates else "kept"
        print(f"{merged['email']}: canonical user {merged['canonical_id']}, {action} {merged['merged']}")
    print(f"Player stats rows merged: {summary['player_stats_merged']}")
    print("\n✅ Merge complete!")
    return 0


async def main():
    parser = argparse.ArgumentParser(description="Merge case-duplicate users")
    parser.add_argument("--delete", action="store_true", help="Delete duplicates after merging")
    args = parser.parse_args()
    return await merge(args.delete)


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
