#!/usr/bin/env python3
"""
Link team members to user accounts.

Modes:
  safe  - relink orphan members to existing users only (default)
  full  - also create guest users for unknown emails
  deep  - full, plus email normalization and ownerless team/tournament repair
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

MODES = {
    "safe": maintenance_service.safe_relink_members,
    "full": maintenance_service.backfill_members,
    "deep": maintenance_service.full_backfill,
}


async def backfill(mode: str):
    """Run one repair mode and print its summary."""
    print("=" * 60)
    print(f"🔗 Backfilling member links ({mode})...")
    print("=" * 60)

    async with AsyncSessionLocal() as session:
        try:
            summary = await MODES[mode](session)
        except Exception as e:
            print(f"❌ Backfill failed: {str(e)}")
            return 1

    for key, value in summary.items():
        if isinstance(value, list):
            print(f"{key}: {len(value)}")
            for item in value:
                print(f"  - {item}")
        else:
            print(f"{key}: {value}")

    print("\n✅ Backfill complete!")
    return 0


async def main():
    parser = argparse.ArgumentParser(description="Link team members to user accounts")
    parser.add_argument("--mode", choices=sorted(MODES), default="safe", help="Repair mode")
    args = parser.parse_args()
    return await backfill(args.mode)


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
