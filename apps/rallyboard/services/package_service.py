"""
Subscription packages and creation quotas.
"""

import logging
from typing import Dict
from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession
from rallyboard.database.models import PackageType, User

logger = logging.getLogger(__name__)

# Fixed quotas applied when a package is selected
PACKAGE_QUOTAS: Dict[PackageType, Dict[str, int]] = {
    PackageType.TEAM_PACKAGE: {"team_quota": 3, "tournament_quota": 0},
    PackageType.TOURNAMENT_PACKAGE: {"team_quota": 0, "tournament_quota": 2},
    PackageType.PRO_PACKAGE: {"team_quota": 5, "tournament_quota": 5},
}

TEAM_PACKAGES = (PackageType.TEAM_PACKAGE, PackageType.PRO_PACKAGE)
TOURNAMENT_PACKAGES = (PackageType.TOURNAMENT_PACKAGE, PackageType.PRO_PACKAGE)

# Upgrade kind -> (package, quota column)
UPGRADES = {
    "TEAM": (PackageType.TEAM_PACKAGE, "team_quota"),
    "TOURNAMENT": (PackageType.TOURNAMENT_PACKAGE, "tournament_quota"),
}


class QuotaError(Exception):
    """The user's package does not allow the requested creation."""


def check_can_create_team(user: User) -> None:
    """
    Raises:
        QuotaError: If the package lacks teams or the team quota is used up
    """
    if user.package_type not in TEAM_PACKAGES:
        raise QuotaError("Upgrade to a plan that supports team creation.")
    if user.team_count >= user.team_quota:
        raise QuotaError("You've reached your team quota limit.")


def check_can_create_tournament(user: User) -> None:
    """
    Raises:
        QuotaError: If the package lacks tournaments or the quota is used up
    """
    if user.package_type not in TOURNAMENT_PACKAGES:
        raise QuotaError("Upgrade to a plan that supports tournament creation.")
    if user.tournament_count >= user.tournament_quota:
        raise QuotaError("You've reached your tournament creation quota.")


async def set_package(session: AsyncSession, user_id: int, package_type: str) -> Dict:
    """
    Switch a user to a package and apply its fixed quotas.

    Raises:
        ValueError: If the package type is unknown or the user does not exist
    """
    try:
        package = PackageType(package_type)
    except ValueError:
        raise ValueError("Invalid package type.")
    if package not in PACKAGE_QUOTAS:
        raise ValueError("Invalid package type.")

    quotas = PACKAGE_QUOTAS[package]
    result = await session.execute(
        update(User)
        .where(User.id == user_id)
        .values(package_type=package, updated_at=func.now(), **quotas)
    )
    if result.rowcount == 0:
        raise ValueError("User not found.")
    await session.commit()

    logger.info(f"User {user_id} switched to {package.value}")
    return {"package_type": package.value, **quotas}


async def upgrade_package(session: AsyncSession, user_id: int, kind: str) -> Dict:
    """
    Move to the TEAM or TOURNAMENT package and grant one more quota slot.

    Raises:
        ValueError: If the kind is unknown or the user does not exist
    """
    if kind not in UPGRADES:
        raise ValueError("Invalid upgrade type.")
    package, quota_column = UPGRADES[kind]

    column = getattr(User, quota_column)
    result = await session.execute(
        update(User)
        .where(User.id == user_id)
        .values({User.package_type: package, column: column + 1, User.updated_at: func.now()})
    )
    if result.rowcount == 0:
        raise ValueError("User not found.")
    await session.commit()

    row = await session.execute(
        select(User.package_type, User.team_quota, User.tournament_quota).where(User.id == user_id)
    )
    package_type, team_quota, tournament_quota = row.one()
    logger.info(f"User {user_id} upgraded {quota_column} via {kind}")
    return {
        "package_type": package_type.value,
        "team_quota": team_quota,
        "tournament_quota": tournament_quota,
    }
