"""
User service layer: identity provider linking and user lookups.
"""

from typing import Optional, Dict
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func
from rallyboard.database.models import User, TeamMember, PackageType
from rallyboard.services.auth_service import Identity
from rallyboard.utils.constants import DEFAULT_TEAM_QUOTA, DEFAULT_TOURNAMENT_QUOTA
from rallyboard.utils.datetime_utils import isoformat_or_none
import logging

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    """Strip and lowercase an email."""
    return email.strip().lower()


def email_local_part(email: str) -> str:
    """Fallback display name: the part before the @."""
    return email.split("@")[0]


async def get_user_by_id(session: AsyncSession, user_id: int) -> Optional[Dict]:
    """
    Get user by ID.

    Returns:
        User dictionary or None if not found
    """
    result = await session.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    return _user_to_dict(user) if user else None


async def get_user_by_email(session: AsyncSession, email: str) -> Optional[Dict]:
    """
    Get user by email (case-insensitive).

    Returns:
        User dictionary or None if not found
    """
    result = await session.execute(
        select(User).where(User.email == normalize_email(email)).limit(1)
    )
    user = result.scalar_one_or_none()
    return _user_to_dict(user) if user else None


async def get_user_by_external_id(session: AsyncSession, external_id: str) -> Optional[Dict]:
    """
    Get user by identity provider subject.

    Returns:
        User dictionary or None if not found
    """
    result = await session.execute(select(User).where(User.external_id == external_id).limit(1))
    user = result.scalar_one_or_none()
    return _user_to_dict(user) if user else None


async def link_orphan_memberships(session: AsyncSession, user: User) -> int:
    """
    Attach team_members rows created by email only to a user.

    Does not commit; callers own the transaction.

    Returns:
        Number of rows linked
    """
    result = await session.execute(
        update(TeamMember)
        .where(TeamMember.email == user.email, TeamMember.user_id.is_(None))
        .values(
            user_id=user.id,
            display_name=func.coalesce(TeamMember.display_name, user.name),
        )
    )
    return result.rowcount


async def get_or_create_user(session: AsyncSession, identity: Identity) -> Dict:
    """
    Resolve the database user for an authenticated identity.

    1. Existing user with this external_id -> return it.
    2. Guest user with the same email -> link external_id, fill missing
       name/image and adopt orphan memberships.
    3. Otherwise create a new user on the FREE package.

    Raises:
        ValueError: If the identity carries no email
    """
    result = await session.execute(select(User).where(User.external_id == identity.external_id))
    user = result.scalar_one_or_none()
    if user:
        return _user_to_dict(user)

    if not identity.email:
        raise ValueError("Email not found on identity")
    email = normalize_email(identity.email)

    try:
        result = await session.execute(select(User).where(User.email == email))
        user = result.scalar_one_or_none()

        if user:
            user.external_id = identity.external_id
            user.name = user.name or identity.name
            user.image_url = user.image_url or identity.image_url
            await session.flush()
            linked = await link_orphan_memberships(session, user)
            logger.info(f"Linked identity to existing user {user.id} ({linked} memberships adopted)")
        else:
            user = User(
                external_id=identity.external_id,
                email=email,
                name=identity.name,
                image_url=identity.image_url,
                package_type=PackageType.FREE,
                team_quota=DEFAULT_TEAM_QUOTA,
                tournament_quota=DEFAULT_TOURNAMENT_QUOTA,
            )
            session.add(user)
            await session.flush()
            logger.info(f"Created user {user.id} for new identity")

        await session.commit()
        await session.refresh(user)
    except Exception:
        await session.rollback()
        raise

    return _user_to_dict(user)


async def apply_profile_update(
    session: AsyncSession,
    external_id: str,
    name: Optional[str] = None,
    image_url: Optional[str] = None
) -> int:
    """
    Apply a profile change pushed by the identity provider webhook.

    Only provided fields are written.

    Returns:
        Number of users updated
    """
    values = {}
    if name is not None:
        values["name"] = name
    if image_url is not None:
        values["image_url"] = image_url
    if not values:
        return 0

    result = await session.execute(
        update(User)
        .where(User.external_id == external_id)
        .values(updated_at=func.now(), **values)
    )
    await session.commit()
    return result.rowcount


def _user_to_dict(user: User) -> Dict:
    """
    Convert a User ORM instance to a dictionary.

    Args:
        user: User ORM instance

    Returns:
        User dictionary
    """
    return {
        "id": user.id,
        "external_id": user.external_id,
        "email": user.email,
        "name": user.name,
        "image_url": user.image_url,
        "package_type": user.package_type.value if user.package_type else None,
        "team_quota": user.team_quota,
        "tournament_quota": user.tournament_quota,
        "team_count": user.team_count,
        "tournament_count": user.tournament_count,
        "created_at": isoformat_or_none(user.created_at),
    }
