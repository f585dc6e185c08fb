"""
Bearer-token dependencies: who is calling, and what they may change.
"""

import os
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from rallyboard.services import auth_service, user_service
from rallyboard.services.auth_service import Identity
from rallyboard.database.db import get_db_session
from rallyboard.database.models import Team

security = HTTPBearer()


async def get_current_identity(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Identity:
    """
    Dependency to get the identity provider principal from the bearer token.

    Raises:
        HTTPException: If the token is invalid or has no subject
    """
    payload = auth_service.verify_token(credentials.credentials)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    identity = auth_service.identity_from_claims(payload)
    if identity is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return identity


async def get_current_user(
    identity: Identity = Depends(get_current_identity),
    session: AsyncSession = Depends(get_db_session),
) -> dict:
    """
    Dependency to get (or lazily create) the database user for the caller.

    Raises:
        HTTPException: If the identity carries no email
    """
    try:
        return await user_service.get_or_create_user(session, identity)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


def is_system_admin(user: dict) -> bool:
    """
    Check the caller against SYSTEM_ADMIN_EMAILS (comma-separated).
    """
    admin_setting = os.getenv("SYSTEM_ADMIN_EMAILS", "")
    emails = {e.strip().lower() for e in admin_setting.split(",") if e.strip()}
    return bool(user.get("email")) and user["email"].strip().lower() in emails


async def require_system_admin(user: dict = Depends(get_current_user)) -> dict:
    """Require platform-wide admin."""
    if not is_system_admin(user):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return user


def require_team_owner(team: Team, user: dict, action: str) -> None:
    """
    Raise 403 unless ``user`` owns ``team``.

    Args:
        team: Team ORM instance
        user: Current user dict
        action: Phrase for the error, e.g. "create sessions"
    """
    if team.owner_id != user["id"]:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Only the team owner can {action}.",
        )
