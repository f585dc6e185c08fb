"""Team, membership and session-creation route handlers."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from rallyboard.api.routes import DOMAIN_ERRORS, domain_error_response, limiter
from rallyboard.database.db import get_db_session
from rallyboard.services import data_service
from rallyboard.api.auth_dependencies import get_current_user, require_team_owner
from rallyboard.models.schemas import AddMemberRequest, CreateSessionRequest, CreateTeamRequest

logger = logging.getLogger(__name__)
router = APIRouter()


async def _load_team(session: AsyncSession, slug: str):
    team = await data_service.get_team_by_slug(session, slug)
    if not team:
        raise HTTPException(status_code=404, detail="Team not found")
    return team


@router.post("/api/teams")
@limiter.limit("20/minute")
async def create_team(
    request: Request,
    payload: CreateTeamRequest,
    current_user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """
    Create a team owned by the current user.

    Requires a team-capable package with quota left.
    """
    try:
        return await data_service.create_team(session, current_user["id"], payload.name)
    except HTTPException:
        raise
    except DOMAIN_ERRORS as e:
        raise domain_error_response(e)
    except Exception as e:
        logger.error(f"Error creating team: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error creating team")


@router.get("/api/teams/{slug}")
async def get_team(
    slug: str,
    current_user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Team page: members, sessions and the team leaderboard."""
    try:
        team = await _load_team(session, slug)
        detail = await data_service.get_team_detail(session, team)
        detail["is_owner"] = team.owner_id == current_user["id"]
        return detail
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error getting team {slug}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error getting team")


@router.post("/api/teams/{slug}/members")
async def add_team_member(
    slug: str,
    payload: AddMemberRequest,
    current_user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Add a member by email (team owner only)."""
    try:
        team = await _load_team(session, slug)
        require_team_owner(team, current_user, "add members")
        return await data_service.add_team_member(
            session, team.id, payload.email, payload.display_name
        )
    except HTTPException:
        raise
    except DOMAIN_ERRORS as e:
        raise domain_error_response(e)
    except Exception as e:
        logger.error(f"Error adding member to team {slug}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error adding member")


@router.delete("/api/teams/{slug}/members/{member_id}")
async def remove_team_member(
    slug: str,
    member_id: int,
    current_user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Remove a member (team owner only). The owner cannot be removed."""
    try:
        team = await _load_team(session, slug)
        require_team_owner(team, current_user, "remove members")
        removed = await data_service.remove_team_member(session, team.id, member_id)
        if not removed:
            raise HTTPException(status_code=404, detail="Member not found")
        return {"success": True}
    except HTTPException:
        raise
    except DOMAIN_ERRORS as e:
        raise domain_error_response(e)
    except Exception as e:
        logger.error(f"Error removing member {member_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error removing member")


@router.post("/api/teams/{slug}/sessions")
@limiter.limit("30/minute")
async def create_session(
    request: Request,
    slug: str,
    payload: CreateSessionRequest,
    current_user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Create a play session for a team (team owner only)."""
    try:
        team = await _load_team(session, slug)
        require_team_owner(team, current_user, "create sessions")
        return await data_service.create_session(session, team, payload.date, payload.name)
    except HTTPException:
        raise
    except DOMAIN_ERRORS as e:
        raise domain_error_response(e)
    except Exception as e:
        logger.error(f"Error creating session for team {slug}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error creating session")
