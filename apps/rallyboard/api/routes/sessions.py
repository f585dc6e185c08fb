"""Play session route handlers."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from rallyboard.api.routes import DOMAIN_ERRORS, domain_error_response
from rallyboard.database.db import get_db_session
from rallyboard.services import data_service
from rallyboard.api.auth_dependencies import get_current_user, require_team_owner
from rallyboard.models.schemas import CreateGameRequest

logger = logging.getLogger(__name__)
router = APIRouter()


async def _load_session(session: AsyncSession, slug: str):
    session_obj = await data_service.get_session_by_slug(session, slug)
    if not session_obj:
        raise HTTPException(status_code=404, detail="Session not found")
    return session_obj


@router.get("/api/sessions/{slug}")
async def get_session(
    slug: str,
    current_user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """
    Session page: games (newest first), session leaderboard and pair table.
    """
    try:
        session_obj = await _load_session(session, slug)
        detail = await data_service.get_session_detail(session, session_obj)
        detail["is_owner"] = session_obj.team.owner_id == current_user["id"]
        return detail
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error getting session {slug}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error getting session")


@router.post("/api/sessions/{slug}/games")
async def create_game(
    slug: str,
    payload: CreateGameRequest,
    current_user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """
    Add a pending game to a session (team owner only).

    Body: { team_a_players: [email, ...], team_b_players: [email, ...] }
    """
    try:
        session_obj = await _load_session(session, slug)
        require_team_owner(session_obj.team, current_user, "create games")
        return await data_service.create_game(
            session, session_obj, payload.team_a_players, payload.team_b_players
        )
    except HTTPException:
        raise
    except DOMAIN_ERRORS as e:
        raise domain_error_response(e)
    except Exception as e:
        logger.error(f"Error creating game in session {slug}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error creating game")
