"""Game outcome route handlers: record, reverse and delete."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from rallyboard.api.routes import DOMAIN_ERRORS, domain_error_response
from rallyboard.database.db import get_db_session
from rallyboard.services import data_service
from rallyboard.api.auth_dependencies import get_current_user, require_team_owner
from rallyboard.models.schemas import SetWinnerRequest

logger = logging.getLogger(__name__)
router = APIRouter()


async def _load_owned_game(session: AsyncSession, slug: str, user: dict, action: str):
    game = await data_service.get_game_by_slug(session, slug)
    if not game:
        raise HTTPException(status_code=404, detail="Game not found")
    require_team_owner(game.session.team, user, action)
    return game


@router.post("/api/games/{slug}/winner")
async def set_winner(
    slug: str,
    payload: SetWinnerRequest,
    current_user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """
    Record the winning side of a pending game (team owner only).

    Returns 409 if the game already has a winner; stats are left untouched.
    """
    try:
        game = await _load_owned_game(session, slug, current_user, "select winners")
        return await data_service.record_outcome(session, game.id, payload.winner)
    except HTTPException:
        raise
    except DOMAIN_ERRORS as e:
        raise domain_error_response(e)
    except Exception as e:
        logger.error(f"Error recording winner for game {slug}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error recording winner")


@router.delete("/api/games/{slug}/winner")
async def clear_winner(
    slug: str,
    current_user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """
    Reverse a recorded winner so it can be re-recorded (team owner only).

    Returns 409 if the game has no winner.
    """
    try:
        game = await _load_owned_game(session, slug, current_user, "change winners")
        return await data_service.reverse_outcome(session, game.id)
    except HTTPException:
        raise
    except DOMAIN_ERRORS as e:
        raise domain_error_response(e)
    except Exception as e:
        logger.error(f"Error reversing winner for game {slug}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error reversing winner")


@router.delete("/api/games/{slug}")
async def delete_game(
    slug: str,
    current_user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Delete a game, reversing its stats first when decided (team owner only)."""
    try:
        game = await _load_owned_game(session, slug, current_user, "delete games")
        deleted = await data_service.delete_game(session, game.id)
        if not deleted:
            raise HTTPException(status_code=404, detail="Game not found")
        return {"success": True}
    except HTTPException:
        raise
    except DOMAIN_ERRORS as e:
        raise domain_error_response(e)
    except Exception as e:
        logger.error(f"Error deleting game {slug}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error deleting game")
