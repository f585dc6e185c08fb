"""Tournament route handlers."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from rallyboard.api.routes import DOMAIN_ERRORS, domain_error_response, limiter
from rallyboard.database.db import get_db_session
from rallyboard.services import data_service
from rallyboard.api.auth_dependencies import get_current_user
from rallyboard.models.schemas import CreateTournamentRequest

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/api/tournaments")
@limiter.limit("20/minute")
async def create_tournament(
    request: Request,
    payload: CreateTournamentRequest,
    current_user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """
    Create a tournament owned by the current user.

    Requires a tournament-capable package with quota left.
    """
    try:
        return await data_service.create_tournament(
            session,
            current_user["id"],
            payload.name,
            payload.min_games_per_player,
            payload.banner_url,
        )
    except HTTPException:
        raise
    except DOMAIN_ERRORS as e:
        raise domain_error_response(e)
    except Exception as e:
        logger.error(f"Error creating tournament: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error creating tournament")
