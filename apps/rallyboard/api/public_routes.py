"""
Public API routes. No authentication required.

Read-only team statistics for sharing. All routes are prefixed with /api/public.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from rallyboard.database.db import get_db_session
from rallyboard.services import data_service

logger = logging.getLogger(__name__)


async def _cache_public(response: Response):
    """Set Cache-Control headers on all public API responses (1min TTL)."""
    response.headers["Cache-Control"] = "public, max-age=60, s-maxage=60"


public_router = APIRouter(
    prefix="/api/public", tags=["public"], dependencies=[Depends(_cache_public)]
)


@public_router.get("/teams/{slug}/stats")
async def public_team_stats(slug: str, session: AsyncSession = Depends(get_db_session)):
    """
    Team leaderboard, pair stats and game totals.

    No authentication required.
    """
    try:
        stats = await data_service.get_public_team_stats(session, slug)
    except Exception:
        logger.error(f"Error fetching public stats for team {slug}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")
    if stats is None:
        raise HTTPException(status_code=404, detail="Team not found")
    return stats
