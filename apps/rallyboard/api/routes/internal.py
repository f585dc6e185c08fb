"""Internal repair endpoints: bootstrap and member/user backfills."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from rallyboard.database.db import get_db_session
from rallyboard.services import maintenance_service
from rallyboard.services.auth_service import Identity
from rallyboard.api.auth_dependencies import get_current_identity, require_system_admin

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/internal")


@router.get("/bootstrap")
async def bootstrap(
    identity: Identity = Depends(get_current_identity),
    session: AsyncSession = Depends(get_db_session),
):
    """
    Recover from an empty database: create missing tables and the caller's
    user row. Safe to call repeatedly.
    """
    try:
        return await maintenance_service.bootstrap(session, identity)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Bootstrap failed: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Bootstrap failed")


@router.post("/safe-backfill")
async def safe_backfill(
    user: dict = Depends(require_system_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Relink orphan members to existing users only (system admin)."""
    try:
        return await maintenance_service.safe_relink_members(session)
    except Exception as e:
        logger.error(f"Safe backfill failed: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Safe backfill failed")


@router.post("/backfill")
async def backfill(
    user: dict = Depends(require_system_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Link every orphan member, creating guest users as needed (system admin)."""
    try:
        return await maintenance_service.backfill_members(session)
    except Exception as e:
        logger.error(f"Backfill failed: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Backfill failed")


@router.post("/full-backfill")
async def full_backfill(
    user: dict = Depends(require_system_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Normalize emails, backfill members and repair ownerless teams and tournaments (system admin)."""
    try:
        return await maintenance_service.full_backfill(session)
    except Exception as e:
        logger.error(f"Full backfill failed: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Full backfill failed")


@router.post("/merge-duplicate-users")
async def merge_duplicate_users(
    delete_duplicates: bool = Query(True),
    user: dict = Depends(require_system_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Merge users whose emails differ only by case (system admin)."""
    try:
        return await maintenance_service.merge_duplicate_users(session, delete_duplicates)
    except Exception as e:
        logger.error(f"Merge duplicate users failed: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Merge failed")
