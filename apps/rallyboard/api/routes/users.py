"""Health, dashboard and package route handlers."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from rallyboard.api.routes import DOMAIN_ERRORS, domain_error_response
from rallyboard.database.db import get_db_session
from rallyboard.services import data_service, package_service
from rallyboard.api.auth_dependencies import get_current_user
from rallyboard.models.schemas import HealthResponse, UpdatePackageRequest, UpgradePackageRequest

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/api/health", response_model=HealthResponse)
async def health_check():
    """
    Health check endpoint.

    Returns:
        dict: Service status
    """
    return {"status": "healthy", "message": "API is running"}


@router.get("/api/me")
async def get_dashboard(
    current_user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """
    Dashboard for the current user: profile, package, teams, tournaments and
    global stats. The user row is created on first call.
    """
    try:
        dashboard = await data_service.get_dashboard(session, current_user["id"])
        if not dashboard:
            raise HTTPException(status_code=404, detail="User not found")
        return dashboard
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error loading dashboard: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error loading dashboard")


@router.put("/api/me/package")
async def update_package(
    payload: UpdatePackageRequest,
    current_user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Switch the current user to a package; its fixed quotas replace the old ones."""
    try:
        return await package_service.set_package(
            session, current_user["id"], payload.package_type.value
        )
    except HTTPException:
        raise
    except DOMAIN_ERRORS as e:
        raise domain_error_response(e)
    except Exception as e:
        logger.error(f"Error updating package: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error updating package")


@router.post("/api/me/package/upgrade")
async def upgrade_package(
    payload: UpgradePackageRequest,
    current_user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Add one team or tournament slot to the current user's quota."""
    try:
        return await package_service.upgrade_package(session, current_user["id"], payload.type)
    except HTTPException:
        raise
    except DOMAIN_ERRORS as e:
        raise domain_error_response(e)
    except Exception as e:
        logger.error(f"Error upgrading package: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error upgrading package")
