"""Identity provider webhook handlers."""

import hmac
import logging
import os
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from rallyboard.api.routes import limiter
from rallyboard.database.db import get_db_session
from rallyboard.services import user_service
from rallyboard.models.schemas import IdentityWebhookEvent

logger = logging.getLogger(__name__)
router = APIRouter()


def _check_webhook_secret(provided: Optional[str]) -> None:
    """Reject the call when IDENTITY_WEBHOOK_SECRET is set and the header does not match."""
    expected = os.getenv("IDENTITY_WEBHOOK_SECRET")
    if not expected:
        return
    if not provided or not hmac.compare_digest(provided, expected):
        raise HTTPException(status_code=401, detail="Invalid webhook secret")


@router.post("/api/webhooks/identity")
@limiter.limit("60/minute")
async def identity_webhook(
    request: Request,
    payload: IdentityWebhookEvent,
    x_webhook_secret: Optional[str] = Header(None),
    session: AsyncSession = Depends(get_db_session),
):
    """
    Receive identity provider events.

    Only ``user.updated`` is acted on: the user's name and avatar are synced.
    Other event types are acknowledged and ignored.
    """
    _check_webhook_secret(x_webhook_secret)

    if payload.type != "user.updated":
        return {"success": True, "ignored": True}

    try:
        if not payload.data or not payload.data.id:
            raise HTTPException(status_code=400, detail="Missing user id")

        updated = await user_service.apply_profile_update(
            session,
            payload.data.id,
            name=payload.data.full_name,
            image_url=payload.data.image_url,
        )
        logger.info(f"Identity webhook: updated {updated} user(s)")
        return {"success": True, "updated": updated}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error handling identity webhook: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error handling webhook")
