"""
Rallyboard HTTP routes, combined from the users, teams, sessions, games,
tournaments, webhooks and internal modules.

Shared infrastructure (limiter, error translation) lives here; every
sub-router imports what it needs from this package.
"""

import os

from fastapi import APIRouter, HTTPException
from slowapi import Limiter
from slowapi.util import get_remote_address

from rallyboard.services.data_service import DuplicateError
from rallyboard.services.package_service import QuotaError
from rallyboard.services.stats_service import AlreadyDecidedError, NotDecidedError

# ---------------------------------------------------------------------------
# Shared rate limiter
# ---------------------------------------------------------------------------
IS_TEST_ENV = os.getenv("ENV", "").lower() == "test"
limiter = Limiter(key_func=get_remote_address)
if IS_TEST_ENV:

    def _passthrough(*args, **kwargs):
        """Leaves the endpoint undecorated under ENV=test."""
        def decorator(func):
            return func
        return decorator

    limiter.limit = _passthrough


# ---------------------------------------------------------------------------
# Shared error translation
# ---------------------------------------------------------------------------
def domain_error_response(e: Exception) -> HTTPException:
    """
    Map a service-layer exception to the HTTPException a route should raise.

    Conflicts (already decided, not decided, duplicates) are checked before
    the ValueError fallback since they subclass it.
    """
    if isinstance(e, (AlreadyDecidedError, NotDecidedError, DuplicateError)):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, QuotaError):
        return HTTPException(status_code=403, detail=str(e))
    return HTTPException(status_code=400, detail=str(e))


DOMAIN_ERRORS = (ValueError, QuotaError)


# ---------------------------------------------------------------------------
# Import sub-routers and combine
# ---------------------------------------------------------------------------
from rallyboard.api.routes.users import router as users_router  # noqa: E402
from rallyboard.api.routes.teams import router as teams_router  # noqa: E402
from rallyboard.api.routes.sessions import router as sessions_router  # noqa: E402
from rallyboard.api.routes.games import router as games_router  # noqa: E402
from rallyboard.api.routes.tournaments import router as tournaments_router  # noqa: E402
from rallyboard.api.routes.webhooks import router as webhooks_router  # noqa: E402
from rallyboard.api.routes.internal import router as internal_router  # noqa: E402

router = APIRouter()
router.include_router(users_router)
router.include_router(teams_router)
router.include_router(sessions_router)
router.include_router(games_router)
router.include_router(tournaments_router)
router.include_router(webhooks_router)
router.include_router(internal_router)
