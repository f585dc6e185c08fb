"""
Rallyboard API Server

FastAPI server for badminton teams, play sessions and game statistics.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging
import os
import uvicorn
from dotenv import load_dotenv
from slowapi import _rate_limit_exceeded_handler  # type: ignore
from slowapi.errors import RateLimitExceeded  # type: ignore

load_dotenv()

from rallyboard.api.routes import router, limiter as routes_limiter  # noqa: E402
from rallyboard.api.public_routes import public_router  # noqa: E402
from rallyboard.database import db  # noqa: E402
from rallyboard.services import maintenance_service  # noqa: E402


def configure_logging() -> logging.Logger:
    """Root logging at LOG_LEVEL (default INFO); unknown names fall back to INFO."""
    level = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    return logging.getLogger(__name__)


logger = configure_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan handler for startup and shutdown events."""
    logger.info("Starting up Rallyboard API...")

    # Missing tables are created; existing ones are left alone
    try:
        await db.init_database()
        logger.info("Database initialized")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}", exc_info=True)
        # Don't raise - /api/internal/bootstrap can recover an empty database

    # Link members that were added by email before their user signed up
    try:
        async with db.AsyncSessionLocal() as session:
            linked = await maintenance_service.link_orphan_members(session)
        logger.info(f"Orphan member link complete ({linked} linked)")
    except Exception as e:
        logger.error(f"Failed to link orphan members: {e}", exc_info=True)

    yield

    logger.info("Shutting down Rallyboard API...")
    await db.engine.dispose()


app = FastAPI(
    title="Rallyboard API",
    description="API for badminton teams, sessions and game statistics",
    version="1.0.0",
    lifespan=lifespan,
)

# Rate limits are declared per route; 429 on breach
app.state.limiter = routes_limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Comma-separated ALLOWED_ORIGINS
allowed_origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

# Authenticated API, then the cacheable public endpoints
app.include_router(router)
app.include_router(public_router)


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
