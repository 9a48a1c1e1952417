"""Leave Tracker — FastAPI Application Factory."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from leave_tracker.auth.router import router as users_router
from leave_tracker.common.exceptions import register_exception_handlers
from leave_tracker.common.rate_limit import limiter
from leave_tracker.config import settings
from leave_tracker.database import engine
from leave_tracker.leave.router import router as leave_router
from leave_tracker.toil.router import router as toil_router

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    flags = settings.feature_flags
    logger.info(
        "Starting leave tracker (%s): toil=%s toil_requests=%s toil_admin=%s sick=%s",
        settings.ENVIRONMENT,
        flags.toil_enabled,
        flags.toil_request_enabled,
        flags.toil_admin_enabled,
        flags.sick_leave_enabled,
    )
    yield
    await engine.dispose()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    configure_logging()

    app = FastAPI(
        title="Leave Tracker",
        description="Annual, sick and TOIL leave requests, balances and approvals",
        version="1.0.0",
        docs_url="/api/docs" if settings.ENVIRONMENT != "production" else None,
        redoc_url="/api/redoc" if settings.ENVIRONMENT != "production" else None,
        lifespan=lifespan,
    )

    # Exception handlers (RFC 7807)
    register_exception_handlers(app)

    # Rate limiting (slowapi)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Health check (no auth)
    @app.get("/api/v1/health", tags=["system"])
    async def health_check():
        return {
            "status": "healthy",
            "version": "1.0.0",
            "environment": settings.ENVIRONMENT,
        }

    # Register routers
    app.include_router(users_router, prefix="/api/v1/users", tags=["users"])
    app.include_router(leave_router, prefix="/api/v1/leave", tags=["leave"])
    app.include_router(toil_router, prefix="/api/v1/toil", tags=["toil"])

    return app


app = create_app()
