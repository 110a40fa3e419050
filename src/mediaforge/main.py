"""Main application entrypoint for MediaForge."""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from mediaforge.api.v1 import routes_health
from mediaforge.api.v1.routes_assembly import router as assembly_router
from mediaforge.core.config import settings
from mediaforge.core.logging import setup_logging
from mediaforge.services.assembly.recovery import recover_pending_sessions
from mediaforge.services.assembly.service import get_assembler
from mediaforge.storage.upload_store import record_store

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the recovery scan in the background on startup."""
    recovery_task = None
    if settings.RECOVERY_ON_STARTUP:
        recovery_task = asyncio.create_task(recover_pending_sessions(get_assembler(), record_store))
        logger.info("Recovery scan scheduled")
    yield
    if recovery_task is not None and not recovery_task.done():
        recovery_task.cancel()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        FastAPI: Configured FastAPI application instance
    """
    setup_logging()

    app = FastAPI(
        title=settings.SERVICE_NAME,
        version=settings.SERVICE_VERSION,
        lifespan=lifespan,
    )

    app.include_router(routes_health.router, tags=["health"])
    app.include_router(assembly_router)

    return app


# Export app instance for ASGI servers
app = create_app()
