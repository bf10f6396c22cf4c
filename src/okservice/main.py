"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from okservice import __version__
from okservice.config import get_settings
from okservice.routes import health

logger = logging.getLogger(__name__)
settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    logger.info("Starting %s %s (debug=%s)", app.title, app.version, app.debug)
    yield
    logger.info("Application shut down")


app = FastAPI(
    title="okservice",
    description="Health-check HTTP service",
    version=__version__,
    debug=settings.debug,
    lifespan=lifespan,
    docs_url=None,
    redoc_url=None,
    openapi_url=None,
)

app.include_router(health.router, tags=["Health"])
