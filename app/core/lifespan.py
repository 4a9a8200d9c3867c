from contextlib import asynccontextmanager

from fastapi import FastAPI

from core.config import settings
from core.context import build_context
from core.logger import logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Builds the broker context on startup unless one was injected
    beforehand (tests), and stops active pollers on shutdown.
    """
    if getattr(app.state, "context", None) is None:
        app.state.context = build_context(settings)
    logger.info("Lifespan startup: Ready to serve requests.")
    yield
    await app.state.context.close()
    logger.info("Lifespan shutdown.")
