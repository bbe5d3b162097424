"""Main FastAPI application"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from issuemirror import __version__
from issuemirror.api import sync, webhooks
from issuemirror.config import settings
from issuemirror.models.base import init_db
from issuemirror.scheduler import scheduler

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    # Startup
    logger.info("Starting GitHub Issue Mirror")
    init_db()
    scheduler.start()
    yield
    # Shutdown
    logger.info("Stopping GitHub Issue Mirror")
    scheduler.stop()


app = FastAPI(
    title="GitHub Issue Mirror",
    description="Mirror GitHub issues, labels and events into a local database",
    version=__version__,
    lifespan=lifespan,
)

# Include API routers
app.include_router(webhooks.router)
app.include_router(sync.router)


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "service": "GitHub Issue Mirror"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "issuemirror.main:app",
        host=settings.host,
        port=settings.port,
        reload=False,
        log_level=settings.log_level.lower(),
    )
