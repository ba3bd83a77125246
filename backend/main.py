import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import get_log_level_from_env, get_settings
from database import close_db, init_db
from log_utils import setup_logging
from media_poller import get_poller
from routers import history, notifications, status

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # LOG_LEVEL in the environment wins over the saved setting
    level = get_log_level_from_env() if "LOG_LEVEL" in os.environ else get_settings().backend_log_level
    setup_logging(level)
    init_db()

    poller = get_poller()
    await poller.start()
    logger.info("OmniStream monitor started")
    try:
        yield
    finally:
        await poller.stop()
        if poller.notifier is not None:
            # Let channel sends already in flight finish
            await poller.notifier.dispatcher.drain()
        close_db()
        logger.info("OmniStream monitor stopped")


app = FastAPI(
    title="OmniStream",
    description="Live session monitoring across Plex, Jellyfin and Emby servers",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS for development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(status.router)
app.include_router(history.router)
app.include_router(notifications.router)


# Health check
@app.get("/api/health")
async def health_check():
    return {"status": "healthy", "service": "omnistream"}
