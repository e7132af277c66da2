"""
Recodarr backend service: encoding queue control over HTTP.

Run with:
    recodarr serve
or
    uvicorn recodarr.main:create_app --factory
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from . import __version__
from .execution.ffmpeg import TranscodeDriver
from .execution.retry import RetryPolicy
from .jobs.manager import QueueManager
from .persistence import JobStore
from .routes import queue
from .settings import ServiceSettings, load_settings

logger = logging.getLogger(__name__)


def build_queue_manager(settings: ServiceSettings) -> QueueManager:
    """Wire store, driver and manager from settings. Does not load the queue."""
    driver = TranscodeDriver(
        log_dir=settings.job_log_dir,
        ffmpeg_path=settings.ffmpeg_path,
        ffprobe_path=settings.ffprobe_path,
        retry=RetryPolicy(attempts=settings.retry_attempts, delay=settings.retry_delay),
        watchdog_grace=settings.watchdog_grace,
        watchdog_interval=settings.watchdog_interval,
        watchdog_max=settings.watchdog_max,
    )
    return QueueManager(
        store=JobStore(settings.queue_path),
        driver=driver,
        log_dir=settings.job_log_dir,
        progress_save_delay=settings.progress_save_delay,
    )


def create_app(
    settings: Optional[ServiceSettings] = None,
    manager: Optional[QueueManager] = None,
) -> FastAPI:
    """
    Build the FastAPI app.

    Args:
        settings: Service settings (read from the environment if None)
        manager: Pre-built queue manager. Must already be loaded.
    """
    settings = settings or load_settings()

    if manager is None:
        manager = build_queue_manager(settings)
        manager.load()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        app.state.queue_manager.shutdown()

    app = FastAPI(title="Recodarr Backend", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.queue_manager = manager

    app.include_router(queue.router)

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "processing": manager.is_processing,
            "in_flight": manager.in_flight_count,
        }

    logger.info(f"Recodarr backend ready (queue file {settings.queue_path})")
    return app
