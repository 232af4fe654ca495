"""
FastAPI application for StreamVio
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..config import StreamVioConfig, get_config, resolve_binary, set_config
from ..events import EventBus, set_event_bus
from ..hardware import HardwareDetector, set_hardware_detector
from ..jobs import JobScheduler, set_job_scheduler
from ..store import JobStore
from .routes import health, transcode
from .websocket import broadcast_event, websocket_events_handler

logger = logging.getLogger(__name__)


def create_app(config: Optional[StreamVioConfig] = None) -> FastAPI:
    """Build the API app. The scheduler and its collaborators are created in the lifespan."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        cfg = config or get_config()
        set_config(cfg)
        health.set_start_time(time.time())

        event_bus = EventBus()
        set_event_bus(event_bus)
        detector = HardwareDetector(
            resolve_binary(cfg.transcoding.ffmpeg_path, "ffmpeg"),
            timeout=cfg.hardware.detect_timeout,
        )
        set_hardware_detector(detector)

        store = JobStore(cfg.database.url, echo=cfg.database.echo)
        scheduler = JobScheduler(store, event_bus=event_bus, config=cfg, hardware=detector)
        unsubscribe = event_bus.subscribe(broadcast_event)
        await scheduler.start()
        set_job_scheduler(scheduler)
        app.state.scheduler = scheduler

        logger.info(f"StreamVio v{__version__} transcoding engine started")

        yield

        logger.info("Shutting down StreamVio...")
        unsubscribe()
        await scheduler.stop(cancel_running=True)
        await store.close()
        set_job_scheduler(None)
        set_hardware_detector(None)
        logger.info("StreamVio shutdown complete")

    app = FastAPI(
        title="StreamVio",
        description="Transcoding and adaptive streaming job engine",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router)
    app.include_router(transcode.router)

    @app.websocket("/ws/progress")
    async def websocket_progress(websocket: WebSocket):
        await websocket_events_handler(websocket)

    return app
