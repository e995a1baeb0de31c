"""FastAPI application entry point."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from photodetect.api.routes import router
from photodetect.config import Settings, get_settings
from photodetect.ml.inference import InferencePool
from photodetect.ml.model_manager import OnnxModelManager
from photodetect.ml.yolov5 import YoloV5Detector
from photodetect.session import DetectionSession

logger = logging.getLogger(__name__)


def init_app_state(app: FastAPI, settings: Settings) -> None:
    """Build the model manager, detector, session and worker pool on ``app.state``."""
    model_manager = OnnxModelManager(settings)
    detector = YoloV5Detector(settings, model_manager)

    app.state.settings = settings
    app.state.model_manager = model_manager
    app.state.session = DetectionSession.from_settings(detector, settings)
    app.state.inference_pool = InferencePool(settings)


async def _evict_idle_sessions(model_manager: OnnxModelManager, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        model_manager.unload_idle_models()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting PhotoDetect (model=%s, target_min_dimension=%s, max_concurrent=%s)",
        settings.detection_model,
        settings.target_min_dimension,
        settings.max_concurrent,
    )

    init_app_state(app, settings)
    session: DetectionSession = app.state.session
    pool: InferencePool = app.state.inference_pool
    if await pool.run(session.initialize_detector):
        logger.info("PhotoDetect ready")
    else:
        logger.warning("PhotoDetect started without a detector; detection requests will fail")

    eviction: asyncio.Task[None] | None = None
    if settings.model_ttl > 0:
        eviction = asyncio.create_task(_evict_idle_sessions(app.state.model_manager, settings.model_ttl / 2))
    yield

    logger.info("Shutting down PhotoDetect")
    if eviction is not None:
        eviction.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await eviction
    pool.shutdown()
    app.state.model_manager.shutdown()
    logger.info("PhotoDetect shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="PhotoDetect",
        description="Photo object detection with annotated overlays",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)
    return application


app = create_app()


def run() -> None:
    """Serve the application with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run("photodetect.main:app", host=settings.host, port=settings.port)
