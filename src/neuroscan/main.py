"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from neuroscan.config import Settings

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from neuroscan.api.routes import router
from neuroscan.config import get_settings
from neuroscan.ml.image_classifier import ClassifierSelector
from neuroscan.ml.inference import InferencePool
from neuroscan.ml.model_manager import OnnxModelManager
from neuroscan.pipeline import PipelineController

logger = logging.getLogger(__name__)


def attach_pipeline(app: FastAPI, settings: Settings) -> PipelineController:
    """Build the pipeline components and store them on ``app.state``."""
    app.state.settings = settings
    app.state.inference_pool = InferencePool(settings)
    app.state.model_manager = OnnxModelManager(settings)
    app.state.selector = ClassifierSelector(settings, app.state.model_manager, app.state.inference_pool)
    app.state.controller = PipelineController(settings, app.state.selector, app.state.inference_pool)
    return app.state.controller


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting NeuroScan (device=%s, max_concurrent=%s, model=%s)",
        settings.device,
        settings.max_concurrent,
        settings.model_path or settings.model_repo_id or "none",
    )

    controller = attach_pipeline(app, settings)
    classifier = await app.state.selector.ensure_ready()

    logger.info("NeuroScan ready (classifier=%s, degraded=%s)", classifier.model_name, controller.degraded)
    yield

    logger.info("Shutting down NeuroScan")
    await controller.shutdown()
    app.state.inference_pool.shutdown()
    app.state.model_manager.shutdown()
    logger.info("NeuroScan shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="NeuroScan",
        description="Brain tumor MRI classification with a progressive analysis state",
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
