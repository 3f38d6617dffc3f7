"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from classifyx.config import Settings

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from classifyx.api.routes import router
from classifyx.config import get_settings
from classifyx.ml.artifacts import resolve_artifact
from classifyx.ml.image_classifier import ImageClassifier
from classifyx.ml.inference import InferencePool
from classifyx.ml.labels import LabelTable
from classifyx.ml.model_runtime import OnnxModelRuntime
from classifyx.ml.preprocessing import ImagePreprocessor

logger = logging.getLogger(__name__)


def build_classifier(settings: Settings) -> ImageClassifier:
    """Load the label table and model and assemble the pipeline.

    Raises:
        ModelLoadError: If an artifact is missing or malformed.
        LabelMismatchError: If the model and label table disagree.
    """
    labels = LabelTable.from_file(resolve_artifact(settings.labels_path, settings))
    runtime = OnnxModelRuntime(resolve_artifact(settings.model_path, settings), settings)
    preprocessor = ImagePreprocessor(
        normalization=settings.normalization,
        max_image_pixels=settings.max_image_pixels,
    )
    return ImageClassifier(
        preprocessor,
        runtime,
        labels,
        output_kind=settings.output_kind,
        default_top_k=settings.top_k,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()
    app.state.settings = settings

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting ClassifyX (device=%s, max_concurrent=%s, model=%s, labels=%s)",
        settings.device,
        settings.max_concurrent,
        settings.model_path,
        settings.labels_path,
    )

    # Load failures propagate and abort startup before any request is served.
    app.state.classifier = build_classifier(settings)
    inference_pool = InferencePool(settings)
    app.state.inference_pool = inference_pool

    logger.info("ClassifyX ready")
    yield

    logger.info("Shutting down ClassifyX")
    inference_pool.shutdown()
    logger.info("ClassifyX shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="ClassifyX",
        description="Image classification API backed by a frozen MobileNet v2",
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
    settings = get_settings()
    uvicorn.run("classifyx.main:app", host=settings.host, port=settings.port)
