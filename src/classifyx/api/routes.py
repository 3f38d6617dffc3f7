"""API route definitions."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Annotated

from fastapi import APIRouter, Header, Query, Request, status
from fastapi.responses import JSONResponse
from starlette.datastructures import UploadFile

from classifyx.api.schemas import (
    ClassifyImageResponse,
    ErrorResponse,
    HealthResponse,
    ModelInfoResponse,
    PredictionItem,
)
from classifyx.errors import DecodeError, InternalError, ShapeError
from classifyx.ml.preprocessing import INPUT_SHAPE

if TYPE_CHECKING:
    from classifyx.config import Settings
    from classifyx.ml.image_classifier import ImageClassifier
    from classifyx.ml.inference import InferencePool

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1")

MAX_TOP_K: int = 100

# Starlette renamed the constants for these two codes.
HTTP_413_CONTENT_TOO_LARGE: int = 413
HTTP_422_UNPROCESSABLE_CONTENT: int = 422


class _PayloadTooLargeError(Exception):
    pass


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


def _get_classifier(request: Request) -> ImageClassifier:
    classifier: ImageClassifier = request.app.state.classifier
    return classifier


def _error(status_code: int, detail: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail})


async def _read_image_payload(request: Request, max_size: int) -> bytes:
    """Return the image bytes from a raw body or a multipart ``file`` field."""
    declared = request.headers.get("content-length")
    if declared is not None and declared.isdigit() and int(declared) > max_size:
        raise _PayloadTooLargeError

    content_type = request.headers.get("content-type", "")
    if content_type.startswith("multipart/form-data"):
        form = await request.form()
        upload = form.get("file")
        if not isinstance(upload, UploadFile):
            raise DecodeError("Multipart request has no 'file' field")
        # Starlette spools uploaded files to disk past 1 MiB.
        data = await upload.read()
        if len(data) > max_size:
            raise _PayloadTooLargeError
        return data

    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > max_size:
            raise _PayloadTooLargeError
    return bytes(body)


@router.post(
    "/classify",
    response_model=ClassifyImageResponse,
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
        HTTP_413_CONTENT_TOO_LARGE: {"model": ErrorResponse},
        HTTP_422_UNPROCESSABLE_CONTENT: {"model": ErrorResponse},
        status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    summary="Classify an image",
)
async def classify_image(
    request: Request,
    top_k: Annotated[int | None, Query(ge=1, le=MAX_TOP_K)] = None,
    x_top_k: Annotated[int | None, Header(ge=1, le=MAX_TOP_K)] = None,
) -> ClassifyImageResponse | JSONResponse:
    """Classify the image sent as the request body and return ranked labels."""
    settings = _get_settings(request)
    classifier = _get_classifier(request)
    pool = _get_inference_pool(request)
    k = top_k if top_k is not None else x_top_k

    try:
        image_bytes = await _read_image_payload(request, settings.max_file_size)
        predictions = await pool.classify(classifier, image_bytes, k)
    except _PayloadTooLargeError:
        return _error(HTTP_413_CONTENT_TOO_LARGE, f"Image exceeds {settings.max_file_size} bytes")
    except DecodeError as exc:
        logger.info("Rejected undecodable image: %s", exc)
        return _error(status.HTTP_400_BAD_REQUEST, str(exc))
    except ShapeError as exc:
        logger.info("Rejected image with unusable shape: %s", exc)
        return _error(HTTP_422_UNPROCESSABLE_CONTENT, str(exc))
    except InternalError:
        logger.exception("Classification failed")
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Error during classification")
    except TimeoutError:
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, "Inference capacity exhausted, retry later")

    return ClassifyImageResponse(
        model=classifier.model_name,
        predictions=[
            PredictionItem(label=p.label, confidence=p.confidence, rank=p.rank) for p in predictions
        ],
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = _get_settings(request)
    pool = _get_inference_pool(request)
    classifier = _get_classifier(request)
    return HealthResponse(
        status="ok",
        gpu=settings.device == "cuda",
        model=classifier.model_name,
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )


@router.get(
    "/model",
    response_model=ModelInfoResponse,
    summary="Describe the loaded model",
)
async def model_info(request: Request) -> ModelInfoResponse:
    """Return the loaded model and its pre- and postprocessing conventions."""
    settings = _get_settings(request)
    classifier = _get_classifier(request)
    return ModelInfoResponse(
        name=classifier.model_name,
        input_shape=list(INPUT_SHAPE),
        num_classes=classifier.num_classes,
        normalization=settings.normalization.value,
        output_kind=classifier.output_kind.value,
        default_top_k=settings.top_k,
    )
