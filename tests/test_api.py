"""Tests for the ClassifyX HTTP API."""

from __future__ import annotations

import io
import os
from typing import TYPE_CHECKING
from unittest.mock import patch

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

import httpx
import pytest
from conftest import NUM_CLASSES, FakeRuntime, encode_image
from fastapi import FastAPI, status

from classifyx.config import get_settings
from classifyx.errors import LabelMismatchError, ModelLoadError
from classifyx.main import create_app, lifespan
from classifyx.ml.image_classifier import ImageClassifier
from classifyx.ml.inference import InferencePool
from classifyx.ml.labels import LabelTable
from classifyx.ml.preprocessing import ImagePreprocessor


def _labels() -> LabelTable:
    return LabelTable(["background"] + [f"class_{i}" for i in range(1, NUM_CLASSES)])


def _init_app_state(app: FastAPI, runtime: FakeRuntime | None = None, **env_overrides: str) -> None:
    """Manually initialize app state (ASGITransport does not trigger lifespan)."""
    with patch.dict(os.environ, env_overrides):
        settings = get_settings()
    app.state.settings = settings
    app.state.inference_pool = InferencePool(settings)
    app.state.classifier = ImageClassifier(
        ImagePreprocessor(settings.normalization, settings.max_image_pixels),
        runtime or FakeRuntime(),
        _labels(),
        output_kind=settings.output_kind,
        default_top_k=settings.top_k,
    )


async def _make_client(app: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://testserver",
    ) as ac:
        yield ac
    pool: InferencePool = app.state.inference_pool
    pool.shutdown()


@pytest.fixture()
def app() -> FastAPI:
    """Create a fresh app instance with default settings."""
    application = create_app()
    _init_app_state(application)
    return application


@pytest.fixture()
async def client(app: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
    """Async HTTP client for testing the app."""
    async for ac in _make_client(app):
        yield ac


class TestHealthEndpoint:
    async def test_health_returns_ok(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/v1/health")
        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["status"] == "ok"
        assert data["gpu"] is False
        assert data["model"] == "fake_mobilenet"
        assert data["concurrent_requests"] == 0
        assert data["queue_depth"] == 0

    async def test_health_gpu_true_when_cuda(self) -> None:
        cuda_app = create_app()
        _init_app_state(cuda_app, CLASSIFYX_DEVICE="cuda")
        async for ac in _make_client(cuda_app):
            response = await ac.get("/api/v1/health")
            assert response.status_code == status.HTTP_200_OK
            assert response.json()["gpu"] is True


class TestModelEndpoint:
    async def test_model_info(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/v1/model")
        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["name"] == "fake_mobilenet"
        assert data["input_shape"] == [1, 224, 224, 3]
        assert data["num_classes"] == NUM_CLASSES
        assert data["normalization"] == "unit"
        assert data["output_kind"] == "probabilities"
        assert data["default_top_k"] == 5


class TestClassifyEndpoint:
    async def test_raw_body(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/api/v1/classify",
            content=encode_image(size=(400, 300)),
            headers={"Content-Type": "image/jpeg"},
        )
        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["model"] == "fake_mobilenet"
        predictions = data["predictions"]
        assert len(predictions) == 5
        assert [p["rank"] for p in predictions] == [1, 2, 3, 4, 5]
        confidences = [p["confidence"] for p in predictions]
        assert confidences == sorted(confidences, reverse=True)
        assert all(0.0 <= c <= 1.0 for c in confidences)

    async def test_top_k_query(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/api/v1/classify?top_k=3", content=encode_image())
        assert response.status_code == status.HTTP_200_OK
        assert len(response.json()["predictions"]) == 3

    async def test_top_k_header(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/api/v1/classify", content=encode_image(), headers={"X-Top-K": "2"})
        assert response.status_code == status.HTTP_200_OK
        assert len(response.json()["predictions"]) == 2

    async def test_query_wins_over_header(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/api/v1/classify?top_k=1",
            content=encode_image(),
            headers={"X-Top-K": "4"},
        )
        assert len(response.json()["predictions"]) == 1

    @pytest.mark.parametrize("top_k", ["0", "101", "abc"])
    async def test_invalid_top_k(self, client: httpx.AsyncClient, top_k: str) -> None:
        response = await client.post(f"/api/v1/classify?top_k={top_k}", content=encode_image())
        assert response.status_code == 422

    async def test_multipart_upload(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/api/v1/classify",
            files={"file": ("cat.png", io.BytesIO(encode_image(fmt="PNG")), "image/png")},
        )
        assert response.status_code == status.HTTP_200_OK
        assert len(response.json()["predictions"]) == 5

    async def test_multipart_without_file_field(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/api/v1/classify",
            files={"image": ("cat.png", io.BytesIO(encode_image(fmt="PNG")), "image/png")},
        )
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    async def test_empty_body(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/api/v1/classify", content=b"")
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["detail"] == "No image data received"

    async def test_text_body(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/api/v1/classify",
            content=b"just some text, not an image",
            headers={"Content-Type": "text/plain"},
        )
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "format" in response.json()["detail"]

    async def test_body_too_large(self) -> None:
        app = create_app()
        _init_app_state(app, CLASSIFYX_MAX_FILE_SIZE="100")
        async for ac in _make_client(app):
            response = await ac.post("/api/v1/classify", content=encode_image())
            assert response.status_code == 413

    async def test_chunked_body_too_large_stops_reading(self) -> None:
        app = create_app()
        _init_app_state(app, CLASSIFYX_MAX_FILE_SIZE="100")
        sent = 0

        async def chunks() -> AsyncIterator[bytes]:
            nonlocal sent
            for _ in range(1000):
                sent += 1
                yield b"\x00" * 64

        async for ac in _make_client(app):
            response = await ac.post("/api/v1/classify", content=chunks())
            assert response.status_code == 413
        assert sent < 10

    async def test_image_over_pixel_limit(self) -> None:
        app = create_app()
        _init_app_state(app, CLASSIFYX_MAX_IMAGE_PIXELS="100")
        async for ac in _make_client(app):
            response = await ac.post("/api/v1/classify", content=encode_image(size=(20, 20)))
            assert response.status_code == 422
            assert "limit" in response.json()["detail"]

    async def test_label_mismatch_is_internal_error(self) -> None:
        app = create_app()
        _init_app_state(app, runtime=FakeRuntime(output_size=1000, declared=None))
        async for ac in _make_client(app):
            response = await ac.post("/api/v1/classify", content=encode_image())
            assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
            assert response.json()["detail"] == "Error during classification"

    async def test_pool_timeout_returns_503(self, client: httpx.AsyncClient) -> None:
        with patch.object(InferencePool, "classify", side_effect=TimeoutError):
            response = await client.post("/api/v1/classify", content=encode_image())
        assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE


class TestLifespan:
    @staticmethod
    def _write_labels(path: Path, count: int) -> Path:
        labels_path = path / "labels.txt"
        labels_path.write_text("\n".join(f"label_{i}" for i in range(count)) + "\n", encoding="utf-8")
        return labels_path

    async def test_missing_model_aborts_startup(self, tmp_path: Path) -> None:
        labels_path = self._write_labels(tmp_path, NUM_CLASSES)
        env = {
            "CLASSIFYX_MODEL_PATH": str(tmp_path / "missing.onnx"),
            "CLASSIFYX_LABELS_PATH": str(labels_path),
        }
        app = create_app()
        with patch.dict(os.environ, env), pytest.raises(ModelLoadError):
            async with lifespan(app):
                pass

    async def test_label_mismatch_aborts_startup(self, tmp_path: Path) -> None:
        labels_path = self._write_labels(tmp_path, NUM_CLASSES)
        model_path = tmp_path / "model.onnx"
        model_path.write_bytes(b"onnx")
        env = {"CLASSIFYX_MODEL_PATH": str(model_path), "CLASSIFYX_LABELS_PATH": str(labels_path)}

        app = create_app()
        with (
            patch.dict(os.environ, env),
            patch("classifyx.main.OnnxModelRuntime", lambda path, settings: FakeRuntime(1000, 1000)),
            pytest.raises(LabelMismatchError),
        ):
            async with lifespan(app):
                pass

    async def test_startup_loads_classifier(self, tmp_path: Path) -> None:
        labels_path = self._write_labels(tmp_path, NUM_CLASSES)
        model_path = tmp_path / "model.onnx"
        model_path.write_bytes(b"onnx")
        env = {"CLASSIFYX_MODEL_PATH": str(model_path), "CLASSIFYX_LABELS_PATH": str(labels_path)}

        app = create_app()
        with (
            patch.dict(os.environ, env),
            patch("classifyx.main.OnnxModelRuntime", lambda path, settings: FakeRuntime()),
        ):
            async with lifespan(app):
                assert app.state.classifier.num_classes == NUM_CLASSES
                async with httpx.AsyncClient(
                    transport=httpx.ASGITransport(app=app),
                    base_url="http://testserver",
                ) as ac:
                    response = await ac.post("/api/v1/classify?top_k=2", content=encode_image())
                assert response.status_code == status.HTTP_200_OK
                assert response.json()["predictions"][0]["label"].startswith("label_")
