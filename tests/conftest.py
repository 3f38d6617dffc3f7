"""Shared test helpers: synthetic images and a fake model runtime."""

from __future__ import annotations

import io
from typing import TYPE_CHECKING

import numpy as np
import pytest
from PIL import Image

from classifyx.ml.labels import LabelTable
from classifyx.ml.preprocessing import INPUT_SHAPE

if TYPE_CHECKING:
    from numpy.typing import NDArray

NUM_CLASSES = 1001


def encode_image(
    size: tuple[int, int] = (400, 300),
    mode: str = "RGB",
    color: int | tuple[int, ...] = (200, 30, 30),
    fmt: str = "JPEG",
) -> bytes:
    """Encode a solid-color image with Pillow."""
    buf = io.BytesIO()
    Image.new(mode, size, color).save(buf, format=fmt)
    return buf.getvalue()


def gradient_image(size: tuple[int, int] = (64, 48), fmt: str = "PNG") -> bytes:
    """Encode an RGB horizontal gradient (non-uniform content)."""
    width, height = size
    row = np.linspace(0, 255, width, dtype=np.uint8)
    pixels = np.stack([np.tile(row, (height, 1))] * 3, axis=-1)
    buf = io.BytesIO()
    Image.fromarray(pixels).save(buf, format=fmt)
    return buf.getvalue()


class FakeRuntime:
    """Deterministic stand-in for the ONNX runtime.

    Returns a probability vector whose peak depends on the mean input value.
    """

    def __init__(self, output_size: int = NUM_CLASSES, declared: int | None = NUM_CLASSES) -> None:
        self._output_size = output_size
        self._declared = declared
        self.calls = 0

    @property
    def model_name(self) -> str:
        return "fake_mobilenet"

    @property
    def num_classes(self) -> int | None:
        return self._declared

    def infer(self, tensor: NDArray[np.float32]) -> NDArray[np.float32]:
        assert tensor.shape == INPUT_SHAPE
        assert tensor.dtype == np.float32
        self.calls += 1
        peak = 1 + int(float(tensor.mean()) * 100) % (self._output_size - 1)
        probs = np.full(self._output_size, 0.5 / (self._output_size - 1), dtype=np.float32)
        probs[peak] = 0.5
        return probs


@pytest.fixture()
def labels() -> LabelTable:
    return LabelTable(["background"] + [f"class_{i}" for i in range(1, NUM_CLASSES)])


@pytest.fixture()
def fake_runtime() -> FakeRuntime:
    return FakeRuntime()
