"""Image classification pipeline: decode, infer, rank."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from classifyx.config import OutputKind
from classifyx.errors import LabelMismatchError
from classifyx.ml.postprocessing import Prediction, postprocess

if TYPE_CHECKING:
    from classifyx.ml.labels import LabelTable
    from classifyx.ml.model_runtime import ModelRuntime
    from classifyx.ml.preprocessing import ImagePreprocessor

logger = logging.getLogger(__name__)

__all__ = ["ImageClassifier", "Prediction"]


class ImageClassifier:
    """Composes preprocessing, model inference, and top-K selection.

    Instances are built once at startup and shared by all requests. Nothing
    here is mutated after construction.
    """

    def __init__(
        self,
        preprocessor: ImagePreprocessor,
        runtime: ModelRuntime,
        labels: LabelTable,
        output_kind: OutputKind = OutputKind.PROBABILITIES,
        default_top_k: int = 5,
    ) -> None:
        if default_top_k < 1:
            raise ValueError(f"default_top_k must be at least 1, got {default_top_k}")

        num_classes = runtime.num_classes
        if num_classes is not None and num_classes != len(labels):
            raise LabelMismatchError(num_classes, len(labels))

        self._preprocessor = preprocessor
        self._runtime = runtime
        self._labels = labels
        self._output_kind = output_kind
        self._default_top_k = default_top_k

    @property
    def model_name(self) -> str:
        """Return the model identifier string."""
        return self._runtime.model_name

    @property
    def num_classes(self) -> int:
        return len(self._labels)

    @property
    def output_kind(self) -> OutputKind:
        return self._output_kind

    def classify(self, image_bytes: bytes, top_k: int | None = None) -> list[Prediction]:
        """Classify an image and return ranked predictions.

        Args:
            image_bytes: Raw encoded image.
            top_k: Number of predictions to return; the configured default if None.

        Returns:
            Predictions sorted by confidence (descending).

        Raises:
            DecodeError, ShapeError: The image is invalid.
            InferenceError, LabelMismatchError: The model failed.
        """
        k = self._default_top_k if top_k is None else top_k

        started = time.perf_counter()
        tensor = self._preprocessor.preprocess(image_bytes)
        output = self._runtime.infer(tensor)
        predictions = postprocess(output, self._labels, k, self._output_kind)

        logger.info(
            "Classified %d bytes in %.1f ms: %s (%.4f)",
            len(image_bytes),
            (time.perf_counter() - started) * 1000,
            predictions[0].label,
            predictions[0].confidence,
        )
        return predictions
