"""Typed failures raised by the classification pipeline.

Input errors are request-scoped user faults. Internal errors are request-scoped
server faults. ``ModelLoadError`` only occurs while the service starts.
"""

from __future__ import annotations


class ClassifierError(Exception):
    """Base class for all ClassifyX errors."""


class InputError(ClassifierError):
    """The submitted image cannot be classified."""


class DecodeError(InputError):
    """The payload is not a supported or valid image."""


class ShapeError(InputError):
    """The decoded image cannot be brought to the model input shape."""


class InternalError(ClassifierError):
    """The service failed while handling a valid request."""


class InferenceError(InternalError):
    """The model runtime failed to evaluate the input tensor."""


class LabelMismatchError(InternalError):
    """The model output size disagrees with the label table."""

    def __init__(self, num_outputs: int, num_labels: int) -> None:
        super().__init__(f"Model produces {num_outputs} classes but the label table has {num_labels} entries")
        self.num_outputs = num_outputs
        self.num_labels = num_labels


class ModelLoadError(ClassifierError):
    """A model artifact is missing or malformed."""
