"""Turn the model's raw output vector into ranked predictions."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

from classifyx.config import OutputKind
from classifyx.errors import LabelMismatchError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray


@dataclass(frozen=True)
class Prediction:
    """A single ranked classification prediction."""

    label: str
    confidence: float
    rank: int
    index: int


def softmax(logits: NDArray[np.floating]) -> NDArray[np.float64]:
    """Numerically stable softmax over a 1-D vector."""
    shifted = logits.astype(np.float64) - np.max(logits)
    exp = np.exp(shifted)
    return exp / np.sum(exp)


def to_probabilities(output: NDArray[np.floating], kind: OutputKind) -> NDArray[np.float64]:
    """Convert a model output vector to probabilities.

    The exported MobileNet v2 graph ends in a softmax, so its output is
    already a distribution; logits are normalized here.
    """
    if kind == OutputKind.LOGITS:
        return softmax(output)
    return np.clip(output.astype(np.float64), 0.0, 1.0)


def select_top_k(probabilities: NDArray[np.float64], labels: Sequence[str], k: int) -> list[Prediction]:
    """Return the ``k`` most confident predictions.

    Sorted by descending confidence; equal confidences rank the lower class
    index first. ``k`` larger than the number of classes returns them all.

    Raises:
        LabelMismatchError: If the vector length differs from the label count.
        ValueError: If ``k`` is less than 1.
    """
    if probabilities.ndim != 1 or probabilities.shape[0] != len(labels):
        raise LabelMismatchError(int(probabilities.size), len(labels))
    if k < 1:
        raise ValueError(f"top_k must be at least 1, got {k}")

    indices = np.arange(probabilities.shape[0])
    # lexsort orders by the last key first.
    order = np.lexsort((indices, -probabilities))[:k]
    return [
        Prediction(
            label=labels[int(index)],
            confidence=float(probabilities[index]),
            rank=rank,
            index=int(index),
        )
        for rank, index in enumerate(order, start=1)
    ]


def postprocess(
    output: NDArray[np.floating],
    labels: Sequence[str],
    k: int,
    kind: OutputKind = OutputKind.PROBABILITIES,
) -> list[Prediction]:
    """Normalize ``output`` and select the top ``k`` labelled predictions."""
    return select_top_k(to_probabilities(output, kind), labels, k)
