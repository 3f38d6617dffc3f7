"""Model runtime: load the frozen MobileNet v2 graph once and evaluate it.

The graph is an ONNX export of ``mobilenet_v2_1.4_224_frozen.pb``. Its session
is created at construction and never replaced; ``InferenceSession.run`` is
safe to call from several threads, so the runtime holds no per-call state.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

import numpy as np
from onnxruntime import InferenceSession, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode

from classifyx.errors import InferenceError, ModelLoadError
from classifyx.ml.preprocessing import INPUT_SHAPE

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from classifyx.config import Settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol (kept for test mocking)
# ---------------------------------------------------------------------------


class ModelRuntime(Protocol):
    """Protocol for a loaded, read-only classification model."""

    @property
    def model_name(self) -> str:
        """Return the model identifier string."""
        ...

    @property
    def num_classes(self) -> int | None:
        """Return the declared output size, or None if it is dynamic."""
        ...

    def infer(self, tensor: NDArray[np.float32]) -> NDArray[np.float32]:
        """Evaluate a ``(1, 224, 224, 3)`` tensor and return the 1-D output vector."""
        ...


# ---------------------------------------------------------------------------
# Concrete implementation
# ---------------------------------------------------------------------------


class OnnxModelRuntime:
    """Runs the classifier graph with ONNX Runtime."""

    def __init__(self, model_path: Path, settings: Settings) -> None:
        self._settings = settings
        self._model_path = Path(model_path)
        self._providers = self._build_providers()
        self._session_options = self._build_session_options()

        self._session = self._load_session()
        self._input_name, self._output_name, self._num_classes = self._inspect_session(self._session)
        logger.info(
            "Loaded %s (input=%s, output=%s, classes=%s, providers=%s)",
            self.model_name,
            self._input_name,
            self._output_name,
            self._num_classes,
            self._session.get_providers(),
        )

    # -- Public API ---------------------------------------------------------

    @property
    def model_name(self) -> str:
        return self._model_path.stem

    @property
    def num_classes(self) -> int | None:
        return self._num_classes

    def infer(self, tensor: NDArray[np.float32]) -> NDArray[np.float32]:
        """Evaluate one input tensor.

        Raises:
            ValueError: If the tensor does not match the input contract.
            InferenceError: If ONNX Runtime fails or the output is unusable.
        """
        if tensor.shape != INPUT_SHAPE or tensor.dtype != np.float32:
            raise ValueError(f"Expected float32 tensor of shape {INPUT_SHAPE}, got {tensor.dtype} {tensor.shape}")

        try:
            outputs = self._session.run([self._output_name], {self._input_name: tensor})
        except Exception as exc:  # noqa: BLE001
            raise InferenceError(f"Model evaluation failed: {exc}") from exc

        output = np.asarray(outputs[0], dtype=np.float32)
        if output.ndim == 0 or output.shape[0] != 1:
            raise InferenceError(f"Unexpected output shape {output.shape}")
        vector = output.reshape(-1)
        if not np.all(np.isfinite(vector)):
            raise InferenceError("Model produced non-finite output")
        return vector

    # -- Internal -----------------------------------------------------------

    def _load_session(self) -> InferenceSession:
        if not self._model_path.is_file():
            raise ModelLoadError(f"Model file not found: {self._model_path}")
        try:
            return InferenceSession(
                str(self._model_path),
                sess_options=self._session_options,
                providers=self._providers,
            )
        except Exception as exc:  # noqa: BLE001
            raise ModelLoadError(f"Cannot load model {self._model_path}: {exc}") from exc

    @staticmethod
    def _inspect_session(session: InferenceSession) -> tuple[str, str, int | None]:
        inputs = session.get_inputs()
        outputs = session.get_outputs()
        if len(inputs) != 1 or not outputs:
            raise ModelLoadError(f"Expected a single-input graph, got {len(inputs)} inputs and {len(outputs)} outputs")

        model_input = inputs[0]
        if model_input.type != "tensor(float)":
            raise ModelLoadError(f"Model input must be tensor(float), got {model_input.type}")
        shape = list(model_input.shape)
        # Symbolic dimensions are reported as strings or None.
        expected = list(INPUT_SHAPE)
        if len(shape) != len(expected) or any(
            isinstance(dim, int) and dim != want for dim, want in zip(shape, expected, strict=True)
        ):
            raise ModelLoadError(f"Model input shape {shape} is incompatible with {list(INPUT_SHAPE)}")

        model_output = outputs[0]
        last_dim = model_output.shape[-1] if model_output.shape else None
        num_classes = last_dim if isinstance(last_dim, int) and last_dim > 0 else None
        return model_input.name, model_output.name, num_classes

    def _build_providers(self) -> list[str | tuple[str, dict[str, object]]]:
        device = self._settings.device
        if device == "cuda":
            return [
                (
                    "CUDAExecutionProvider",
                    {
                        "device_id": 0,
                        "gpu_mem_limit": self._settings.gpu_mem_limit,
                        "arena_extend_strategy": "kSameAsRequested",
                    },
                ),
                "CPUExecutionProvider",
            ]
        if device == "openvino":
            return [
                ("OpenVINOExecutionProvider", {"device_type": "CPU"}),
                "CPUExecutionProvider",
            ]
        return ["CPUExecutionProvider"]

    def _build_session_options(self) -> SessionOptions:
        opts = SessionOptions()
        opts.intra_op_num_threads = self._settings.intra_op_threads
        opts.inter_op_num_threads = self._settings.inter_op_threads
        opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL
        opts.enable_mem_pattern = True
        opts.enable_mem_reuse = True

        if self._settings.device == "openvino":
            # OpenVINO does its own graph optimization
            from onnxruntime import GraphOptimizationLevel

            opts.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
        return opts
