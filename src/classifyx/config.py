"""Environment-based configuration for ClassifyX."""

from __future__ import annotations

from enum import StrEnum
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Normalization(StrEnum):
    """Float range the model input pixels are scaled to."""

    UNIT = "unit"  # [0, 1]
    SYMMETRIC = "symmetric"  # [-1, 1]


class OutputKind(StrEnum):
    """What the model's output vector holds."""

    PROBABILITIES = "probabilities"
    LOGITS = "logits"


class Settings(BaseSettings):
    """Application settings loaded from CLASSIFYX_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="CLASSIFYX_",
        case_sensitive=False,
        protected_namespaces=(),
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8080
    log_level: str = "INFO"

    # Model artifacts
    model_path: Path = Path("models/mobilenet_v2_1.4_224.onnx")
    labels_path: Path = Path("models/labels.txt")
    model_repo_id: str | None = None
    models_dir: Path = Path("models")

    # Pre- and postprocessing conventions of the frozen graph
    normalization: Normalization = Normalization.UNIT
    output_kind: OutputKind = OutputKind.PROBABILITIES
    top_k: int = Field(default=5, ge=1, le=100)

    # ML device
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)
    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)

    # Concurrency
    max_concurrent: int = Field(default=2, ge=1)
    queue_timeout: float = Field(default=5.0, gt=0)

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=20_971_520, ge=1)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
