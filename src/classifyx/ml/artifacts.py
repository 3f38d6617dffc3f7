"""Locate model artifacts on disk, fetching them from the HuggingFace Hub if configured."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from huggingface_hub import hf_hub_download
from huggingface_hub.errors import HfHubHTTPError, LocalEntryNotFoundError

from classifyx.errors import ModelLoadError

if TYPE_CHECKING:
    from classifyx.config import Settings

logger = logging.getLogger(__name__)


def resolve_artifact(path: Path, settings: Settings) -> Path:
    """Return a local path for ``path``, downloading it if necessary.

    A file that already exists is used as-is. Otherwise the file named
    ``path.name`` is downloaded from ``settings.model_repo_id`` into
    ``settings.models_dir``.

    Raises:
        ModelLoadError: If the file is missing and cannot be downloaded.
    """
    if path.is_file():
        return path

    if settings.model_repo_id is None:
        raise ModelLoadError(f"Artifact not found: {path} (set CLASSIFYX_MODEL_REPO_ID to download it)")

    models_dir = Path(settings.models_dir)
    models_dir.mkdir(parents=True, exist_ok=True)
    try:
        downloaded = Path(
            hf_hub_download(
                repo_id=settings.model_repo_id,
                filename=path.name,
                local_dir=str(models_dir),
            )
        )
    except (HfHubHTTPError, LocalEntryNotFoundError, OSError, ValueError) as exc:
        raise ModelLoadError(f"Cannot download {path.name} from {settings.model_repo_id}: {exc}") from exc

    logger.info("Downloaded %s to %s", path.name, downloaded)
    return downloaded
