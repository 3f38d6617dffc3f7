"""Image preprocessing: format sniffing, decoding, and tensor conversion.

Turns untrusted, variably-encoded image bytes into the fixed
``(1, 224, 224, 3)`` float32 NHWC tensor the model expects. The resize policy
is a bilinear stretch to 224x224 with no aspect-ratio preservation; channel
order is RGB.
"""

from __future__ import annotations

import io
import logging
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from classifyx.config import Normalization
from classifyx.errors import DecodeError, ShapeError

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)

INPUT_SIZE: int = 224
INPUT_SHAPE: tuple[int, int, int, int] = (1, INPUT_SIZE, INPUT_SIZE, 3)

# (offset, magic bytes, Pillow format name)
_SIGNATURES: tuple[tuple[int, bytes, str], ...] = (
    (0, b"\xff\xd8\xff", "JPEG"),
    (0, b"\x89PNG\r\n\x1a\n", "PNG"),
    (0, b"GIF87a", "GIF"),
    (0, b"GIF89a", "GIF"),
    (0, b"BM", "BMP"),
    (8, b"WEBP", "WEBP"),
    (0, b"II*\x00", "TIFF"),
    (0, b"MM\x00*", "TIFF"),
)


def sniff_format(data: bytes) -> str:
    """Identify the image encoding from its leading bytes.

    Raises:
        DecodeError: If the payload is empty or the signature is unknown.
    """
    if not data:
        raise DecodeError("No image data received")

    for offset, magic, fmt in _SIGNATURES:
        if data[offset : offset + len(magic)] == magic:
            if fmt == "WEBP" and not data.startswith(b"RIFF"):
                continue
            return fmt
    raise DecodeError("Unsupported or unrecognized image format")


class ImagePreprocessor:
    """Decodes image bytes and converts them into model input tensors."""

    def __init__(
        self,
        normalization: Normalization = Normalization.UNIT,
        max_image_pixels: int = 16_777_216,
    ) -> None:
        self._normalization = normalization
        self._max_image_pixels = max_image_pixels

    @property
    def normalization(self) -> Normalization:
        return self._normalization

    @property
    def value_range(self) -> tuple[float, float]:
        """Inclusive range of the produced tensor values."""
        if self._normalization == Normalization.SYMMETRIC:
            return (-1.0, 1.0)
        return (0.0, 1.0)

    def decode_image(self, image_bytes: bytes) -> NDArray[np.uint8]:
        """Decode raw image bytes into an RGB uint8 numpy array.

        Args:
            image_bytes: Raw file bytes (JPEG, PNG, GIF, BMP, WEBP, or TIFF).

        Returns:
            HxWx3 RGB uint8 numpy array.

        Raises:
            DecodeError: If the bytes are not a valid image of a supported format.
            ShapeError: If the image is empty or exceeds the pixel limit.
        """
        fmt = sniff_format(image_bytes)

        try:
            with Image.open(io.BytesIO(image_bytes), formats=[fmt]) as img:
                width, height = img.size
                if width <= 0 or height <= 0:
                    raise ShapeError(f"Image has degenerate size {width}x{height}")
                if width * height > self._max_image_pixels:
                    raise ShapeError(
                        f"Image has {width * height} pixels, limit is {self._max_image_pixels}"
                    )
                img.load()
                oriented = ImageOps.exif_transpose(img)
                rgb = oriented.convert("RGB")
        except Image.DecompressionBombError as exc:
            raise ShapeError(f"Image exceeds the decoder pixel limit: {exc}") from exc
        except UnidentifiedImageError as exc:
            raise DecodeError(f"Cannot decode {fmt} image: {exc}") from exc
        except (OSError, SyntaxError, ValueError, EOFError) as exc:
            # Pillow reports truncated and corrupt streams with these.
            raise DecodeError(f"Corrupt {fmt} image: {exc}") from exc

        array = np.asarray(rgb, dtype=np.uint8)
        if array.ndim != 3 or array.shape[2] != 3:
            raise ShapeError(f"Decoded image has unexpected shape {array.shape}")
        logger.debug("Decoded %s image (%dx%d)", fmt, width, height)
        return array

    def to_tensor(self, image: NDArray[np.uint8]) -> NDArray[np.float32]:
        """Resize an RGB image to 224x224 and scale it into the model's range.

        Args:
            image: HxWx3 RGB uint8 array.

        Returns:
            Float32 tensor of shape ``(1, 224, 224, 3)``.
        """
        if image.ndim != 3 or image.shape[2] != 3 or image.shape[0] == 0 or image.shape[1] == 0:
            raise ShapeError(f"Expected a non-empty HxWx3 image, got shape {image.shape}")

        resized = Image.fromarray(image).resize(
            (INPUT_SIZE, INPUT_SIZE),
            resample=Image.Resampling.BILINEAR,
        )
        pixels = np.asarray(resized, dtype=np.float32)

        if self._normalization == Normalization.SYMMETRIC:
            pixels = pixels / 127.5 - 1.0
        else:
            pixels = pixels / 255.0

        tensor = np.ascontiguousarray(pixels[np.newaxis, ...], dtype=np.float32)
        np.clip(tensor, *self.value_range, out=tensor)
        return tensor

    def preprocess(self, image_bytes: bytes) -> NDArray[np.float32]:
        """Decode ``image_bytes`` and return the model input tensor."""
        return self.to_tensor(self.decode_image(image_bytes))
