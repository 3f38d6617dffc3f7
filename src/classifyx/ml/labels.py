"""Class index to label mapping."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Sequence
from typing import TYPE_CHECKING, overload

from classifyx.errors import ModelLoadError

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)


class LabelTable(Sequence[str]):
    """Immutable, index-addressed list of class labels.

    Line ``i`` of the labels file names class index ``i``. For MobileNet v2 the
    file has 1001 lines, the first being the background class.
    """

    __slots__ = ("_labels",)

    def __init__(self, labels: Iterable[str]) -> None:
        self._labels: tuple[str, ...] = tuple(labels)
        if not self._labels:
            raise ValueError("Label table must contain at least one label")

    @classmethod
    def from_file(cls, path: Path) -> LabelTable:
        """Load a newline-separated labels file.

        Raises:
            ModelLoadError: If the file is missing, unreadable, or empty.
        """
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise ModelLoadError(f"Cannot read labels file {path}: {exc}") from exc

        lines = [line.strip() for line in text.splitlines()]
        # Trailing blank lines only; interior lines keep their index.
        while lines and not lines[-1]:
            lines.pop()
        if not lines:
            raise ModelLoadError(f"Labels file {path} is empty")

        logger.info("Loaded %d labels from %s", len(lines), path)
        return cls(lines)

    @overload
    def __getitem__(self, index: int) -> str: ...

    @overload
    def __getitem__(self, index: slice) -> Sequence[str]: ...

    def __getitem__(self, index: int | slice) -> str | Sequence[str]:
        return self._labels[index]

    def __len__(self) -> int:
        return len(self._labels)

    def __iter__(self) -> Iterator[str]:
        return iter(self._labels)

    def __repr__(self) -> str:
        return f"LabelTable(size={len(self._labels)})"
