"""Inference concurrency layer.

Architecture:
    FastAPI (async) -> asyncio.Semaphore(N) -> ThreadPoolExecutor(N) -> ImageClassifier.classify

A request waits at most ``Settings.queue_timeout`` seconds for a free slot and
then fails with ``TimeoutError`` (503 at the API).
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from classifyx.config import Settings
    from classifyx.ml.image_classifier import ImageClassifier
    from classifyx.ml.postprocessing import Prediction

logger = logging.getLogger(__name__)


class InferencePool:
    """Runs classifications on a bounded set of worker threads.

    The classifier itself is shared and read-only; the pool only limits how
    many requests evaluate it at once.
    """

    def __init__(self, settings: Settings) -> None:
        self._slots = settings.max_concurrent
        self._queue_timeout = settings.queue_timeout
        self._semaphore = asyncio.Semaphore(self._slots)
        self._executor = ThreadPoolExecutor(
            max_workers=self._slots,
            thread_name_prefix="classify",
        )
        self._active_count: int = 0
        self._queue_depth: int = 0
        self._counter_lock = threading.Lock()

    async def classify(
        self,
        classifier: ImageClassifier,
        image_bytes: bytes,
        top_k: int | None = None,
    ) -> list[Prediction]:
        """Classify ``image_bytes`` on a worker thread.

        Raises:
            TimeoutError: If no slot frees up within the queue timeout.
            ClassifierError: Whatever ``ImageClassifier.classify`` raises.
        """
        await self._acquire_slot()
        try:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(self._executor, classifier.classify, image_bytes, top_k)
        finally:
            self._release_slot()

    @property
    def active_count(self) -> int:
        """Number of classifications currently running."""
        with self._counter_lock:
            return self._active_count

    @property
    def queue_depth(self) -> int:
        """Number of requests waiting for a slot."""
        with self._counter_lock:
            return self._queue_depth

    def shutdown(self) -> None:
        """Shut down the worker threads."""
        self._executor.shutdown(wait=True)

    async def _acquire_slot(self) -> None:
        with self._counter_lock:
            self._queue_depth += 1
        started = time.monotonic()
        try:
            await asyncio.wait_for(self._semaphore.acquire(), timeout=self._queue_timeout)
        except TimeoutError:
            logger.warning("No classification slot free within %.1fs (%d busy)", self._queue_timeout, self._slots)
            raise
        finally:
            with self._counter_lock:
                self._queue_depth -= 1

        waited = time.monotonic() - started
        if waited > 0.1:
            logger.debug("Waited %.2fs for a classification slot", waited)
        with self._counter_lock:
            self._active_count += 1

    def _release_slot(self) -> None:
        self._semaphore.release()
        with self._counter_lock:
            self._active_count -= 1
