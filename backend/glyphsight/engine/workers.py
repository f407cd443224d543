"""Bounded worker pool with an admission gate, plus cooperative cancellation."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import TypeVar

from glyphsight.engine.errors import ConfigurationError, TrainingCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

# How often a blocked admission re-checks the cancellation signal (seconds)
_ADMISSION_POLL = 0.05


class CancellationToken:
    """Shared stop signal, checked at batch boundaries and phase changes."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise TrainingCancelled("cancellation requested")


class WorkerPool:
    """Fixed-size thread pool that never queues more than ``max_workers`` tasks.

    ``map`` is a full join barrier: it returns only once every admitted task
    has finished, even when cancellation stops further admissions.
    """

    def __init__(self, max_workers: int) -> None:
        if max_workers <= 0:
            raise ConfigurationError(f"max_workers must be positive, got {max_workers}")
        self.max_workers = max_workers
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="glyphsight")
        self._gate = threading.BoundedSemaphore(max_workers)

    def __enter__(self) -> WorkerPool:
        return self

    def __exit__(self, *exc: object) -> None:
        self.shutdown()

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)

    def map(
        self,
        fn: Callable[[T], R],
        items: Iterable[T],
        cancel: CancellationToken | None = None,
    ) -> list[R]:
        """Run ``fn`` over ``items`` and return results in input order."""
        futures: list[Future[R]] = []
        try:
            for item in items:
                self._admit(cancel)
                future = self._executor.submit(fn, item)
                future.add_done_callback(self._release)
                futures.append(future)
        finally:
            wait(futures)
        return [f.result() for f in futures]

    def _admit(self, cancel: CancellationToken | None) -> None:
        while True:
            if cancel is not None:
                cancel.raise_if_cancelled()
            if self._gate.acquire(timeout=_ADMISSION_POLL):
                return

    def _release(self, _future: Future) -> None:
        self._gate.release()
