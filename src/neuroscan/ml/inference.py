"""Worker pool for the blocking steps of an analysis.

Architecture:
    asyncio pipeline -> asyncio.Semaphore(N) -> ThreadPoolExecutor(N) -> decode / preprocess / model load / ONNX

Every submission names its step ("decode", "preprocess", "inference", ...).
Callers beyond the semaphore limit wait up to ``worker_wait_timeout`` for a
slot, then get WorkerUnavailable naming the step that could not start.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, TypeVar

from neuroscan.errors import WorkerUnavailable

if TYPE_CHECKING:
    from collections.abc import Callable

    from neuroscan.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class InferencePool:
    """Bounded thread pool that runs pipeline steps off the event loop."""

    def __init__(self, settings: Settings) -> None:
        self._wait_timeout = settings.worker_wait_timeout
        self._semaphore = asyncio.Semaphore(settings.max_concurrent)
        self._executor = ThreadPoolExecutor(
            max_workers=settings.max_concurrent,
            thread_name_prefix="neuroscan-worker",
        )
        self._running: Counter[str] = Counter()
        self._queue_depth: int = 0
        self._counter_lock = threading.Lock()

    async def run(self, step: str, func: Callable[..., T], *args: object) -> T:
        """Run one blocking pipeline step in a worker thread.

        Args:
            step: Short name of the step, used in logs and errors.
            func: Synchronous callable to run.
            *args: Positional arguments for ``func``.

        Raises:
            WorkerUnavailable: If no worker frees up within ``worker_wait_timeout``.
        """
        await self._acquire(step)

        with self._counter_lock:
            self._running[step] += 1
        started = time.monotonic()
        try:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(self._executor, func, *args)
        finally:
            self._semaphore.release()
            with self._counter_lock:
                self._running[step] -= 1
            logger.debug("%s finished in %.3fs", step, time.monotonic() - started)

    async def _acquire(self, step: str) -> None:
        with self._counter_lock:
            self._queue_depth += 1
        try:
            await asyncio.wait_for(self._semaphore.acquire(), timeout=self._wait_timeout)
        except TimeoutError as exc:
            logger.warning("No worker free for %s after %ss", step, self._wait_timeout)
            raise WorkerUnavailable(step, self._wait_timeout) from exc
        finally:
            with self._counter_lock:
                self._queue_depth -= 1

    @property
    def active_count(self) -> int:
        """Number of steps currently running."""
        with self._counter_lock:
            return sum(self._running.values())

    @property
    def running_steps(self) -> dict[str, int]:
        """Currently running steps by name."""
        with self._counter_lock:
            return {step: count for step, count in self._running.items() if count}

    @property
    def queue_depth(self) -> int:
        """Number of steps waiting for a worker slot."""
        with self._counter_lock:
            return self._queue_depth

    def shutdown(self) -> None:
        """Shut down the thread pool executor."""
        self._executor.shutdown(wait=True)
        logger.debug("Worker pool shut down")
