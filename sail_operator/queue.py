"""Work queue running reconciliations with per-key exclusivity and backoff."""

import asyncio
import logging
from typing import Callable, Optional

from tenacity import RetryCallState, wait_exponential

from .reconciler import Result

logger = logging.getLogger(__name__)

Handler = Callable[[str], Result]


class WorkQueue:
    """
    Deduplicating queue of object names for one controller.

    At most one reconcile per name is in flight. A name added while it is
    being reconciled is reconciled once more afterwards. Failed and requeued
    names are retried with exponential backoff.
    """

    def __init__(
        self,
        name: str,
        handler: Handler,
        max_concurrent: int = 1,
        backoff: Optional[wait_exponential] = None,
    ):
        """
        Initialize work queue.

        Args:
            name: Queue name used in log messages
            handler: Blocking reconcile function, run in a worker thread
            max_concurrent: Maximum number of concurrent reconciles
            backoff: Wait strategy applied to repeated failures of a name
        """
        self.name = name
        self.handler = handler
        self.max_concurrent = max(1, max_concurrent)
        self.backoff = backoff or wait_exponential(multiplier=1, min=1, max=300)
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._queued: set[str] = set()
        self._running: set[str] = set()
        self._dirty: set[str] = set()
        self._failures: dict[str, int] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._workers: list[asyncio.Task] = []

    def __len__(self) -> int:
        return len(self._queued)

    def add(self, key: str) -> None:
        """Queue a name for reconciliation."""
        if key in self._running:
            self._dirty.add(key)
            return
        if key in self._queued:
            return
        self._queued.add(key)
        self._queue.put_nowait(key)

    def add_after(self, key: str, delay: float) -> None:
        """Queue a name after a delay; an earlier pending delay is kept."""
        if delay <= 0:
            self.add(key)
            return
        loop = asyncio.get_running_loop()
        existing = self._timers.get(key)
        if existing is not None:
            if existing.when() <= loop.time() + delay:
                return
            existing.cancel()
        self._timers[key] = loop.call_later(delay, self._fire_timer, key)

    def _fire_timer(self, key: str) -> None:
        self._timers.pop(key, None)
        self.add(key)

    def _backoff_delay(self, key: str) -> float:
        failures = self._failures.get(key, 0) + 1
        self._failures[key] = failures
        state = RetryCallState(retry_object=None, fn=None, args=(), kwargs={})
        state.attempt_number = failures
        return self.backoff(state)

    async def process_next(self) -> None:
        """Take one name from the queue and reconcile it."""
        key = await self._queue.get()
        self._queued.discard(key)
        self._running.add(key)
        try:
            result = await asyncio.to_thread(self.handler, key)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            delay = self._backoff_delay(key)
            logger.error(f"Error reconciling {self.name} {key}, retrying in {delay:.0f}s: {e}", exc_info=True)
            self.add_after(key, delay)
        else:
            if result.requeue_after is not None:
                self._failures.pop(key, None)
                self.add_after(key, result.requeue_after)
            elif result.requeue:
                self.add_after(key, self._backoff_delay(key))
            else:
                self._failures.pop(key, None)
        finally:
            self._running.discard(key)
            self._queue.task_done()
            if key in self._dirty:
                self._dirty.discard(key)
                self.add(key)

    async def _worker(self) -> None:
        while True:
            await self.process_next()

    def start(self) -> None:
        """Start the worker tasks."""
        logger.info(f"Starting {self.max_concurrent} worker(s) for {self.name}")
        for _ in range(self.max_concurrent):
            self._workers.append(asyncio.create_task(self._worker()))

    async def stop(self) -> None:
        """Stop workers and pending timers."""
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers.clear()
