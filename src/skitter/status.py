"""Spider throughput counters.

Counters are incremented from any task or item unit; a background asyncio
task recomputes per-second rates at a fixed interval for as long as the
spider runs.
"""

import asyncio
import contextlib
import logging
import threading

logger = logging.getLogger(__name__)


class SpiderStatus:
    """Task and item counters plus windowed throughput estimates.

    Example:
        >>> status = SpiderStatus(interval=5.0)
        >>> status.start()  # inside a running event loop
        >>> status.add_task()
        >>> await status.stop()
    """

    def __init__(self, interval: float = 5.0) -> None:
        """Initialize status.

        Args:
            interval: Seconds between rate estimates
        """
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")

        self.interval = interval
        self.total_task = 0
        self.finished_task = 0
        self.total_item = 0
        self.exec_speed = 0.0  # finished tasks per second over the last window
        self.item_speed = 0.0  # items per second over the last window

        self._lock = threading.Lock()
        self._last_finished = 0
        self._last_items = 0
        self._estimator: asyncio.Task[None] | None = None

    def add_task(self) -> None:
        with self._lock:
            self.total_task += 1

    def add_item(self) -> None:
        with self._lock:
            self.total_item += 1

    def finish_task(self) -> None:
        with self._lock:
            self.finished_task += 1

    @property
    def running(self) -> bool:
        return self._estimator is not None and not self._estimator.done()

    def start(self) -> None:
        """Start the rate estimator on the running event loop (idempotent)."""
        if self.running:
            return
        with self._lock:
            self._last_finished = self.finished_task
            self._last_items = self.total_item
        self._estimator = asyncio.get_running_loop().create_task(
            self._estimate_forever(), name="skitter-status"
        )

    async def stop(self) -> None:
        """Cancel the rate estimator and wait for it to exit."""
        estimator, self._estimator = self._estimator, None
        if estimator is None:
            return
        estimator.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await estimator

    def update_rates(self) -> None:
        """Recompute rates from the counters and snapshot them for the next window."""
        with self._lock:
            finished, items = self.finished_task, self.total_item
            self.exec_speed = (finished - self._last_finished) / self.interval
            self.item_speed = (items - self._last_items) / self.interval
            self._last_finished = finished
            self._last_items = items

    async def _estimate_forever(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self.update_rates()

    def snapshot(self) -> dict[str, float]:
        with self._lock:
            return {
                "total_task": self.total_task,
                "finished_task": self.finished_task,
                "total_item": self.total_item,
                "exec_speed": self.exec_speed,
                "item_speed": self.item_speed,
            }

    def print_signal_line(self, name: str) -> None:
        """Log one line with the current totals and rates."""
        stats = self.snapshot()
        logger.info(
            f"spider={name} tasks={stats['finished_task']}/{stats['total_task']} "
            f"items={stats['total_item']} "
            f"tasks/sec={stats['exec_speed']:.2f} items/sec={stats['item_speed']:.2f}"
        )

    def __repr__(self) -> str:
        return (
            f"<SpiderStatus tasks={self.finished_task}/{self.total_task} "
            f"items={self.total_item}>"
        )
