"""Bounded thread pool for batch extraction.

One task per (school, program) target, at most max_workers at a time.
abort() stops targets that have not started; in-flight targets finish.
"""

import logging
import threading
from collections import Counter
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor, as_completed
from typing import Any, Callable, NamedTuple


class BatchAborted(CancelledError):
    """Result placeholder for a target skipped by abort()."""


class TaskResult(NamedTuple):
    success: bool
    item: Any
    value: Any  # return value, or the exception raised


class WorkerPool:
    """ThreadPoolExecutor wrapper that never lets one target's exception sink the batch."""

    def __init__(self, max_workers: int = 10, logger=None):
        self.max_workers = max_workers
        self.logger = logger or logging.getLogger(__name__)
        self._abort = threading.Event()
        self._lock = threading.Lock()
        self._pending: set[Future] = set()
        self._counts: Counter = Counter()

    @property
    def aborted(self) -> bool:
        return self._abort.is_set()

    def abort(self) -> int:
        """Cancel every target that has not started. Returns how many were cancelled."""
        self._abort.set()
        with self._lock:
            pending = list(self._pending)
        cancelled = sum(1 for future in pending if future.cancel())
        self.logger.warning(f"Batch aborted, {cancelled} queued targets cancelled")
        return cancelled

    def map(self, func: Callable, items: list, desc: str = "Batch") -> list[TaskResult]:
        """
        Run func over items concurrently.

        Returns:
            One TaskResult per item in completion order. Targets skipped by
            abort() carry a BatchAborted value.

        An exception in the calling thread (KeyboardInterrupt) aborts the
        batch: queued targets are cancelled, in-flight targets finish, and
        the exception is re-raised.
        """

        def run_unless_aborted(item):
            if self._abort.is_set():
                raise BatchAborted(f"{desc} aborted before {item!r} started")
            return func(item)

        results: list[TaskResult] = []
        futures: dict[Future, Any] = {}
        settled: set[Future] = set()
        executor = ThreadPoolExecutor(max_workers=self.max_workers)
        try:
            for item in items:
                future = executor.submit(run_unless_aborted, item)
                futures[future] = item
                with self._lock:
                    self._pending.add(future)
                    self._counts["submitted"] += 1

            for future in as_completed(futures):
                results.append(self._settle(future, futures[future], desc))
                settled.add(future)
        except BaseException:
            self.abort()
            executor.shutdown(wait=True, cancel_futures=True)
            dropped = sum(1 for future in futures if future not in settled and future.cancelled())
            with self._lock:
                self._counts["cancelled"] += dropped
            raise
        else:
            executor.shutdown(wait=True)
        finally:
            with self._lock:
                self._pending.difference_update(futures)

        counts = self.get_stats()
        self.logger.info(
            f"{desc}: {counts['total_successful']} ok, {counts['total_failed']} failed, "
            f"{counts['total_cancelled']} cancelled"
        )
        return results

    def _settle(self, future: Future, item, desc: str) -> TaskResult:
        if future.cancelled():
            outcome = "cancelled"
            result = TaskResult(False, item, BatchAborted(f"{desc} aborted before {item!r} started"))
        else:
            error = future.exception()
            if error is None:
                outcome = "successful"
                result = TaskResult(True, item, future.result())
            elif isinstance(error, BatchAborted):
                outcome = "cancelled"
                result = TaskResult(False, item, error)
            else:
                outcome = "failed"
                result = TaskResult(False, item, error)
                self.logger.error(f"{desc}: {item!r} raised {error!r}", exc_info=error)

        with self._lock:
            self._counts["completed"] += 1
            self._counts[outcome] += 1
        return result

    def get_stats(self) -> dict:
        with self._lock:
            return {
                "max_workers": self.max_workers,
                **{f"total_{key}": self._counts[key] for key in ("submitted", "completed", "successful", "failed", "cancelled")},
            }
