# downloads_sorter/utils/thread_manager.py

import heapq
import itertools
import logging
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable

logger = logging.getLogger(__name__)

# Sorting is I/O-bound: workers mostly wait on the disk, so we over-subscribe
# the CPU count.
IO_BOUND_MULTIPLIER = 2

# Upper bound on worker threads regardless of core count.
MAX_WORKER_THREADS = 32


def get_optimal_thread_count() -> int:
    """
    Determines the number of worker threads for I/O-bound tasks.

    Returns:
        The recommended number of threads for a ThreadPoolExecutor.
    """
    cpu_count = os.cpu_count() or 1
    optimal_threads = min(cpu_count * IO_BOUND_MULTIPLIER, MAX_WORKER_THREADS)
    logger.debug(f"System has {cpu_count} CPU cores. Optimal thread count set to {optimal_threads}.")
    return optimal_threads


class DelayedTaskScheduler:
    """
    Runs callables on a worker pool, optionally after a delay.

    Pending delays live in a heap watched by a single timer thread, so a task
    waiting out its delay does not hold a worker. Due tasks are handed to a
    ThreadPoolExecutor. Exceptions raised by a task are logged and never
    reach the timer thread.
    """

    def __init__(self, max_workers: int | None = None, name: str = "sorter"):
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or get_optimal_thread_count(),
            thread_name_prefix=name,
        )
        self._heap: list = []
        self._sequence = itertools.count()
        self._condition = threading.Condition()
        self._is_shutdown = False
        self._timer_thread = threading.Thread(target=self._run_timer, name=f"{name}-timer", daemon=True)
        self._timer_thread.start()

    @property
    def is_shutdown(self) -> bool:
        return self._is_shutdown

    def schedule(self, delay: float, task: Callable, *args) -> bool:
        """
        Queues `task(*args)` to run on the pool once `delay` seconds have passed.

        Returns:
            False if the scheduler has already been shut down, True otherwise.
        """
        with self._condition:
            if self._is_shutdown:
                return False
            due = time.monotonic() + max(delay, 0.0)
            # The sequence number keeps ordering stable for equal due times
            # and stops heapq from ever comparing the callables.
            heapq.heappush(self._heap, (due, next(self._sequence), task, args))
            self._condition.notify()
        return True

    def submit(self, task: Callable, *args) -> bool:
        """Runs `task(*args)` on the pool as soon as a worker is free."""
        with self._condition:
            if self._is_shutdown:
                return False
            self._executor.submit(self._invoke, task, args)
        return True

    def shutdown(self, wait: bool = True):
        """Drops every pending delayed task and stops the worker pool."""
        with self._condition:
            if self._is_shutdown:
                return
            self._is_shutdown = True
            self._heap.clear()
            self._condition.notify_all()
        self._timer_thread.join()
        self._executor.shutdown(wait=wait, cancel_futures=True)
        logger.debug("Scheduler shut down.")

    def _run_timer(self):
        while True:
            with self._condition:
                while not self._is_shutdown:
                    if not self._heap:
                        self._condition.wait()
                        continue
                    remaining = self._heap[0][0] - time.monotonic()
                    if remaining <= 0:
                        break
                    self._condition.wait(remaining)
                if self._is_shutdown:
                    return
                _, _, task, args = heapq.heappop(self._heap)
                self._executor.submit(self._invoke, task, args)

    @staticmethod
    def _invoke(task: Callable, args: tuple):
        try:
            task(*args)
        except Exception as e:
            logger.error(f"Background task {getattr(task, '__name__', task)!r} failed: {e}", exc_info=True)
