"""
Task schedulers for fanning a layer's channels out to workers.

A scheduler runs a list of independent zero-argument callables and only
returns once every one of them has finished. Layers use this as the join
barrier between consecutive layers.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional, Sequence, TypeVar

from .config import DEFAULT_MAX_WORKERS

T = TypeVar("T")


class SerialScheduler:
    """Runs every task inline, in order, on the calling thread."""

    def run_all(self, tasks: Sequence[Callable[[], T]]) -> List[T]:
        return [task() for task in tasks]

    def close(self):
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()


class ThreadPoolScheduler(SerialScheduler):
    """
    Bounded worker pool backed by ``concurrent.futures.ThreadPoolExecutor``.

    All tasks are submitted together, then every future is waited on. If any
    task raised, the first exception (in task order) is re-raised once all
    tasks have completed, so no task is still running when the caller resumes.
    """

    def __init__(self, max_workers: Optional[int] = DEFAULT_MAX_WORKERS):
        self.max_workers = max_workers
        self._executor: Optional[ThreadPoolExecutor] = None

    @property
    def executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="channel")
            logging.debug(f"Started channel worker pool (max_workers={self.max_workers})")
        return self._executor

    def run_all(self, tasks: Sequence[Callable[[], T]]) -> List[T]:
        if len(tasks) <= 1:
            return super().run_all(tasks)

        futures = [self.executor.submit(task) for task in tasks]
        results = []
        first_error: Optional[BaseException] = None
        for future in futures:
            error = future.exception()  # blocks until the task is done
            if error is not None:
                if first_error is None:
                    first_error = error
                results.append(None)
            else:
                results.append(future.result())
        if first_error is not None:
            raise first_error
        return results

    def close(self):
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
            logging.debug("Channel worker pool shut down")
