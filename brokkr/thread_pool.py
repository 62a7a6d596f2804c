"""Fixed-size worker pool that records the first task failure."""

from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Callable, Optional

from brokkr.errors import BrokkrError

log = logging.getLogger(__name__)

Task = Callable[[], object]


class ThreadPool:
    """Runs submitted callables on worker threads.

    A task fails by raising. The first failure cancels every task that has
    not started yet and is raised again from :meth:`wait`.
    """

    def __init__(self, thread_count: int) -> None:
        self._lock = threading.Lock()
        self._work = threading.Condition(self._lock)
        self._done = threading.Condition(self._lock)
        self._queue: deque[Task] = deque()
        self._stopping = False
        self._active = 0
        self._cancel = threading.Event()
        self._error_lock = threading.Lock()
        self._first_error: Optional[BaseException] = None
        self._workers = [
            threading.Thread(target=self._worker_loop, name=f"brokkr-pool-{i}", daemon=True)
            for i in range(max(1, thread_count))
        ]
        for worker in self._workers:
            worker.start()

    def submit(self, task: Optional[Task]) -> None:
        """Queue a task; ``None`` is ignored."""
        if task is None:
            return
        with self._lock:
            if self._stopping:
                raise BrokkrError("ThreadPool: submit on stopping pool")
            self._queue.append(task)
            self._work.notify()

    def request_cancel(self) -> None:
        """Skip every task that has not started yet."""
        self._cancel.set()

    def wait(self) -> None:
        """Block until all queued tasks finish; raise the first failure."""
        with self._lock:
            self._done.wait_for(lambda: not self._queue and self._active == 0)
        with self._error_lock:
            error = self._first_error
        if error is not None:
            raise error

    def stop(self) -> None:
        """Refuse new tasks; workers exit once the queue is drained."""
        with self._lock:
            self._stopping = True
            self._work.notify_all()

    def cancelled(self) -> bool:
        """Return True once cancellation was requested or a task failed."""
        return self._cancel.is_set()

    def active(self) -> int:
        """Return the number of tasks currently running."""
        with self._lock:
            return self._active

    def __enter__(self) -> "ThreadPool":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()
        current = threading.current_thread()
        for worker in self._workers:
            if worker is not current:
                worker.join()

    def _set_error(self, error: BaseException) -> None:
        self._cancel.set()
        with self._error_lock:
            if self._first_error is None:
                self._first_error = error

    def _worker_loop(self) -> None:
        while True:
            with self._lock:
                self._work.wait_for(lambda: self._stopping or bool(self._queue))
                if not self._queue:
                    return
                task = self._queue.popleft()
                self._active += 1

            if not self._cancel.is_set():
                try:
                    task()
                except Exception as exc:
                    log.debug("ThreadPool task failed: %s", exc)
                    self._set_error(exc)

            with self._lock:
                self._active -= 1
                if not self._queue and self._active == 0:
                    self._done.notify_all()