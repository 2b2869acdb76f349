"""
Fire-and-forget task dispatcher.

Used for work that must never delay or fail the request that triggered it:
- last_active_at updates after login
- audit event persistence

Tasks run on a single daemon thread draining a bounded queue. Each task
receives its OWN database session from the session factory; the request's
session is never shared with the worker thread.

There are no retries. A task that raises is logged and discarded.
"""

import logging
import threading
from dataclasses import dataclass
from queue import Queue, Full, Empty
from threading import Lock
from typing import Callable, Optional

from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

BackgroundTask = Callable[[Session], None]


@dataclass
class _QueuedTask:
    name: str
    fn: BackgroundTask


class BackgroundDispatcher:
    """
    Bounded queue + daemon worker thread for best-effort tasks.

    Usage:
        dispatcher = BackgroundDispatcher(get_session_factory())
        dispatcher.start()
        dispatcher.submit("touch_last_active", lambda db: ...)
    """

    def __init__(self, session_factory: Callable[[], Session], max_queue_size: int = 1000):
        self._session_factory = session_factory
        self._queue: Queue = Queue(maxsize=max_queue_size)
        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._lock = Lock()

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Start the worker thread (idempotent)."""
        with self._lock:
            if self._running:
                return
            self._running = True
            self._thread = threading.Thread(
                target=self._process_queue,
                name="background-dispatcher",
                daemon=True,
            )
            self._thread.start()
            logger.info("Background dispatcher started")

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the worker thread after it drains pending tasks."""
        with self._lock:
            self._running = False
            if self._thread:
                self._thread.join(timeout=timeout)
                self._thread = None
        logger.info("Background dispatcher stopped")

    def submit(self, name: str, fn: BackgroundTask) -> bool:
        """
        Enqueue a task without blocking.

        Returns:
            True if the task was queued, False if it was dropped
            (queue full or dispatcher not running).
        """
        if not self._running:
            logger.warning("Background dispatcher not running, task dropped", extra={"task": name})
            return False
        try:
            self._queue.put_nowait(_QueuedTask(name=name, fn=fn))
            return True
        except Full:
            logger.warning("Background queue full, task dropped", extra={"task": name})
            return False

    def flush(self) -> None:
        """Block until every queued task has been processed."""
        self._queue.join()

    def _process_queue(self) -> None:
        while self._running or not self._queue.empty():
            try:
                task = self._queue.get(timeout=0.5)
            except Empty:
                continue
            try:
                self._run(task)
            finally:
                self._queue.task_done()

    def _run(self, task: _QueuedTask) -> None:
        session: Optional[Session] = None
        try:
            session = self._session_factory()
            task.fn(session)
        except Exception:
            logger.warning(
                "Background task failed",
                extra={"task": task.name, "session_opened": session is not None},
                exc_info=True,
            )
            if session is not None:
                session.rollback()
        finally:
            if session is not None:
                session.close()
