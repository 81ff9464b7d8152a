"""
Dispatcher — the single serialized callback loop.

Every mutation of runner/checker state runs as a callable posted to
this queue and executed, one at a time, on one daemon thread.
Subprocess reader threads never touch shared state directly: they
``post()`` and return.  That is the serialization boundary, so two
tasks finishing at the same instant cannot race on slot accounting.

    reader thread ──post(fn)──▶ queue ──▶ dispatcher thread ──▶ fn()
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import Any, Callable

logger = logging.getLogger(__name__)

_STOP = object()


class Dispatcher:
    """FIFO executor backed by one daemon thread (started lazily)."""

    def __init__(self, name: str = "gobelt-dispatch") -> None:
        self._name = name
        self._queue: queue.Queue = queue.Queue()
        self._thread: threading.Thread | None = None
        self._start_lock = threading.Lock()

    def post(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        """Schedule ``fn(*args, **kwargs)`` on the dispatcher thread."""
        self._ensure_started()
        self._queue.put((fn, args, kwargs))

    def in_dispatcher(self) -> bool:
        """True when called from the dispatcher thread itself."""
        return self._thread is not None and threading.current_thread() is self._thread

    def flush(self, timeout: float | None = None) -> bool:
        """Block until everything posted before this call has run.

        Returns False on timeout.  Calling from the dispatcher thread
        would deadlock, so it returns immediately there.
        """
        if self.in_dispatcher():
            return True
        done = threading.Event()
        self.post(done.set)
        return done.wait(timeout)

    def stop(self, timeout: float | None = 5.0) -> None:
        """Finish queued work, then end the thread."""
        thread = self._thread
        if thread is None:
            return
        self._queue.put(_STOP)
        if not self.in_dispatcher():
            thread.join(timeout)
        self._thread = None

    def _ensure_started(self) -> None:
        if self._thread is not None:
            return
        with self._start_lock:
            if self._thread is None:
                self._thread = threading.Thread(
                    target=self._loop, name=self._name, daemon=True,
                )
                self._thread.start()

    def _loop(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                return
            fn, args, kwargs = item
            try:
                fn(*args, **kwargs)
            except Exception:
                logger.exception("Dispatched callback %r failed", fn)
