"""
EventBus — thread-safe, in-process pub/sub with a bounded replay buffer.

The runner and checker publish here after every state change; UIs
(the CLI progress printer, tests) subscribe and re-render from the
runner/checker queries.

Thread safety model
───────────────────
- ``_lock`` protects ``_seq``, ``_buffer``, ``_subscribers`` and
  ``_primary``.
- Callbacks run OUTSIDE the lock, on the publishing thread (normally
  the dispatcher thread).  A callback that raises is logged and
  skipped; it never breaks the publisher.

Subscription styles
───────────────────
- ``subscribe(fn)`` — any number of listeners, returns an unsubscribe
  callable.
- ``on_update(fn)`` — the single "re-render" slot.  Setting it again
  replaces the previous callback; ``on_update(None)`` clears it.

Message standard
────────────────
Every event is a dict::

    {
        "ts": 1739648400.123,       # wall-clock timestamp
        "seq": 47,                  # monotonic sequence
        "type": "runner:task",      # <domain>:<action>
        "key": "freeze",            # binary name, or "" for batch events
        "data": { ... },            # event-specific payload
    }

Event types::

    runner:batch  runner:task  runner:output  runner:done  runner:abort
    checker:start  checker:binary  checker:cache  checker:done
    notice         {"level": "info|warning|error", "message": "..."}
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

Listener = Callable[[dict], None]

_NOTICE_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class EventBus:
    """Thread-safe pub/sub with bounded replay buffer.

    Parameters
    ----------
    buffer_size : int
        Maximum number of events to keep for ``recent()``.
        Older events are silently discarded.
    """

    def __init__(self, *, buffer_size: int = 500) -> None:
        self._lock = threading.Lock()
        self._seq: int = 0
        self._buffer: deque[dict] = deque(maxlen=buffer_size)
        self._subscribers: list[Listener] = []
        self._primary: Optional[Listener] = None

    # ── Properties ──────────────────────────────────────────────

    @property
    def seq(self) -> int:
        """Current sequence number (monotonically increasing)."""
        with self._lock:
            return self._seq

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers) + (1 if self._primary else 0)

    # ── Subscribing ─────────────────────────────────────────────

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a callable that removes it."""
        with self._lock:
            self._subscribers.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._subscribers:
                    self._subscribers.remove(listener)

        return _unsubscribe

    def on_update(self, listener: Optional[Listener]) -> None:
        """Set (or clear) the single re-render callback."""
        with self._lock:
            self._primary = listener

    # ── Publishing ──────────────────────────────────────────────

    def publish(
        self,
        event_type: str,
        *,
        key: str = "",
        data: dict[str, Any] | None = None,
    ) -> dict:
        """Broadcast an event to every listener.

        Returns
        -------
        dict
            The full event dict with ``seq`` assigned.
        """
        with self._lock:
            self._seq += 1
            event: dict[str, Any] = {
                "ts": time.time(),
                "seq": self._seq,
                "type": event_type,
                "key": key,
                "data": data or {},
            }
            self._buffer.append(event)
            listeners = list(self._subscribers)
            if self._primary is not None:
                listeners.insert(0, self._primary)

        logger.debug("event %s key=%s", event_type, key or "-")

        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("Event listener failed on %s", event_type)

        return event

    def notice(self, message: str, level: str = "info") -> dict:
        """Publish a user-facing message and log it at the same level."""
        logger.log(_NOTICE_LEVELS.get(level, logging.INFO), message)
        return self.publish("notice", data={"level": level, "message": message})

    # ── Replay ──────────────────────────────────────────────────

    def recent(
        self,
        event_type: str | None = None,
        *,
        limit: int | None = None,
    ) -> list[dict]:
        """Buffered events, oldest first, optionally filtered by type."""
        with self._lock:
            events = [
                e for e in self._buffer
                if event_type is None or e["type"] == event_type
            ]
        if limit is not None:
            events = events[-limit:]
        return events

    def notices(self, level: str | None = None) -> list[dict]:
        """Buffered notice payloads (``{"level", "message"}``)."""
        return [
            e["data"] for e in self.recent("notice")
            if level is None or e["data"].get("level") == level
        ]
