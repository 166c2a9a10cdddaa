"""
Progress channel — hand events from the install worker to a live consumer.

Thread safety model
───────────────────
- The worker thread is the only producer; it calls ``put()`` and finally
  ``close()``.
- The consumer iterates the channel on its own thread.
- The queue is bounded, so a slow consumer applies backpressure to the
  worker. A consumer that walks away calls ``abandon()``; later ``put()``
  calls are then dropped instead of blocking forever.
"""

from __future__ import annotations

import queue
import threading
from collections import deque
from collections.abc import Iterator

from provisioner.core.models.progress import ProgressEvent

_CLOSED = object()
_PUT_POLL = 0.1


class ProgressChannel:
    """Bounded single-producer, single-consumer event queue."""

    def __init__(self, maxsize: int = 256) -> None:
        self._queue: queue.Queue[object] = queue.Queue(maxsize=maxsize)
        self._abandoned = threading.Event()

    # ── Producer side ───────────────────────────────────────────

    def put(self, event: ProgressEvent) -> None:
        self._put(event)

    def close(self) -> None:
        """Mark the end of the stream."""
        self._put(_CLOSED)

    def _put(self, item: object) -> None:
        while not self._abandoned.is_set():
            try:
                self._queue.put(item, timeout=_PUT_POLL)
                return
            except queue.Full:
                continue

    # ── Consumer side ───────────────────────────────────────────

    def abandon(self) -> None:
        """Stop accepting events; unblocks a producer stuck on a full queue."""
        self._abandoned.set()

    def __iter__(self) -> Iterator[ProgressEvent]:
        while True:
            item = self._queue.get()
            if item is _CLOSED:
                return
            yield item  # type: ignore[misc]


class LogWindow:
    """The last N output lines of a run, kept for display after failure."""

    def __init__(self, size: int = 50) -> None:
        self._lines: deque[str] = deque(maxlen=size)

    def append(self, line: str) -> None:
        self._lines.append(line)

    @property
    def lines(self) -> list[str]:
        return list(self._lines)

    @property
    def last(self) -> str | None:
        return self._lines[-1] if self._lines else None

    def __len__(self) -> int:
        return len(self._lines)
