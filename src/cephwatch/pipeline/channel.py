"""
The dispatch channel: many producers, exactly one consumer.

Unbounded by default, so producers never block. With a maxsize the
policy is drop-newest: a full channel rejects the incoming measurement
and bumps `dropped`, which keeps every producer (and its topology
refresh) moving even if the dispatcher is stuck on a slow sink.
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import Optional

from cephwatch.errors import ChannelClosed
from cephwatch.measurement import Measurement

log = logging.getLogger(__name__)

_CLOSED = object()


class DispatchChannel:

    def __init__(self, maxsize: int = 0):
        self._queue: "queue.Queue" = queue.Queue(maxsize=maxsize)
        self._lock = threading.Lock()
        self._closed = False
        self.maxsize = maxsize
        self.sent = 0
        self.dropped = 0

    def send(self, measurement: Measurement) -> bool:
        """Enqueue without blocking. False if the channel is full or closed."""
        if self._closed:
            return False
        try:
            self._queue.put_nowait(measurement)
        except queue.Full:
            with self._lock:
                self.dropped += 1
                dropped = self.dropped
            if dropped == 1 or dropped % 1000 == 0:
                log.warning("Dispatch channel full (maxsize=%d), %d measurements dropped",
                            self.maxsize, dropped)
            return False
        with self._lock:
            self.sent += 1
        return True

    def receive(self, timeout: Optional[float] = None) -> Optional[Measurement]:
        """Next measurement, or None on timeout. Raises ChannelClosed once drained."""
        try:
            item = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None
        if item is _CLOSED:
            # leave the marker for anyone else still receiving
            self._queue.put_nowait(_CLOSED)
            raise ChannelClosed("dispatch channel closed")
        return item

    def close(self):
        """Stop accepting sends. Already queued measurements can still be received."""
        if self._closed:
            return
        self._closed = True
        # a full bounded queue has no room for the marker, so bypass the size check
        with self._queue.mutex:
            self._queue.queue.append(_CLOSED)
            self._queue.unfinished_tasks += 1
            self._queue.not_empty.notify()

    @property
    def closed(self) -> bool:
        return self._closed

    def qsize(self) -> int:
        return self._queue.qsize()
