"""
The dispatcher: sole consumer of the dispatch channel.

One measurement in, zero or more sink writes out, then the next one. No
batching, no reordering, no retries of its own -- a slow sink holds up
everything behind it, which is why sinks are expected to fail fast. The
shutdown drain is bounded by drain_seconds.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import Counter
from typing import Callable, Dict, List

from cephwatch.errors import ChannelClosed
from cephwatch.measurement import Measurement, MeasurementKind
from cephwatch.pipeline.channel import DispatchChannel
from cephwatch.sinks.base import Sink

log = logging.getLogger(__name__)


class Dispatcher:

    name = "dispatcher"

    def __init__(self, channel: DispatchChannel, sinks: List[Sink], poll_seconds: float = 0.5,
                 drain_seconds: float = 2.0):
        self._channel = channel
        self._sinks = list(sinks)
        self._poll = poll_seconds
        self._drain_seconds = drain_seconds

        self._handlers: Dict[MeasurementKind, Callable[[Measurement], None]] = {
            MeasurementKind.MONITOR_STATUS: self._handle_status,
            MeasurementKind.STORAGE_DAEMON_STATUS: self._handle_status,
            MeasurementKind.DISK_HEALTH: self._handle_status,
            MeasurementKind.WIRE_OPERATION: self._handle_wire_operation,
            MeasurementKind.DIAGNOSTIC: self._handle_diagnostic,
        }
        missing = set(MeasurementKind) - set(self._handlers)
        if missing:
            raise ValueError(f"no dispatcher handler for {sorted(k.name for k in missing)}")

        self.received = 0
        self.by_kind: Counter = Counter()
        self.writes: Counter = Counter()
        self.failures: Counter = Counter()

    @property
    def sinks(self) -> List[Sink]:
        return list(self._sinks)

    def dispatch(self, measurement: Measurement):
        self.received += 1
        self.by_kind[measurement.kind] += 1
        self._handlers[measurement.kind](measurement)

    # -- Handlers --

    def _handle_status(self, measurement: Measurement):
        for sink in self._sinks:
            if sink.accepts(measurement.kind):
                self._write(sink, measurement)

    def _handle_wire_operation(self, measurement: Measurement):
        if measurement.entity.header is None:
            log.debug("Wire operation without a header from %s", measurement.source)
        self._handle_status(measurement)

    def _handle_diagnostic(self, measurement: Measurement):
        # diagnostics never leave the host
        for sink in self._sinks:
            if sink.name == "stdout":
                self._write(sink, measurement)

    def _write(self, sink: Sink, measurement: Measurement):
        try:
            ok = sink.write(measurement)
        except Exception as e:
            log.debug("Sink %s raised on %s: %s", sink.name, measurement.kind.value, e)
            ok = False
        if ok:
            self.writes[sink.name] += 1
        else:
            self.failures[sink.name] += 1

    # -- Loop --

    def run(self, stop: threading.Event):
        log.debug("Logging thread active")
        while not stop.is_set():
            try:
                measurement = self._channel.receive(timeout=self._poll)
            except ChannelClosed as e:
                log.error("Had an error: %s", e)
                stop.wait(self._poll)
                continue
            if measurement is not None:
                self.dispatch(measurement)
        self._drain()

    def _drain(self):
        """Deliver whatever was already queued when we were told to stop,
        giving up once drain_seconds have passed."""
        pending = self._channel.qsize()
        deadline = time.monotonic() + self._drain_seconds
        drained = 0
        while drained < pending and time.monotonic() < deadline:
            try:
                measurement = self._channel.receive(timeout=0)
            except ChannelClosed:
                break
            if measurement is None:
                break
            self.dispatch(measurement)
            drained += 1
        if drained < pending and time.monotonic() >= deadline:
            log.warning("Drain deadline hit, %d measurement(s) left undelivered", pending - drained)
        elif drained:
            log.debug("Drained %d measurement(s) on shutdown", drained)

    def stats(self) -> dict:
        return {
            "received": self.received,
            "by_kind": {k.value: n for k, n in self.by_kind.items()},
            "writes": dict(self.writes),
            "failures": dict(self.failures),
        }
