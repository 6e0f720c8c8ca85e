"""
Passive classifier: sniff cluster traffic, keep only client OSD ops.

No period here -- the loop blocks on the capture with a short timeout.
A timeout just means no packet; the capture is lossy and we accept that.
Everything the decoder can't make sense of, and every message that isn't
an OSD op, is dropped right here so it never costs the dispatcher anything.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional

from cephwatch.collector.base import ClusterProtocol, MessageKind, PacketSource
from cephwatch.config import CaptureConfig
from cephwatch.errors import CaptureUnavailable
from cephwatch.measurement import Measurement
from cephwatch.pipeline.channel import DispatchChannel

log = logging.getLogger(__name__)


class PacketClassifier:

    name = "classifier"

    def __init__(
        self,
        source: PacketSource,
        protocol: ClusterProtocol,
        channel: DispatchChannel,
        capture: Optional[CaptureConfig] = None,
    ):
        self._source = source
        self._protocol = protocol
        self._channel = channel
        self._capture = capture or CaptureConfig()

        self.frames = 0
        self.decoded = 0
        self.emitted = 0

    def process_frame(self, frame: bytes) -> Optional[Measurement]:
        """Decode one frame. A Measurement only for client OSD ops."""
        self.frames += 1
        message = self._protocol.decode_frame(frame)
        if message is None:
            return None
        self.decoded += 1
        if message.kind is not MessageKind.OSD_OP:
            return None
        log.debug("logging: %s %s", message.header, message.payload.get("object"))
        return Measurement.wire_operation(message.payload, message.header, source=self.name)

    def open(self):
        """Pick the capture device and install the filter. Raises TaskExit subclasses."""
        device = self._capture.device
        if device not in self._source.devices():
            raise CaptureUnavailable(f"capture device {device!r} not found")

        log.debug("Setting up capture(%s)", device)
        self._source.open(device)
        log.debug("Setting up filter(%s): %s", device, self._capture.filter)
        self._source.install_filter(self._capture.filter)
        log.debug("Waiting for packets(%s)", device)

    def run(self, stop: threading.Event):
        log.debug("Packet sniffing thread active")
        try:
            self.open()
            while not stop.is_set():
                frame = self._source.next_frame(self._capture.timeout)
                if frame is None:
                    # We missed a packet, ignore
                    continue
                measurement = self.process_frame(frame)
                if measurement is not None and self._channel.send(measurement):
                    self.emitted += 1
        finally:
            self._source.close()

    def stats(self) -> dict:
        return {"frames": self.frames, "decoded": self.decoded, "emitted": self.emitted}
