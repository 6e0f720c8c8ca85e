"""
Collaborators backed by the mock cluster generator.
Used by `cephwatch --mock` and by the tests.
"""

from __future__ import annotations

import threading
from typing import Any, Dict, List, Optional

from cephwatch.collector.base import (
    ClusterProtocol,
    DecodedMessage,
    DiskHealth,
    DiskReport,
    PacketSource,
)
from cephwatch.collector.wire import WireDecoder
from cephwatch.errors import DiskUnreadable
from cephwatch.mock.generator import MockCephCluster


class MockClusterProtocol(ClusterProtocol):
    """Wraps the mock generator as a standard ClusterProtocol."""

    def __init__(self, cluster: Optional[MockCephCluster] = None):
        self.cluster = cluster or MockCephCluster()
        self._decoder = WireDecoder()
        # the generator's RNG isn't thread safe and several scanners share it
        self._lock = threading.Lock()

    def query_monitor_status(self) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self.cluster.monitor_dump()

    def query_storage_daemon_status(self, osd_num: int) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self.cluster.osd_dump(osd_num)

    def resolve_mount_point(self, osd_num: int) -> Optional[str]:
        return self.cluster.mount_point(osd_num)

    def decode_frame(self, data: bytes) -> Optional[DecodedMessage]:
        return self._decoder.decode(data)


class MockPacketSource(PacketSource):
    """Synthesised traffic at roughly `rate` frames per second."""

    def __init__(self, cluster: Optional[MockCephCluster] = None, rate: float = 20.0):
        self.cluster = cluster or MockCephCluster()
        self._interval = 1.0 / rate if rate > 0 else 0.0
        self._idle = threading.Event()
        self.device: Optional[str] = None
        self.filter: Optional[str] = None

    def devices(self) -> List[str]:
        return ["any", "lo"]

    def open(self, device: str):
        self.device = device

    def install_filter(self, expression: str):
        self.filter = expression

    def next_frame(self, timeout: float) -> Optional[bytes]:
        if self._interval > timeout:
            self._idle.wait(timeout)
            return None
        self._idle.wait(self._interval)
        return self.cluster.frame()


class MockDiskHealth(DiskHealth):

    def __init__(self, cluster: Optional[MockCephCluster] = None, dead: tuple = ()):
        self.cluster = cluster or MockCephCluster()
        self._dead = set(dead)

    def query(self, device: str) -> DiskReport:
        if device in self._dead:
            raise DiskUnreadable(f"{device}: No such device")
        osd_num = ord(device[len("/dev/sd")]) - ord("b") if device.startswith("/dev/sd") else 0
        return self.cluster.smart_report(osd_num)
