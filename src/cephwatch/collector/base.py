"""
Interfaces for the things cephwatch talks to but doesn't own.

Keeping these narrow lets the pipeline run against real daemons, a
fake cluster (cephwatch.mock), or test doubles without caring which.
"""

from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from cephwatch.measurement import WireHeader


class MessageKind(enum.Enum):
    OSD_OP = "osd_op"
    OSD_OPREPLY = "osd_opreply"
    OSD_SUBOP = "osd_subop"
    OSD_SUBOPREPLY = "osd_subopreply"
    OSD_PING = "osd_ping"
    PING = "ping"
    OTHER = "other"


@dataclass
class DecodedMessage:
    """A cluster message pulled out of a captured frame."""

    kind: MessageKind
    header: WireHeader
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass
class DiskReport:
    healthy: bool
    temperature_mkelvin: Optional[int] = None
    power_on_ms: Optional[int] = None
    bad_sectors: Optional[int] = None

    def as_document(self) -> Dict[str, Any]:
        return {
            "smart_status": self.healthy,
            "temperature_mkelvin": self.temperature_mkelvin or 0,
            "bad_sector_count": self.bad_sectors or 0,
            "power_on_time": self.power_on_ms or 0,
        }


class ClusterProtocol(ABC):
    """Daemon status queries plus the wire decoder."""

    @abstractmethod
    def query_monitor_status(self) -> Optional[Dict[str, Any]]:
        """Perf counters of the local monitor, or None if there isn't one."""
        ...

    @abstractmethod
    def query_storage_daemon_status(self, osd_num: int) -> Optional[Dict[str, Any]]:
        """Perf counters of osd.N, or None if that OSD isn't running here."""
        ...

    @abstractmethod
    def resolve_mount_point(self, osd_num: int) -> Optional[str]:
        """Device backing osd.N's data directory."""
        ...

    @abstractmethod
    def decode_frame(self, data: bytes) -> Optional[DecodedMessage]:
        """None for anything that isn't a recognisable cluster message."""
        ...

    def close(self):
        pass


class PacketSource(ABC):

    @abstractmethod
    def devices(self) -> List[str]:
        ...

    @abstractmethod
    def open(self, device: str):
        ...

    @abstractmethod
    def install_filter(self, expression: str):
        ...

    @abstractmethod
    def next_frame(self, timeout: float) -> Optional[bytes]:
        """Next captured packet, or None if nothing showed up within timeout."""
        ...

    def close(self):
        pass


class DiskHealth(ABC):

    @abstractmethod
    def query(self, device: str) -> DiskReport:
        """Raises DiskUnreadable or HealthUnavailable."""
        ...
