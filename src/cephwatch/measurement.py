"""
Core message type for cephwatch.

Every producer (scanners, packet classifier) wraps what it acquired in a
Measurement and hands it to the dispatch channel. The kind is a tag, not
a subclass -- all kinds share the same transport fields and carry their
own payload document.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional


class MeasurementKind(enum.Enum):
    MONITOR_STATUS = "monitor"
    STORAGE_DAEMON_STATUS = "osd"
    DISK_HEALTH = "smart"
    WIRE_OPERATION = "packet"
    DIAGNOSTIC = "diagnostic"


@dataclass(frozen=True)
class WireHeader:
    """Address pair of a captured frame."""

    src_addr: str
    src_port: int
    dst_addr: str
    dst_port: int

    @property
    def src(self) -> str:
        return f"{self.src_addr}:{self.src_port}"

    @property
    def dst(self) -> str:
        return f"{self.dst_addr}:{self.dst_port}"


@dataclass(frozen=True)
class EntityRef:
    """Identifiers sinks need for tagging. Each kind fills in only what it has."""

    osd_num: Optional[int] = None
    drive_name: Optional[str] = None
    header: Optional[WireHeader] = None

    def describe(self) -> str:
        parts = []
        if self.osd_num is not None:
            parts.append(f"osd.{self.osd_num}")
        if self.drive_name:
            parts.append(self.drive_name)
        if self.header is not None:
            parts.append(f"{self.header.src} -> {self.header.dst}")
        return " ".join(parts)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Measurement:
    """One sample, from acquisition to dispatch. Don't mutate the payload."""

    kind: MeasurementKind
    payload: Dict[str, Any]
    entity: EntityRef = field(default_factory=EntityRef)
    timestamp: datetime = field(default_factory=_utcnow)
    source: str = ""

    @classmethod
    def monitor(cls, payload: Dict[str, Any], source: str = "monitor") -> "Measurement":
        return cls(MeasurementKind.MONITOR_STATUS, payload, source=source)

    @classmethod
    def storage_daemon(
        cls,
        osd_num: int,
        payload: Dict[str, Any],
        drive_name: str = "",
        source: str = "osd",
    ) -> "Measurement":
        return cls(
            MeasurementKind.STORAGE_DAEMON_STATUS,
            payload,
            entity=EntityRef(osd_num=osd_num, drive_name=drive_name),
            source=source,
        )

    @classmethod
    def disk_health(
        cls,
        osd_num: int,
        drive_name: str,
        payload: Dict[str, Any],
        source: str = "smart",
    ) -> "Measurement":
        return cls(
            MeasurementKind.DISK_HEALTH,
            payload,
            entity=EntityRef(osd_num=osd_num, drive_name=drive_name),
            source=source,
        )

    @classmethod
    def wire_operation(
        cls,
        payload: Dict[str, Any],
        header: WireHeader,
        source: str = "classifier",
    ) -> "Measurement":
        return cls(
            MeasurementKind.WIRE_OPERATION,
            payload,
            entity=EntityRef(header=header),
            source=source,
        )

    @classmethod
    def diagnostic(cls, message: str, source: str = "") -> "Measurement":
        return cls(MeasurementKind.DIAGNOSTIC, {"msg": message}, source=source)
