"""
DiskHealth via smartctl's JSON output (smartmontools 7+).

Units follow what the old libatasmart-based collector reported, so
dashboards built on it keep working: temperature in millikelvin and
power-on time in milliseconds. Bad sectors = reallocated + pending.
"""

from __future__ import annotations

import json
import logging
import shutil
import subprocess
from typing import Any, Dict, List, Optional

from cephwatch.collector.base import DiskHealth, DiskReport
from cephwatch.errors import DiskUnreadable, HealthUnavailable

log = logging.getLogger(__name__)

# smartctl exit status bits
_EXIT_CMDLINE = 0x01
_EXIT_DEVICE_OPEN = 0x02

_REALLOCATED_SECTORS = 5
_PENDING_SECTORS = 197


def _raw_attribute(table: List[Dict[str, Any]], attr_id: int) -> Optional[int]:
    for attr in table:
        if attr.get("id") == attr_id:
            raw = attr.get("raw") or {}
            value = raw.get("value")
            return int(value) if value is not None else None
    return None


def parse_smartctl(doc: Dict[str, Any], device: str = "") -> DiskReport:
    """Turn `smartctl -j -a` output into a DiskReport."""
    exit_status = (doc.get("smartctl") or {}).get("exit_status", 0)
    if exit_status & (_EXIT_CMDLINE | _EXIT_DEVICE_OPEN):
        messages = (doc.get("smartctl") or {}).get("messages") or []
        detail = "; ".join(m.get("string", "") for m in messages) or f"exit status {exit_status}"
        raise DiskUnreadable(f"{device}: {detail}")

    status = doc.get("smart_status")
    if not status or "passed" not in status:
        raise HealthUnavailable(f"{device}: no SMART status reported")

    temperature = (doc.get("temperature") or {}).get("current")
    hours = (doc.get("power_on_time") or {}).get("hours")

    bad_sectors = None
    table = (doc.get("ata_smart_attributes") or {}).get("table") or []
    if table:
        counts = [
            c for c in (
                _raw_attribute(table, _REALLOCATED_SECTORS),
                _raw_attribute(table, _PENDING_SECTORS),
            )
            if c is not None
        ]
        bad_sectors = sum(counts) if counts else None
    elif "scsi_grown_defect_list" in doc:
        bad_sectors = int(doc["scsi_grown_defect_list"])

    return DiskReport(
        healthy=bool(status["passed"]),
        temperature_mkelvin=int(temperature * 1000 + 273150) if temperature is not None else None,
        power_on_ms=int(hours) * 3600 * 1000 if hours is not None else None,
        bad_sectors=bad_sectors,
    )


class SmartctlDiskHealth(DiskHealth):

    def __init__(self, smartctl: str = "smartctl", timeout_seconds: float = 30.0):
        self._smartctl = smartctl
        self._timeout = timeout_seconds

    @property
    def available(self) -> bool:
        return shutil.which(self._smartctl) is not None

    def query(self, device: str) -> DiskReport:
        try:
            proc = subprocess.run(
                [self._smartctl, "-j", "-a", device],
                capture_output=True,
                text=True,
                timeout=self._timeout,
            )
        except FileNotFoundError as e:
            raise HealthUnavailable(f"{self._smartctl} is not installed") from e
        except subprocess.TimeoutExpired as e:
            raise DiskUnreadable(f"{device}: smartctl timed out after {self._timeout}s") from e

        try:
            doc = json.loads(proc.stdout)
        except ValueError as e:
            raise HealthUnavailable(f"{device}: unparseable smartctl output") from e

        return parse_smartctl(doc, device)
