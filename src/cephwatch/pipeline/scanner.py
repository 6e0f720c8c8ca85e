"""
Periodic scanners.

One loop skeleton shared by all three scanners:

    snapshot = resolve()
    every tick:
        probe each entity in the snapshot, send what comes back
        refresh the snapshot every Nth cycle, or right away if a probe
        said its entity is gone
        wait for the next tick (or the stop event)

What differs between scanners is only `resolve` and `probe`, which the
factory functions at the bottom supply.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, FrozenSet, Hashable, Optional

from cephwatch import topology
from cephwatch.collector.base import ClusterProtocol, DiskHealth
from cephwatch.config import Settings
from cephwatch.errors import DiskUnreadable, EntityAbsent, HealthUnavailable
from cephwatch.measurement import Measurement, MeasurementKind
from cephwatch.pipeline.channel import DispatchChannel

log = logging.getLogger(__name__)

DEFAULT_REFRESH_EVERY = 10

Resolver = Callable[[], FrozenSet[Hashable]]
Probe = Callable[[Hashable], Optional[Measurement]]


class ScannerTask:
    """Run `probe` over a topology snapshot on a fixed period."""

    def __init__(
        self,
        name: str,
        kind: MeasurementKind,
        interval: float,
        resolve: Resolver,
        probe: Probe,
        channel: DispatchChannel,
        refresh_every: int = DEFAULT_REFRESH_EVERY,
    ):
        if refresh_every < 1:
            raise ValueError("refresh_every must be >= 1")
        self.name = name
        self.kind = kind
        self.interval = interval
        self._resolve = resolve
        self._probe = probe
        self._channel = channel
        self.refresh_every = refresh_every

        self.snapshot: FrozenSet[Hashable] = frozenset()
        self.cycles = 0
        self.refreshes = 0
        self.emitted = 0
        self.failures = 0

    def refresh(self):
        self.snapshot = frozenset(self._resolve())
        self.refreshes += 1
        log.debug("%s: topology %s", self.name, sorted(self.snapshot, key=str))

    def start(self):
        self.refresh()

    def run_cycle(self):
        """One pass over the snapshot, plus the refresh decision. Doesn't wait."""
        self.cycles += 1
        stale = False

        for entity in sorted(self.snapshot, key=str):
            try:
                measurement = self._probe(entity)
            except EntityAbsent as e:
                log.info("%s: %s is gone (%s), refreshing topology", self.name, entity, e)
                stale = True
                continue
            except Exception as e:
                self.failures += 1
                log.warning("%s: probe of %s failed: %s", self.name, entity, e)
                continue

            if measurement is None:
                continue
            if self._channel.send(measurement):
                self.emitted += 1

        if stale or self.cycles % self.refresh_every == 0:
            self.refresh()

    def run(self, stop: threading.Event):
        log.debug("%s thread active", self.name)
        self.start()
        while not stop.is_set():
            self.run_cycle()
            if stop.wait(self.interval):
                break
        log.debug("%s stopped after %d cycles", self.name, self.cycles)

    def stats(self) -> dict:
        return {
            "kind": self.kind.value,
            "cycles": self.cycles,
            "refreshes": self.refreshes,
            "emitted": self.emitted,
            "failures": self.failures,
            "entities": len(self.snapshot),
        }


# -- Scanner instances --


def monitor_scanner(
    protocol: ClusterProtocol,
    channel: DispatchChannel,
    settings: Settings,
) -> ScannerTask:
    mon_dir = settings.paths.mon_dir

    def resolve():
        return frozenset({"mon"}) if topology.detect_monitor_role(mon_dir) else frozenset()

    def probe(_entity):
        dump = protocol.query_monitor_status()
        if dump is None:
            raise EntityAbsent("no monitor answered on this host")
        return Measurement.monitor(dump, source="monitor")

    return ScannerTask(
        "monitor", MeasurementKind.MONITOR_STATUS, settings.intervals.monitor,
        resolve, probe, channel, settings.refresh_every,
    )


def osd_scanner(
    protocol: ClusterProtocol,
    channel: DispatchChannel,
    settings: Settings,
) -> ScannerTask:
    run_dir = settings.paths.run_dir
    cluster = settings.cluster

    def resolve():
        return topology.discover_storage_daemons(run_dir, cluster)

    def probe(osd_num):
        dump = protocol.query_storage_daemon_status(osd_num)
        if dump is None:
            raise EntityAbsent(f"osd.{osd_num} didn't answer")
        drive_name = protocol.resolve_mount_point(osd_num) or ""
        return Measurement.storage_daemon(osd_num, dump, drive_name=drive_name, source="osd")

    return ScannerTask(
        "osd", MeasurementKind.STORAGE_DAEMON_STATUS, settings.intervals.osd,
        resolve, probe, channel, settings.refresh_every,
    )


def smart_scanner(
    protocol: ClusterProtocol,
    disks: DiskHealth,
    channel: DispatchChannel,
    settings: Settings,
) -> ScannerTask:
    run_dir = settings.paths.run_dir
    cluster = settings.cluster

    def resolve():
        return topology.discover_storage_daemons(run_dir, cluster)

    def probe(osd_num):
        drive_name = protocol.resolve_mount_point(osd_num)
        if not drive_name:
            log.debug("smart: no device for osd.%s, skipping", osd_num)
            return None

        try:
            report = disks.query(drive_name)
        except DiskUnreadable as e:
            # This could mean that the drive is dead
            payload = {"error": str(e)}
        except HealthUnavailable as e:
            payload = {"smart_data_collection_error": str(e)}
        else:
            payload = report.as_document()

        return Measurement.disk_health(osd_num, drive_name, payload, source="smart")

    return ScannerTask(
        "smart", MeasurementKind.DISK_HEALTH, settings.intervals.smart,
        resolve, probe, channel, settings.refresh_every,
    )
