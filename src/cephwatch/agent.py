"""
Wires everything together: collaborators, channel, dispatcher and the
producer tasks, all under one supervisor and one stop event.

    agent = Agent.from_settings(load_config(path))
    agent.run_forever()       # until Ctrl+C / SIGTERM
"""

from __future__ import annotations

import dataclasses
import logging
import shutil
import signal
import tempfile
import threading
import time
from typing import List, Optional

from cephwatch.collector.admin_socket import AdminSocketProtocol
from cephwatch.collector.base import ClusterProtocol, DiskHealth, PacketSource
from cephwatch.config import Settings
from cephwatch.measurement import Measurement
from cephwatch.pipeline.channel import DispatchChannel
from cephwatch.pipeline.classifier import PacketClassifier
from cephwatch.pipeline.dispatcher import Dispatcher
from cephwatch.pipeline.scanner import ScannerTask, monitor_scanner, osd_scanner, smart_scanner
from cephwatch.pipeline.supervisor import Supervisor
from cephwatch.sinks import build_sinks
from cephwatch.sinks.base import Sink

log = logging.getLogger(__name__)


class Agent:

    def __init__(
        self,
        settings: Settings,
        protocol: ClusterProtocol,
        packets: Optional[PacketSource] = None,
        disks: Optional[DiskHealth] = None,
        sinks: Optional[List[Sink]] = None,
        supervisor: Optional[Supervisor] = None,
    ):
        self.settings = settings
        self.protocol = protocol
        self.supervisor = supervisor or Supervisor()
        self.channel = DispatchChannel(maxsize=settings.channel_maxsize)
        if sinks is None:
            sinks = build_sinks(settings.sinks, stop=self.supervisor.stop_event)
        self.sinks = list(sinks)
        self.dispatcher = Dispatcher(self.channel, self.sinks)

        self.scanners: List[ScannerTask] = [
            monitor_scanner(protocol, self.channel, settings),
            osd_scanner(protocol, self.channel, settings),
        ]
        if disks is not None:
            self.scanners.append(smart_scanner(protocol, disks, self.channel, settings))

        self.classifier: Optional[PacketClassifier] = None
        if packets is not None and settings.capture.enabled:
            self.classifier = PacketClassifier(packets, protocol, self.channel, settings.capture)

        self.started_at: Optional[float] = None
        self._stopped = False
        self._scratch_dir: Optional[str] = None

    @classmethod
    def from_settings(cls, settings: Settings, mock: bool = False) -> "Agent":
        """Build the agent with real collaborators, or the mock cluster if mock=True."""
        if mock:
            from cephwatch.collector.mock_collector import (
                MockClusterProtocol,
                MockDiskHealth,
                MockPacketSource,
            )
            from cephwatch.mock.generator import MockCephCluster

            cluster = MockCephCluster()
            scratch = tempfile.mkdtemp(prefix="cephwatch-mock-")
            paths = dataclasses.replace(settings.paths, **cluster.materialize(scratch, settings.cluster))
            settings = dataclasses.replace(settings, paths=paths)
            agent = cls(
                settings,
                MockClusterProtocol(cluster),
                packets=MockPacketSource(cluster),
                disks=MockDiskHealth(cluster),
            )
            agent._scratch_dir = scratch
            return agent

        from cephwatch.collector.capture import ScapyPacketSource
        from cephwatch.collector.smart import SmartctlDiskHealth

        protocol = AdminSocketProtocol(
            run_dir=settings.paths.run_dir,
            osd_dir=settings.paths.osd_dir,
            mounts_path=settings.paths.mounts,
            cluster=settings.cluster,
        )
        disks = SmartctlDiskHealth()
        if not disks.available:
            log.warning("smartctl not found, disk health will report collection errors")
        packets = ScapyPacketSource() if settings.capture.enabled else None
        return cls(settings, protocol, packets=packets, disks=disks)

    @property
    def stop_event(self) -> threading.Event:
        return self.supervisor.stop_event

    def tasks(self) -> list:
        tasks = [self.dispatcher, *self.scanners]
        if self.classifier is not None:
            tasks.append(self.classifier)
        return tasks

    def start(self):
        self.started_at = time.monotonic()
        # dispatcher first so nothing sits in the channel longer than it has to
        for task in self.tasks():
            self.supervisor.spawn(task)
        names = ", ".join(t.name for t in self.tasks())
        log.info("Started tasks: %s; outputs: %s", names, ", ".join(s.name for s in self.sinks) or "none")
        self.channel.send(Measurement.diagnostic(f"cephwatch started ({names})", source="agent"))

    def stop(self, timeout: float = 5.0) -> bool:
        """Stop every task and release resources. True if all threads ended in time."""
        if self._stopped:
            return not self.supervisor.alive()
        self._stopped = True
        clean = self.supervisor.stop(timeout)
        self.channel.close()
        for sink in self.sinks:
            try:
                sink.close()
            except Exception as e:
                log.warning("Closing sink %s failed: %s", sink.name, e)
        self.protocol.close()
        if self._scratch_dir:
            shutil.rmtree(self._scratch_dir, ignore_errors=True)
        log.info("Stopped%s", "" if clean else " (some threads still running)")
        return clean

    def run_forever(self, poll_seconds: float = 1.0):
        """Start, then block until interrupted. Stops cleanly either way."""
        if threading.current_thread() is threading.main_thread():
            signal.signal(signal.SIGTERM, lambda signum, frame: self.stop_event.set())
        self.start()
        try:
            while not self.stop_event.wait(poll_seconds):
                pass
        except KeyboardInterrupt:
            log.info("Interrupted, shutting down")
        finally:
            self.stop()

    def stats(self) -> dict:
        uptime = time.monotonic() - self.started_at if self.started_at else 0.0
        tasks = {}
        for task in self.tasks():
            state = self.supervisor.states.get(task.name)
            entry = task.stats() if hasattr(task, "stats") and task is not self.dispatcher else {}
            entry.update({
                "status": state.status if state else "pending",
                "restarts": state.restarts if state else 0,
                "last_error": state.last_error if state else None,
            })
            tasks[task.name] = entry

        sinks = {}
        for sink in self.sinks:
            sinks[sink.name] = {
                "writes": self.dispatcher.writes.get(sink.name, 0),
                "failures": self.dispatcher.failures.get(sink.name, 0),
                "dropped": getattr(sink, "dropped", 0),
            }

        return {
            "uptime_seconds": round(uptime, 1),
            "channel": {
                "sent": self.channel.sent,
                "dropped": self.channel.dropped,
                "queued": self.channel.qsize(),
            },
            "dispatcher": self.dispatcher.stats(),
            "tasks": tasks,
            "sinks": sinks,
        }
