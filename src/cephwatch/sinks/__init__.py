"""Sink adapters, plus the helper that builds the configured set."""

from __future__ import annotations

import threading
from typing import List, Optional

from cephwatch.config import SinkConfig
from cephwatch.sinks.base import Sink
from cephwatch.sinks.influx import InfluxSink
from cephwatch.sinks.log_sink import LogSink


def build_sinks(config: SinkConfig, stop: Optional[threading.Event] = None) -> List[Sink]:
    """One sink per enabled output, in config order."""
    sinks: List[Sink] = []
    for output in config.outputs:
        if not config.enabled(output):
            continue
        if output == "stdout":
            sinks.append(LogSink())
        elif output == "influx":
            sinks.append(InfluxSink(config.influx, hostname=config.hostname, stop=stop))
    return sinks
