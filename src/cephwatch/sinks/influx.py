"""
Remote sink: InfluxDB 1.x HTTP write endpoint, line protocol, one record
per measurement.

Each measurement kind maps to a fixed record name (mon_daemon,
osd_daemon, smart, osd_op), tagged with the host and whatever entity
identifiers the measurement carries. Fields are pulled out of the raw
payload by dotted path; anything the payload doesn't have is left out
rather than written as zero.

Fire and forget: a failed send is logged at debug level and counted in
`dropped`. `retries` defaults to 0, i.e. at-most-once. Retry backoff waits
on the agent's stop event, and nothing is retried once shutdown starts.

Encoding is influxdb-python's line protocol serialiser; transport is httpx.
"""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx
from influxdb.line_protocol import make_lines

from cephwatch.config import InfluxConfig
from cephwatch.measurement import Measurement, MeasurementKind
from cephwatch.sinks.base import Sink

log = logging.getLogger(__name__)

# (field name, dotted path in the perf dump, type)
MON_FIELDS: List[Tuple[str, str, type]] = [
    ("used", "cluster.osd_kb_used", int),
    ("avail", "cluster.osd_kb_avail", int),
    ("total", "cluster.osd_kb", int),
    ("osds", "cluster.num_osd", int),
    ("osds_up", "cluster.num_osd_up", int),
    ("osds_in", "cluster.num_osd_in", int),
    ("osd_epoch", "cluster.osd_epoch", int),
    ("pgs", "cluster.num_pg", int),
    ("pgs_active_clean", "cluster.num_pg_active_clean", int),
    ("pgs_active", "cluster.num_pg_active", int),
    ("pgs_peering", "cluster.num_pg_peering", int),
    ("objects", "cluster.num_object", int),
    ("objects_degraded", "cluster.num_object_degraded", int),
    ("objects_unfound", "cluster.num_object_unfound", int),
    ("monitors", "cluster.num_mon", int),
    ("monitors_quorum", "cluster.num_mon_quorum", int),
]

OSD_FIELDS: List[Tuple[str, str, type]] = [
    ("load_average", "osd.loadavg", int),
    ("queued_ops", "filestore.op_queue_ops", int),
    ("stat_bytes", "osd.stat_bytes", int),
    ("stat_bytes_used", "osd.stat_bytes_used", int),
    ("stat_bytes_avail", "osd.stat_bytes_avail", int),
    ("op_latency", "osd.op_latency.sum", float),
    ("op_r_latency", "osd.op_r_latency.sum", float),
    ("op_w_latency", "osd.op_w_latency.sum", float),
    ("subop_latency", "osd.subop_latency.sum", float),
    ("subop_w_latency", "osd.subop_w_latency.sum", float),
    ("journal_latency", "filestore.journal_latency.sum", float),
    ("apply_latency", "filestore.apply_latency.sum", float),
    ("commit_latency", "filestore.commitcycle_latency.sum", float),
    ("queue_transaction_latency_avg", "filestore.queue_transaction_latency_avg.sum", float),
    ("ops", "filestore.ops", int),
]

SMART_FIELDS: List[Tuple[str, str, type]] = [
    ("smart_status", "smart_status", bool),
    ("temperature_mkelvin", "temperature_mkelvin", int),
    ("bad_sector_count", "bad_sector_count", int),
    ("power_on_time", "power_on_time", int),
    ("error", "error", str),
    ("smart_data_collection_error", "smart_data_collection_error", str),
]

OP_FIELDS: List[Tuple[str, str, type]] = [
    ("flags", "flags", int),
    ("size", "size", int),
    ("count", "count", int),
    ("pool", "pool", int),
    ("osdmap_epoch", "osdmap_epoch", int),
    ("object", "object", str),
]


def lookup(doc: Any, path: str) -> Any:
    """Walk a nested dict by dotted path. None if any step is missing."""
    node = doc
    for part in path.split("."):
        if not isinstance(node, dict) or part not in node:
            return None
        node = node[part]
    return node


def extract_fields(payload: Dict[str, Any], fields_wanted: List[Tuple[str, str, type]]) -> Dict[str, Any]:
    fields: Dict[str, Any] = {}
    for name, path, kind in fields_wanted:
        value = lookup(payload, path)
        if value is None or isinstance(value, (dict, list)):
            continue
        try:
            if kind is bool:
                fields[name] = bool(value)
            elif kind is str:
                fields[name] = str(value)
            elif isinstance(value, bool):
                continue
            else:
                number = kind(value)
                if isinstance(number, float) and not math.isfinite(number):
                    # line protocol has no NaN or inf
                    continue
                fields[name] = number
        except (TypeError, ValueError):
            log.debug("Skipping field %s: can't convert %r to %s", name, value, kind.__name__)
    return fields


@dataclass
class Record:
    name: str
    timestamp: int  # seconds
    tags: Dict[str, str] = field(default_factory=dict)
    fields: Dict[str, Any] = field(default_factory=dict)

    def to_point(self) -> Dict[str, Any]:
        """The point dict influxdb-python serialises (same shape write_points takes)."""
        return {
            "measurement": self.name,
            "time": self.timestamp,
            "tags": {k: str(v) for k, v in self.tags.items() if v is not None and v != ""},
            "fields": self.fields,
        }

    def to_line(self) -> str:
        """measurement,tag=v,... field=v,... timestamp"""
        return make_lines({"points": [self.to_point()]}, precision="s").rstrip("\n")


def _mon_record(m: Measurement, hostname: str) -> Record:
    return Record(
        name="mon_daemon",
        timestamp=int(m.timestamp.timestamp()),
        tags={"type": "monitor", "hostname": hostname},
        fields=extract_fields(m.payload, MON_FIELDS),
    )


def _osd_record(m: Measurement, hostname: str) -> Record:
    return Record(
        name="osd_daemon",
        timestamp=int(m.timestamp.timestamp()),
        tags={
            "type": "osd",
            "hostname": hostname,
            "osd_num": str(m.entity.osd_num),
            "drive_name": m.entity.drive_name or "",
        },
        fields=extract_fields(m.payload, OSD_FIELDS),
    )


def _smart_record(m: Measurement, hostname: str) -> Record:
    return Record(
        name="smart",
        timestamp=int(m.timestamp.timestamp()),
        tags={
            "hostname": hostname,
            "disk": m.entity.drive_name or "",
            "osd_num": str(m.entity.osd_num),
        },
        fields=extract_fields(m.payload, SMART_FIELDS),
    )


def _op_record(m: Measurement, hostname: str) -> Record:
    header = m.entity.header
    tags = {"hostname": hostname}
    if header is not None:
        tags["src"] = header.src
        tags["dst"] = header.dst
    return Record(
        name="osd_op",
        timestamp=int(m.timestamp.timestamp()),
        tags=tags,
        fields=extract_fields(m.payload, OP_FIELDS),
    )


RECORD_BUILDERS: Dict[MeasurementKind, Callable[[Measurement, str], Record]] = {
    MeasurementKind.MONITOR_STATUS: _mon_record,
    MeasurementKind.STORAGE_DAEMON_STATUS: _osd_record,
    MeasurementKind.DISK_HEALTH: _smart_record,
    MeasurementKind.WIRE_OPERATION: _op_record,
}


def build_record(measurement: Measurement, hostname: str) -> Optional[Record]:
    """None when the kind has no remote record or the payload had no usable fields."""
    builder = RECORD_BUILDERS.get(measurement.kind)
    if builder is None:
        return None
    record = builder(measurement, hostname)
    if not record.fields:
        return None
    return record


class InfluxSink(Sink):

    name = "influx"

    def __init__(
        self,
        config: InfluxConfig,
        hostname: str,
        client: Optional[httpx.Client] = None,
        backoff_seconds: float = 0.5,
        stop: Optional[threading.Event] = None,
    ):
        self._config = config
        self._hostname = hostname
        self._write_url = config.base_url + "/write"
        self._params = {"db": config.database, "precision": "s"}
        self._auth = (config.user, config.password)
        self._client = client or httpx.Client(timeout=config.timeout)
        self._backoff = backoff_seconds
        # retries wait on this, and are skipped once it is set
        self._stop = stop or threading.Event()
        self.sent = 0
        self.skipped = 0
        self.dropped = 0

    def accepts(self, kind: MeasurementKind) -> bool:
        return kind in RECORD_BUILDERS

    def write(self, measurement: Measurement) -> bool:
        record = build_record(measurement, self._hostname)
        if record is None:
            self.skipped += 1
            log.debug("No fields to send for %s measurement", measurement.kind.value)
            return True

        line = record.to_line()
        attempts = self._config.retries + 1
        for attempt in range(attempts):
            try:
                log.debug("Sending %s record to %s", record.name, self._write_url)
                response = self._client.post(self._write_url, params=self._params, content=line, auth=self._auth)
                response.raise_for_status()
                self.sent += 1
                return True
            except httpx.HTTPError as e:
                last_attempt = attempt + 1 == attempts
                if not last_attempt and not self._stop.wait(self._backoff * (2 ** attempt)):
                    continue
                self.dropped += 1
                log.debug("Dropped %s record after %d attempt(s): %s", record.name, attempt + 1, e)
                return False
        return False

    def close(self):
        self._client.close()
