"""
Mock Ceph node.

Produces fake but plausible perf dumps, SMART reports and captured
frames so we can develop and test without a cluster. Numbers are loosely
based on a small three-OSD filestore cluster under moderate client load.

`materialize()` lays out the directories topology discovery looks at
(mon instance dir, admin sockets), so the real scanners can run against it.
"""

from __future__ import annotations

import math
import os
import random
import struct
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from scapy.layers.inet import IP, TCP
from scapy.packet import Raw

from cephwatch.collector.base import DiskReport
from cephwatch.collector.wire import MSG_HEADER, MSGR_TAG_MSG

CEPH_MSG_PING = 2
CEPH_MSG_OSD_OP = 42
CEPH_MSG_OSD_OPREPLY = 43

ENTITY_CLIENT = 8

OSD_OP_READ = 0x1201
OSD_OP_WRITE = 0x2201


def encode_osd_op_front(
    object_name: str,
    pool: int = 1,
    flags: int = 0x24,
    osdmap_epoch: int = 213,
    ops: Iterable[tuple] = ((OSD_OP_WRITE, 0, 4096),),
) -> bytes:
    """Front section of an OSD op. `ops` is (opcode, offset, length) tuples."""
    ops = list(ops)
    oloc = struct.pack("<qi", pool, -1) + struct.pack("<I", 0)  # pool, preferred, empty key
    oid = object_name.encode()
    parts = [
        struct.pack("<III", 1, osdmap_epoch, flags),
        struct.pack("<II", 1_700_000_000, 0),
        struct.pack("<QI", 0, 0),
        struct.pack("<BBI", 3, 3, len(oloc)), oloc,
        struct.pack("<BQIi", 1, pool, 0x2a, -1),
        struct.pack("<I", len(oid)), oid,
        struct.pack("<H", len(ops)),
    ]
    for code, offset, length in ops:
        parts.append(struct.pack("<HIQQQII", code, 0, offset, length, 0, 0, length))
    return b"".join(parts)


def encode_message(
    msg_type: int,
    front: bytes = b"",
    data_len: int = 0,
    seq: int = 1,
    tid: int = 1,
    src_num: int = 4100,
) -> bytes:
    """A messenger v1 message as it appears in a TCP payload (data section omitted)."""
    header = MSG_HEADER.pack(
        seq, tid, msg_type, 127, 4,
        len(front), 0, data_len, 0,
        ENTITY_CLIENT, src_num, 1, 0, 0,
    )
    return bytes([MSGR_TAG_MSG]) + header + front


def build_frame(
    payload: bytes,
    src: str = "10.0.0.5",
    dst: str = "10.0.0.11",
    sport: int = 43512,
    dport: int = 6800,
) -> bytes:
    """IPv4/TCP packet bytes carrying `payload`."""
    return bytes(IP(src=src, dst=dst) / TCP(sport=sport, dport=dport, flags="PA") / Raw(load=payload))


class MockCephCluster:

    def __init__(self, seed: int = 42, osds: Iterable[int] = (0, 1, 2), monitor: bool = True):
        self._rng = random.Random(seed)
        self._tick = 0
        self.osds = tuple(osds)
        self.monitor = monitor
        self._ops_total = {n: 0 for n in self.osds}
        self._power_on_hours = {n: 8000 + 500 * n for n in self.osds}

    def advance(self):
        self._tick += 1

    def _load(self) -> float:
        # Sinusoidal base load with occasional random spikes
        base = 0.5 + 0.3 * math.sin(self._tick * 0.05)
        spike = self._rng.random() * 0.4 if self._rng.random() > 0.9 else 0
        return min(1.0, base + spike)

    def monitor_dump(self) -> Optional[Dict[str, Any]]:
        if not self.monitor:
            return None
        self.advance()
        total_kb = 3 * 466_472_001_536 // 1024
        used_kb = int(total_kb * (0.35 + 0.01 * math.sin(self._tick * 0.01)))
        n = len(self.osds)
        return {
            "cluster": {
                "num_mon": 3,
                "num_mon_quorum": 3,
                "num_osd": n,
                "num_osd_up": n,
                "num_osd_in": n,
                "osd_epoch": 213,
                "osd_kb": total_kb,
                "osd_kb_used": used_kb,
                "osd_kb_avail": total_kb - used_kb,
                "num_pool": 3,
                "num_pg": 192,
                "num_pg_active_clean": 192,
                "num_pg_active": 192,
                "num_pg_peering": 0,
                "num_object": 5000 + self._tick * 3,
                "num_object_degraded": 0,
                "num_object_unfound": 0,
            },
            "paxos": {"commit": 45 + self._tick},
        }

    def osd_dump(self, osd_num: int) -> Optional[Dict[str, Any]]:
        if osd_num not in self._ops_total:
            return None
        load = self._load()
        ops = int(40 + load * 200 + self._rng.gauss(0, 5))
        self._ops_total[osd_num] += max(0, ops)
        stat_bytes = 466_472_001_536
        used = int(stat_bytes * (0.35 + 0.02 * osd_num))
        return {
            "osd": {
                "op": self._ops_total[osd_num],
                "loadavg": int(load * 2000),
                "stat_bytes": stat_bytes,
                "stat_bytes_used": used,
                "stat_bytes_avail": stat_bytes - used,
                "op_latency": {"avgcount": ops, "sum": round(ops * (0.01 + load * 0.05), 6)},
                "op_r_latency": {"avgcount": ops // 3, "sum": round(ops * 0.004, 6)},
                "op_w_latency": {"avgcount": ops - ops // 3, "sum": round(ops * (0.02 + load * 0.04), 6)},
                "subop_latency": {"avgcount": ops * 2, "sum": round(ops * 0.03, 6)},
                "subop_w_latency": {"avgcount": ops * 2, "sum": round(ops * 0.03, 6)},
            },
            "filestore": {
                "ops": self._ops_total[osd_num],
                "op_queue_ops": max(0, int(load * 12) - 4),
                "journal_latency": {"avgcount": ops, "sum": round(ops * 0.3, 6)},
                "apply_latency": {"avgcount": ops, "sum": round(ops * 0.4, 6)},
                "commitcycle_latency": {"avgcount": 31, "sum": 117.046209984},
                "queue_transaction_latency_avg": {"avgcount": ops, "sum": round(ops * 0.0004, 6)},
            },
        }

    def mount_point(self, osd_num: int) -> Optional[str]:
        if osd_num not in self._ops_total:
            return None
        return f"/dev/sd{chr(ord('b') + osd_num % 24)}1"

    def smart_report(self, osd_num: int) -> DiskReport:
        self._power_on_hours[osd_num] = self._power_on_hours.get(osd_num, 8000) + 1
        return DiskReport(
            healthy=True,
            temperature_mkelvin=int((34 + self._rng.random() * 6) * 1000 + 273150),
            power_on_ms=self._power_on_hours[osd_num] * 3600 * 1000,
            bad_sectors=0 if osd_num != 2 else 8,
        )

    def frame(self) -> bytes:
        """One captured frame: mostly client ops, some other traffic, some noise."""
        roll = self._rng.random()
        osd_num = self._rng.choice(self.osds) if self.osds else 0
        dport = 6800 + 2 * osd_num
        if roll < 0.6:
            size = self._rng.choice((4096, 65536, 4194304))
            code = OSD_OP_WRITE if self._rng.random() < 0.7 else OSD_OP_READ
            front = encode_osd_op_front(
                f"rbd_data.1f2e{self._rng.randrange(16 ** 6):06x}",
                pool=1,
                ops=[(code, 0, size)],
            )
            payload = encode_message(CEPH_MSG_OSD_OP, front, data_len=size if code == OSD_OP_WRITE else 0)
        elif roll < 0.8:
            payload = encode_message(CEPH_MSG_PING)
        else:
            payload = b"ceph v027"
        return build_frame(payload, dport=dport)

    def materialize(self, root: str, cluster: str = "ceph") -> Dict[str, str]:
        """Create mon/run dirs under root that look like this node. Returns the paths."""
        base = Path(root)
        mon_dir = base / "lib" / "mon"
        run_dir = base / "run"
        mon_dir.mkdir(parents=True, exist_ok=True)
        run_dir.mkdir(parents=True, exist_ok=True)
        if self.monitor:
            (mon_dir / f"{cluster}-mock").mkdir(exist_ok=True)
            (run_dir / f"{cluster}-mon.mock.asok").touch()
        for n in self.osds:
            (run_dir / f"{cluster}-osd.{n}.asok").touch()
        return {"mon_dir": os.fspath(mon_dir), "run_dir": os.fspath(run_dir)}
