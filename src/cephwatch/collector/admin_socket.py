"""
ClusterProtocol backed by the daemons' admin sockets.

Ceph daemons listen on a UNIX socket under /var/run/ceph. A request is a
JSON command terminated by a NUL byte; the reply is a 4-byte big-endian
length followed by that many bytes of JSON. We only ever send
"perf dump", which returns the daemon's performance counters.
"""

from __future__ import annotations

import json
import logging
import socket
import struct
from typing import Any, Dict, Optional

from cephwatch import topology
from cephwatch.collector.base import ClusterProtocol, DecodedMessage
from cephwatch.collector.wire import WireDecoder
from cephwatch.errors import AdminSocketError

log = logging.getLogger(__name__)

PERF_DUMP = {"prefix": "perf dump"}


def _recv_exact(sock: socket.socket, size: int) -> bytes:
    chunks = []
    remaining = size
    while remaining > 0:
        chunk = sock.recv(min(remaining, 65536))
        if not chunk:
            raise AdminSocketError(f"socket closed with {remaining} bytes outstanding")
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def admin_command(path: str, command: Dict[str, Any], timeout: float = 5.0) -> Optional[Dict[str, Any]]:
    """Run one admin socket command. None if nothing is listening at `path`."""
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    sock.settimeout(timeout)
    try:
        try:
            sock.connect(path)
        except (FileNotFoundError, ConnectionRefusedError):
            # stale or missing socket -- daemon isn't running
            return None

        sock.sendall(json.dumps(command).encode() + b"\0")
        (length,) = struct.unpack(">I", _recv_exact(sock, 4))
        body = _recv_exact(sock, length)
    except OSError as e:
        raise AdminSocketError(f"{path}: {e}") from e
    finally:
        sock.close()

    try:
        doc = json.loads(body)
    except ValueError as e:
        raise AdminSocketError(f"{path}: bad JSON in reply: {e}") from e
    if not isinstance(doc, dict):
        raise AdminSocketError(f"{path}: expected a JSON object, got {type(doc).__name__}")
    return doc


class AdminSocketProtocol(ClusterProtocol):

    def __init__(
        self,
        run_dir: str = topology.DEFAULT_RUN_DIR,
        osd_dir: str = topology.DEFAULT_OSD_DIR,
        mounts_path: str = "/proc/mounts",
        timeout_seconds: float = 5.0,
        decoder: Optional[WireDecoder] = None,
        cluster: str = "ceph",
    ):
        self._run_dir = run_dir
        self._osd_dir = osd_dir
        self._mounts_path = mounts_path
        self._timeout = timeout_seconds
        self._decoder = decoder or WireDecoder()
        self._cluster = cluster

    def query_monitor_status(self) -> Optional[Dict[str, Any]]:
        path = topology.find_monitor_socket(self._run_dir, self._cluster)
        if path is None:
            return None
        return admin_command(path, PERF_DUMP, self._timeout)

    def query_storage_daemon_status(self, osd_num: int) -> Optional[Dict[str, Any]]:
        path = topology.osd_socket_path(osd_num, self._run_dir, self._cluster)
        return admin_command(path, PERF_DUMP, self._timeout)

    def resolve_mount_point(self, osd_num: int) -> Optional[str]:
        target = topology.osd_data_dir(osd_num, self._osd_dir, self._cluster)
        try:
            with open(self._mounts_path) as f:
                for line in f:
                    parts = line.split()
                    if len(parts) >= 2 and parts[1] == target:
                        return parts[0]
        except OSError as e:
            log.debug("Can't read %s: %s", self._mounts_path, e)
        return None

    def decode_frame(self, data: bytes) -> Optional[DecodedMessage]:
        return self._decoder.decode(data)
