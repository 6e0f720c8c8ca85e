"""
Local topology discovery: is this host a monitor, and which OSDs run here?

Both answers come from the filesystem. Reads that fail are treated as
"nothing here" rather than errors -- the scanners re-ask periodically,
so a transient failure corrects itself.

Not cheap enough to call every loop iteration.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import FrozenSet, Optional

log = logging.getLogger(__name__)

DEFAULT_MON_DIR = "/var/lib/ceph/mon"
DEFAULT_RUN_DIR = "/var/run/ceph"
DEFAULT_OSD_DIR = "/var/lib/ceph/osd"

# Admin socket names look like:
#   ceph-mon.ip-172-31-22-89.asok
#   ceph-osd.1.asok
_SOCKET_RE = re.compile(r"^(?P<cluster>[^-.]+)-(?P<role>[a-z]+)\.(?P<id>.+)\.(?P<ext>[a-z]+)$")
_OSD_ID_RE = re.compile(r"[0-9]+")


@dataclass(frozen=True)
class SocketName:
    cluster: str
    role: str
    ident: str
    ext: str


def parse_socket_name(name: str) -> Optional[SocketName]:
    match = _SOCKET_RE.match(name)
    if not match:
        return None
    return SocketName(
        cluster=match.group("cluster"),
        role=match.group("role"),
        ident=match.group("id"),
        ext=match.group("ext"),
    )


def detect_monitor_role(mon_dir: str = DEFAULT_MON_DIR) -> bool:
    """True if mon_dir has at least one instance directory (e.g. ceph-host1)."""
    try:
        with os.scandir(mon_dir) as entries:
            for entry in entries:
                if entry.is_dir():
                    return True
    except OSError as e:
        log.info("No monitor found (%s)", e)
        return False
    return False


def discover_storage_daemons(run_dir: str = DEFAULT_RUN_DIR, cluster: str = "ceph") -> FrozenSet[int]:
    """OSD ids of `cluster` with a control socket in run_dir. Read failure -> empty set."""
    osds = set()
    try:
        names = os.listdir(run_dir)
    except OSError as e:
        log.info("No OSDs found (%s)", e)
        return frozenset()

    for name in names:
        sock = parse_socket_name(name)
        # Ignore non matches, ie: ceph monitors
        if sock is None or sock.role != "osd" or sock.cluster != cluster:
            continue
        # ascii only; isdigit() also accepts superscripts int() rejects
        if not _OSD_ID_RE.fullmatch(sock.ident):
            continue
        osds.add(int(sock.ident))

    return frozenset(osds)


def find_monitor_socket(run_dir: str = DEFAULT_RUN_DIR, cluster: str = "ceph") -> Optional[str]:
    """Path of the local monitor's admin socket, if one exists."""
    try:
        names = sorted(os.listdir(run_dir))
    except OSError:
        return None
    for name in names:
        sock = parse_socket_name(name)
        if sock is not None and sock.role == "mon" and sock.cluster == cluster:
            return os.path.join(run_dir, name)
    return None


def osd_socket_path(osd_num: int, run_dir: str = DEFAULT_RUN_DIR, cluster: str = "ceph") -> str:
    return os.path.join(run_dir, f"{cluster}-osd.{osd_num}.asok")


def osd_data_dir(osd_num: int, osd_dir: str = DEFAULT_OSD_DIR, cluster: str = "ceph") -> str:
    return str(Path(osd_dir) / f"{cluster}-{osd_num}")
