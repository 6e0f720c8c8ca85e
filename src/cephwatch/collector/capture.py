"""
PacketSource on top of scapy's L2 listen socket.

Hands back the network-layer bytes (IPv4/IPv6) of each captured packet,
so the decoder never has to care whether the link was Ethernet or the
Linux "any" pseudo-device's cooked header.
"""

from __future__ import annotations

import logging
import select
import sys
from typing import List, Optional

from scapy.config import conf
from scapy.error import Scapy_Exception
from scapy.interfaces import get_if_list
from scapy.layers.inet import IP
from scapy.layers.inet6 import IPv6

from cephwatch.collector.base import PacketSource
from cephwatch.errors import CaptureFilterError, CaptureUnavailable

log = logging.getLogger(__name__)


class ScapyPacketSource(PacketSource):

    def __init__(self, promisc: bool = True):
        self._promisc = promisc
        self._device: Optional[str] = None
        self._sock = None

    def devices(self) -> List[str]:
        try:
            names = list(get_if_list())
        except (OSError, Scapy_Exception) as e:
            log.error("Unable to list network devices. Error: %s", e)
            return []
        # "any" only exists on Linux, and get_if_list() doesn't report it
        if "any" not in names and sys.platform.startswith("linux"):
            names.append("any")
        return names

    def open(self, device: str):
        self._device = device
        self._sock = self._listen()

    def install_filter(self, expression: str):
        if self._device is None:
            raise CaptureUnavailable("install_filter() called before open()")
        self.close()
        try:
            self._sock = conf.L2listen(iface=self._iface(), promisc=self._promisc, filter=expression)
        except Scapy_Exception as e:
            raise CaptureFilterError(f"Invalid capture filter ({self._device}): {e}") from e
        except OSError as e:
            raise CaptureUnavailable(f"Unable to capture on {self._device}: {e}") from e

    def _iface(self) -> Optional[str]:
        # native Linux sockets listen on every interface when iface is None
        if self._device == "any" and not conf.use_pcap:
            return None
        return self._device

    def _listen(self):
        try:
            return conf.L2listen(iface=self._iface(), promisc=self._promisc)
        except (OSError, Scapy_Exception) as e:
            raise CaptureUnavailable(f"Unable to capture on {self._device}: {e}") from e

    def next_frame(self, timeout: float) -> Optional[bytes]:
        if self._sock is None:
            return None
        ready, _, _ = select.select([self._sock], [], [], timeout)
        if not ready:
            return None
        pkt = self._sock.recv()
        if pkt is None:
            return None
        net = pkt.getlayer(IP)
        if net is None:
            net = pkt.getlayer(IPv6)
        if net is None:
            return None
        return bytes(net)

    def close(self):
        if self._sock is not None:
            self._sock.close()
            self._sock = None
