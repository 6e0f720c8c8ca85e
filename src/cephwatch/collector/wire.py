"""
Decoder for captured cluster traffic.

scapy takes care of IP/TCP; what's left is the messenger (v1) framing.
A message on the wire is a one-byte tag (7 = MSG), a fixed 53-byte
little-endian header, then front/middle/data sections. We only look
inside the front section for OSD ops -- every other message type is
reported by kind and header fields only.

Frames that don't start a message (banners, acks, keepalives, segments
from the middle of a large write) decode to None. That is most of them.
"""

from __future__ import annotations

import logging
import struct
from typing import Any, Dict, List, Optional, Tuple

from scapy.layers.inet import IP, TCP
from scapy.layers.inet6 import IPv6

from cephwatch.collector.base import DecodedMessage, MessageKind
from cephwatch.measurement import WireHeader

log = logging.getLogger(__name__)

MSGR_TAG_MSG = 7

# seq, tid, type, priority, version, front_len, middle_len, data_len,
# data_off, src.type, src.num, compat_version, reserved, crc
MSG_HEADER = struct.Struct("<QQHHHIIIHBQHHI")

MSG_TYPES = {
    2: MessageKind.PING,
    42: MessageKind.OSD_OP,
    43: MessageKind.OSD_OPREPLY,
    70: MessageKind.OSD_PING,
    76: MessageKind.OSD_SUBOP,
    77: MessageKind.OSD_SUBOPREPLY,
}

ENTITY_TYPES = {1: "mon", 2: "mds", 4: "osd", 8: "client", 32: "auth"}

# Fixed-size pieces of an OSD op front section
_OP_PREFIX = struct.Struct("<III")        # client_inc, osdmap_epoch, flags
_TIMESPEC = struct.Struct("<II")          # mtime
_EVERSION = struct.Struct("<QI")          # reassert version
_ENCODING_HEAD = struct.Struct("<BBI")    # struct_v, struct_compat, struct_len
_PGID = struct.Struct("<BQIi")            # v, pool, seed, preferred
_U32 = struct.Struct("<I")
_U16 = struct.Struct("<H")
_OSD_OP = struct.Struct("<HIQQQII")       # op, flags, offset, length, trunc_size, trunc_seq, payload_len

OP_NAMES = {
    0x1201: "read",
    0x1202: "stat",
    0x1205: "sparse-read",
    0x2201: "write",
    0x2202: "writefull",
    0x2203: "truncate",
    0x2204: "zero",
    0x2205: "delete",
    0x2206: "append",
}


class _Reader:
    """Cursor over a bytes buffer. Short reads raise struct.error."""

    def __init__(self, buf: bytes):
        self._buf = buf
        self._pos = 0

    def unpack(self, fmt: struct.Struct) -> Tuple:
        values = fmt.unpack_from(self._buf, self._pos)
        self._pos += fmt.size
        return values

    def take(self, size: int) -> bytes:
        if self._pos + size > len(self._buf):
            raise struct.error(f"need {size} bytes at offset {self._pos}, have {len(self._buf) - self._pos}")
        chunk = self._buf[self._pos:self._pos + size]
        self._pos += size
        return chunk


def parse_osd_op(front: bytes, data_len: int = 0) -> Dict[str, Any]:
    """Pull flags, target object and the op list out of an OSD op front section."""
    r = _Reader(front)
    client_inc, epoch, flags = r.unpack(_OP_PREFIX)
    r.unpack(_TIMESPEC)
    r.unpack(_EVERSION)

    _, _, oloc_len = r.unpack(_ENCODING_HEAD)
    oloc = r.take(oloc_len)
    pool = struct.unpack_from("<q", oloc)[0] if len(oloc) >= 8 else -1

    _, pg_pool, pg_seed, _ = r.unpack(_PGID)
    (oid_len,) = r.unpack(_U32)
    oid = r.take(oid_len).decode("utf-8", errors="replace")

    (num_ops,) = r.unpack(_U16)
    ops: List[Dict[str, Any]] = []
    for _ in range(num_ops):
        code, op_flags, offset, length, _, _, payload_len = r.unpack(_OSD_OP)
        ops.append({
            "op": OP_NAMES.get(code, hex(code)),
            "flags": op_flags,
            "offset": offset,
            "length": length,
            "payload_len": payload_len,
        })

    return {
        "client_inc": client_inc,
        "osdmap_epoch": epoch,
        "flags": flags,
        "pool": pool,
        "pgid": f"{pg_pool}.{pg_seed:x}",
        "object": oid,
        "count": num_ops,
        "size": data_len,
        "ops": ops,
    }


def _split_packet(data: bytes) -> Optional[Tuple[WireHeader, bytes]]:
    if not data:
        return None
    version = data[0] >> 4
    if version == 4:
        pkt = IP(data)
    elif version == 6:
        pkt = IPv6(data)
    else:
        return None

    tcp = pkt.getlayer(TCP)
    if tcp is None:
        return None
    header = WireHeader(
        src_addr=str(pkt.src),
        src_port=int(tcp.sport),
        dst_addr=str(pkt.dst),
        dst_port=int(tcp.dport),
    )
    return header, bytes(tcp.payload)


class WireDecoder:
    """Turns a captured IP packet into a DecodedMessage, or None."""

    def decode(self, data: bytes) -> Optional[DecodedMessage]:
        try:
            split = _split_packet(data)
            if split is None:
                return None
            header, payload = split
            return self.decode_payload(header, payload)
        except (struct.error, ValueError, IndexError) as e:
            log.debug("Discarding undecodable frame: %s", e)
            return None

    def decode_payload(self, header: WireHeader, payload: bytes) -> Optional[DecodedMessage]:
        if len(payload) < 1 + MSG_HEADER.size or payload[0] != MSGR_TAG_MSG:
            return None

        (seq, tid, msg_type, priority, version, front_len, middle_len, data_len,
         _, src_type, src_num, _, _, _) = MSG_HEADER.unpack_from(payload, 1)

        kind = MSG_TYPES.get(msg_type, MessageKind.OTHER)
        fields: Dict[str, Any] = {
            "seq": seq,
            "tid": tid,
            "type": msg_type,
            "priority": priority,
            "version": version,
            "front_len": front_len,
            "middle_len": middle_len,
            "data_len": data_len,
            "src_entity": f"{ENTITY_TYPES.get(src_type, src_type)}.{src_num}",
        }

        if kind is MessageKind.OSD_OP:
            start = 1 + MSG_HEADER.size
            front = payload[start:start + front_len]
            fields.update(parse_osd_op(front, data_len))

        return DecodedMessage(kind=kind, header=header, payload=fields)
