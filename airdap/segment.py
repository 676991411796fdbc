"""KCP segment layout, wire encoding and protocol constants."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import NamedTuple

RTO_NDL = 30
RTO_MIN = 100
RTO_DEF = 200
RTO_MAX = 60000
ASK_SEND = 1
ASK_TELL = 2
WND_SND = 32
WND_RCV = 128
MTU_DEF = 1400
ACK_FAST = 3
INTERVAL = 100
OVERHEAD = 24
DEADLINK = 20
THRESH_INIT = 2
THRESH_MIN = 2
PROBE_INIT = 7000
PROBE_LIMIT = 120000
FASTACK_LIMIT = 5

_U32 = 0xFFFFFFFF
_HEADER = struct.Struct("<IBBHIIII")


class Command(IntEnum):
    """Segment command codes."""

    PUSH = 81
    ACK = 82
    WASK = 83
    WINS = 84


class SegmentHeader(NamedTuple):
    """The 24-byte header that precedes every segment on the wire."""

    conv: int
    cmd: int
    frg: int
    wnd: int
    ts: int
    sn: int
    una: int
    length: int


def encode_header(conv, cmd, frg, wnd, ts, sn, una, length) -> bytes:
    """Encode a segment header, little endian, truncating each field to its width."""
    return _HEADER.pack(
        conv & _U32,
        cmd & 0xFF,
        frg & 0xFF,
        wnd & 0xFFFF,
        ts & _U32,
        sn & _U32,
        una & _U32,
        length & _U32,
    )


def decode_header(data, offset=0) -> SegmentHeader:
    """Decode the segment header found at ``offset`` in ``data``."""
    if offset < 0 or len(data) - offset < OVERHEAD:
        raise ValueError(
            f"need {OVERHEAD} bytes for a segment header, have {max(len(data) - offset, 0)}"
        )
    return SegmentHeader(*_HEADER.unpack_from(data, offset))


def get_conv(data) -> int:
    """Read the conversation id from the start of a packet."""
    if len(data) < 4:
        raise ValueError("packet too short to hold a conversation id")
    return struct.unpack_from("<I", data, 0)[0]


def time_diff(later, earlier) -> int:
    """Signed 32-bit difference between two wrapping timestamps or sequence numbers."""
    diff = (later - earlier) & _U32
    return diff - 0x100000000 if diff & 0x80000000 else diff


@dataclass
class Segment:
    """One segment held in a send or receive queue."""

    conv: int = 0
    cmd: int = 0
    frg: int = 0
    wnd: int = 0
    ts: int = 0
    sn: int = 0
    una: int = 0
    data: bytes = b""
    resendts: int = 0
    rto: int = 0
    fastack: int = 0
    xmit: int = 0

    def header(self) -> SegmentHeader:
        """The header describing this segment."""
        return SegmentHeader(
            self.conv, self.cmd, self.frg, self.wnd,
            self.ts, self.sn, self.una, len(self.data),
        )

    def encode(self) -> bytes:
        """Header followed by payload, as sent on the wire."""
        return encode_header(*self.header()) + bytes(self.data)