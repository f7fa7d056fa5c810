"""RTP packets with a fixed-size datagram buffer and a running sequence number."""

from __future__ import annotations

import struct
from typing import Callable, Optional

from .tools import get_now_monotonic_u64, triple_u32

DATAGRAM_SIZE = 1200
HEADER_SIZE = 12

_HEADER = struct.Struct(">III")
_U32 = 0xFFFFFFFF


class Rtp:
    """An RTP stream's state and the datagram most recently built for it."""

    def __init__(
        self,
        payload: int,
        video: bool,
        zero_playout_delay: bool = False,
        ssrc: Optional[int] = None,
    ) -> None:
        self.payload = payload
        self.video = video
        self.zero_playout_delay = zero_playout_delay
        if ssrc is None:
            ssrc = triple_u32(get_now_monotonic_u64())
        self.ssrc = ssrc & _U32
        self.seq = 0
        self.datagram = bytearray(DATAGRAM_SIZE)
        self.used = 0

    @property
    def packet(self) -> bytes:
        """The filled part of the datagram."""
        return bytes(self.datagram[:self.used])

    def write_header(self, pts: int, marked: bool) -> None:
        """Write the 12-byte RTP header and advance the sequence number."""
        word0 = 0x80000000
        if marked:
            word0 |= 1 << 23
        word0 |= (self.payload & 0x7F) << 16
        word0 |= self.seq
        self.seq = (self.seq + 1) & 0xFFFF
        _HEADER.pack_into(self.datagram, 0, word0, pts & _U32, self.ssrc)

    def dup(self) -> "Rtp":
        """Return an independent copy of this stream state and datagram."""
        new = Rtp(self.payload, self.video, self.zero_playout_delay, self.ssrc)
        new.seq = self.seq
        new.datagram = bytearray(self.datagram)
        new.used = self.used
        return new


RtpCallback = Callable[[Rtp], None]