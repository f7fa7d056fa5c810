"""Packing H.264 Annex B frames into RTP datagrams (single NAL units and FU-A)."""

from __future__ import annotations

import base64
import threading
from typing import Iterator, Optional

from .frame import Frame, PixelFormat
from .rtp import DATAGRAM_SIZE, HEADER_SIZE, Rtp, RtpCallback
from .tools import RN, get_now_monotonic_u64

_START_CODE = b"\x00\x00\x01"
_PRE = len(_START_CODE)
_FU_OVERHEAD = HEADER_SIZE + 2
_NALU_SPS = 7
_NALU_PPS = 8
_NALU_FU_A = 28


def find_annexb(data: bytes, start: int = 0) -> int:
    """Index of the first ``00 00 01`` start code at or after ``start``, or -1."""
    return bytes(data).find(_START_CODE, start)


def iter_nalus(data: bytes) -> Iterator[bytes]:
    """Yield the NAL units of an Annex B byte stream, without start codes.

    A trailing zero byte before the next start code (from a four-byte start
    code) is not part of the unit and is dropped.
    """
    data = bytes(data)
    last = -1
    while True:
        offset = find_annexb(data, (last + _PRE) if last >= 0 else 0)
        if offset < 0:
            break
        if last >= 0:
            nalu = data[last + _PRE:offset]
            if nalu and nalu[-1] == 0:
                nalu = nalu[:-1]
            yield nalu
        last = offset
    if last >= 0:
        yield data[last + _PRE:]


class VideoPacketizer:
    """Wraps H.264 frames into RTP, remembering the latest SPS and PPS."""

    PAYLOAD = 96

    def __init__(self, callback: RtpCallback, zero_playout_delay: bool = False) -> None:
        self.rtp = Rtp(self.PAYLOAD, True, zero_playout_delay)
        self.callback = callback
        self._sps = b""
        self._pps = b""
        self._lock = threading.Lock()

    @property
    def sps(self) -> bytes:
        """The last sequence parameter set seen."""
        with self._lock:
            return self._sps

    @property
    def pps(self) -> bytes:
        """The last picture parameter set seen."""
        with self._lock:
            return self._pps

    def make_sdp(self) -> Optional[str]:
        """The SDP media section, or None until SPS and PPS have been seen."""
        with self._lock:
            if not self._sps or not self._pps:
                return None
            sps = base64.b64encode(self._sps).decode("ascii")
            pps = base64.b64encode(self._pps).decode("ascii")

        payload = self.rtp.payload
        playout = (
            f"a=extmap:1 http://www.webrtc.org/experiments/rtp-hdrext/playout-delay{RN}"
            if self.rtp.zero_playout_delay
            else ""
        )
        return (
            f"m=video 1 RTP/SAVPF {payload}{RN}"
            f"c=IN IP4 0.0.0.0{RN}"
            f"a=rtpmap:{payload} H264/90000{RN}"
            f"a=fmtp:{payload} profile-level-id=42E01F{RN}"
            f"a=fmtp:{payload} packetization-mode=1{RN}"
            f"a=fmtp:{payload} sprop-sps={sps}{RN}"
            f"a=fmtp:{payload} sprop-pps={pps}{RN}"
            f"a=rtcp-fb:{payload} nack{RN}"
            f"a=rtcp-fb:{payload} nack pli{RN}"
            f"a=rtcp-fb:{payload} goog-remb{RN}"
            f"a=ssrc:{self.rtp.ssrc} cname:ustreamer{RN}"
            f"{playout}"
            f"a=sendonly{RN}"
        )

    def wrap(self, frame: Frame, pts: Optional[int] = None) -> None:
        """Send every NAL unit of an H.264 frame; the last one carries the marker.

        ``pts`` is in 90 kHz units and defaults to the monotonic clock.
        """
        if frame.format != PixelFormat.H264:
            raise ValueError("Frame is not H264")
        if pts is None:
            pts = get_now_monotonic_u64() * 9 // 100
        pts &= 0xFFFFFFFF

        pending: Optional[bytes] = None
        for nalu in iter_nalus(frame.data):
            if pending is not None:
                self._process_nalu(pending, pts, False)
            pending = nalu
        if pending is not None:
            self._process_nalu(pending, pts, True)

    def _process_nalu(self, data: bytes, pts: int, marked: bool) -> None:
        if not data:
            return
        ref_idc = (data[0] >> 5) & 3
        nalu_type = data[0] & 0x1F

        if nalu_type == _NALU_SPS:
            with self._lock:
                self._sps = bytes(data)
        elif nalu_type == _NALU_PPS:
            with self._lock:
                self._pps = bytes(data)

        rtp = self.rtp
        dg = rtp.datagram
        size = len(data)

        if size + HEADER_SIZE <= DATAGRAM_SIZE:
            rtp.write_header(pts, marked)
            dg[HEADER_SIZE:HEADER_SIZE + size] = data
            rtp.used = size + HEADER_SIZE
            self.callback(rtp)
            return

        frag_max = DATAGRAM_SIZE - _FU_OVERHEAD
        body = memoryview(bytes(data))[1:]
        starts = range(0, len(body), frag_max)
        for start in starts:
            chunk = body[start:start + frag_max]
            first = start == 0
            last = start + frag_max >= len(body)

            rtp.write_header(pts, marked and last)
            dg[HEADER_SIZE] = _NALU_FU_A | (ref_idc << 5)
            fu = nalu_type
            if first:
                fu |= 0x80
            if last:
                fu |= 0x40
            dg[HEADER_SIZE + 1] = fu
            dg[_FU_OVERHEAD:_FU_OVERHEAD + len(chunk)] = chunk
            rtp.used = _FU_OVERHEAD + len(chunk)
            self.callback(rtp)