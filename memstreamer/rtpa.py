"""Packing encoded OPUS audio into RTP datagrams."""

from __future__ import annotations

from .rtp import DATAGRAM_SIZE, HEADER_SIZE, Rtp, RtpCallback
from .tools import RN


class AudioPacketizer:
    """Wraps OPUS packets into RTP and passes each datagram to a callback."""

    PAYLOAD = 111

    def __init__(self, callback: RtpCallback) -> None:
        self.rtp = Rtp(self.PAYLOAD, False, False)
        self.callback = callback

    def make_sdp(self) -> str:
        """The SDP media section describing this audio stream."""
        payload = self.rtp.payload
        return (
            f"m=audio 1 RTP/SAVPF {payload}{RN}"
            f"c=IN IP4 0.0.0.0{RN}"
            f"a=rtpmap:{payload} OPUS/48000/2{RN}"
            f"a=rtcp-fb:{payload} nack{RN}"
            f"a=rtcp-fb:{payload} nack pli{RN}"
            f"a=rtcp-fb:{payload} goog-remb{RN}"
            f"a=ssrc:{self.rtp.ssrc} cname:ustreamer{RN}"
            f"a=sendonly{RN}"
        )

    def wrap(self, data: bytes, pts: int) -> bool:
        """Send ``data`` as one datagram; returns False when it does not fit."""
        size = len(data)
        if size + HEADER_SIZE > DATAGRAM_SIZE:
            return False
        rtp = self.rtp
        rtp.write_header(pts, False)
        rtp.datagram[HEADER_SIZE:HEADER_SIZE + size] = data
        rtp.used = size + HEADER_SIZE
        self.callback(rtp)
        return True