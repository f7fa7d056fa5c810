"""Per-session relaying of RTP datagrams from background threads."""

from __future__ import annotations

import queue as _stdqueue
import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .logs import get_logger
from .queue import BoundedQueue
from .rtp import Rtp

VIDEO_QUEUE_SIZE = 1024
AUDIO_QUEUE_SIZE = 64
_POLL_TIMEOUT = 0.1


@dataclass(frozen=True)
class RelayPacket:
    """One datagram handed to the gateway for a session.

    ``min_delay`` and ``max_delay`` are the playout-delay extension values;
    None leaves the extension unset.
    """

    video: bool
    data: bytes
    min_delay: Optional[int] = None
    max_delay: Optional[int] = None


RelayCallback = Callable[[Any, RelayPacket], None]


class RelayClient:
    """Queues RTP datagrams for one session and relays them from worker threads.

    Video and audio each get their own queue and thread; audio is only set up
    when ``has_audio`` is true. While ``transmit`` is false nothing is queued
    or relayed.
    """

    def __init__(self, relay: RelayCallback, session: Any, has_audio: bool = False) -> None:
        self.relay = relay
        self.session = session
        self.transmit = True
        self._stop = threading.Event()
        self._log = get_logger()

        self._video_queue = BoundedQueue(VIDEO_QUEUE_SIZE)
        self._audio_queue: Optional[BoundedQueue] = (
            BoundedQueue(AUDIO_QUEUE_SIZE) if has_audio else None
        )

        self._threads = [
            threading.Thread(
                target=self._run, args=(self._video_queue,), name="us_c_video", daemon=True
            )
        ]
        if self._audio_queue is not None:
            self._threads.append(
                threading.Thread(
                    target=self._run, args=(self._audio_queue,), name="us_c_audio", daemon=True
                )
            )
        for thread in self._threads:
            thread.start()

    @property
    def has_audio(self) -> bool:
        """True when this client relays audio too."""
        return self._audio_queue is not None

    def send(self, rtp: Rtp) -> None:
        """Queue a copy of the datagram in ``rtp`` for relaying."""
        if self._stop.is_set() or not self.transmit:
            return
        if not rtp.video and self._audio_queue is None:
            return
        new = rtp.dup()
        target = self._video_queue if new.video else self._audio_queue
        assert target is not None
        try:
            target.put(new, 0)
        except _stdqueue.Full:
            self._log.error(
                "client: Session %r %s queue is full",
                self.session,
                "video" if new.video else "audio",
            )

    def close(self) -> None:
        """Stop the worker threads and drop whatever is still queued."""
        if self._stop.is_set():
            return
        self._stop.set()
        queues = [self._video_queue]
        if self._audio_queue is not None:
            queues.append(self._audio_queue)
        for q in queues:
            try:
                q.put(None, 0)
            except _stdqueue.Full:
                pass
        for thread in self._threads:
            thread.join()
        for q in queues:
            q.drain()

    def __enter__(self) -> "RelayClient":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def _run(self, q: BoundedQueue) -> None:
        while not self._stop.is_set():
            try:
                rtp = q.get(_POLL_TIMEOUT)
            except _stdqueue.Empty:
                continue
            if rtp is None:
                break
            if not self.transmit:
                continue
            delay = 0 if rtp.zero_playout_delay else None
            packet = RelayPacket(
                video=rtp.video,
                data=rtp.packet,
                min_delay=delay,
                max_delay=delay,
            )
            self.relay(self.session, packet)