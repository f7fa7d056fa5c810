"""Reading frames published in a shared-memory sink by another process."""

from __future__ import annotations

import fcntl
import os
import time
from typing import Any, Optional

from .frame import Frame, PixelFormat
from .memsink import MAGIC, MAX_DATA, VERSION, MemsinkError, SharedMemory, shm_open
from .tools import flock_timedwait, get_now_monotonic

_WAIT_TIMEOUT = 1.0
_LOCK_TIMEOUT = 1.0
_LOCK_POLLING = 0.001


def _unlock(fd: int) -> None:
    try:
        fcntl.flock(fd, fcntl.LOCK_UN)
    except OSError as err:
        raise MemsinkError(f"Can't unlock memsink: {err.strerror}") from err


def wait_frame(fd: int, shared: SharedMemory, last_id: int) -> bool:
    """Wait up to a second for a frame newer than ``last_id``.

    Returns True with the sink still locked when one is there, so that it
    can be taken with :func:`get_h264_frame`, and False on timeout.
    """
    deadline = get_now_monotonic() + _WAIT_TIMEOUT
    while True:
        try:
            locked = flock_timedwait(fd, _LOCK_TIMEOUT)
        except OSError as err:
            raise MemsinkError(f"Can't lock memsink: {err.strerror}") from err
        now = get_now_monotonic()
        if locked:
            header = shared.read_header()
            if header.magic == MAGIC and header.version == VERSION and header.id != last_id:
                return True
            _unlock(fd)
        time.sleep(_LOCK_POLLING)
        if now >= deadline:
            return False


def get_h264_frame(fd: int, shared: SharedMemory) -> tuple[Frame, int]:
    """Take the frame from a sink locked by :func:`wait_frame` and unlock it.

    Returns the frame and its id. Raises MemsinkError when the frame is not
    H.264; the sink is unlocked in every case.
    """
    frame = Frame()
    try:
        header = shared.read_frame(frame)
        shared.touch_client()
    finally:
        _unlock(fd)
    if frame.format != PixelFormat.H264:
        raise MemsinkError("Got non-H264 frame from memsink")
    return frame, header.id


class MemsinkReader:
    """A client of a shared-memory sink that hands out frames as dicts."""

    def __init__(
        self,
        obj: str,
        lock_timeout: float = 1.0,
        wait_timeout: float = 1.0,
        drop_same_frames: float = 0.0,
        max_data: int = MAX_DATA,
    ) -> None:
        checks = (
            ("lock_timeout", lock_timeout > 0, "> 0"),
            ("wait_timeout", wait_timeout > 0, "> 0"),
            ("drop_same_frames", drop_same_frames >= 0, ">= 0"),
        )
        for name, ok, cond in checks:
            if not ok:
                raise ValueError(f"{name} must be {cond}")

        self._obj = obj
        self._lock_timeout = float(lock_timeout)
        self._wait_timeout = float(wait_timeout)
        self._drop_same_frames = float(drop_same_frames)

        self._frame = Frame()
        self._frame_id = 0
        self._frame_ts = 0.0
        self._fd = -1
        self._mem: Optional[SharedMemory] = None

        self._fd = shm_open(obj)
        try:
            self._mem = SharedMemory(self._fd, max_data)
        except BaseException:
            self.close()
            raise

    @property
    def obj(self) -> str:
        """Name of the shared-memory object."""
        return self._obj

    @property
    def lock_timeout(self) -> float:
        """Seconds to wait for the sink's lock on each attempt."""
        return self._lock_timeout

    @property
    def wait_timeout(self) -> float:
        """Seconds to wait for a new frame."""
        return self._wait_timeout

    @property
    def drop_same_frames(self) -> float:
        """Seconds during which an identical frame is skipped; 0 disables it."""
        return self._drop_same_frames

    def close(self) -> None:
        """Unmap the sink and close its descriptor."""
        if self._mem is not None:
            self._mem.close()
            self._mem = None
        if self._fd >= 0:
            os.close(self._fd)
            self._fd = -1

    def is_opened(self) -> bool:
        """True until the reader is closed."""
        return self._mem is not None and self._fd > 0

    def __enter__(self) -> "MemsinkReader":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"<Memsink({self._obj})>"

    def _is_same_frame(self, mem: SharedMemory, now: float) -> bool:
        header = mem.read_header()
        if not self._frame.same_meta(header):
            return False
        if self._frame_ts + self._drop_same_frames <= now:
            return False
        candidate = Frame()
        mem.read_frame(candidate)
        return candidate.data == self._frame.data

    def _wait(self, mem: SharedMemory) -> bool:
        deadline = get_now_monotonic() + self._wait_timeout
        while True:
            locked = flock_timedwait(self._fd, self._lock_timeout)
            now = get_now_monotonic()
            if locked:
                header = mem.read_header()
                if header.magic == MAGIC and header.version == VERSION and header.id != self._frame_id:
                    if self._drop_same_frames > 0 and self._is_same_frame(mem, now):
                        self._frame_id = header.id
                    else:
                        return True
                fcntl.flock(self._fd, fcntl.LOCK_UN)
            time.sleep(_LOCK_POLLING)
            if now >= deadline:
                return False

    def wait_frame(self) -> Optional[dict[str, Any]]:
        """Return the next new frame as a dict, or None when none came in time."""
        mem = self._mem
        if mem is None or self._fd <= 0:
            raise RuntimeError("Closed")

        if not self._wait(mem):
            return None

        try:
            header = mem.read_frame(self._frame)
            self._frame_id = header.id
            self._frame_ts = mem.touch_client()
        finally:
            fcntl.flock(self._fd, fcntl.LOCK_UN)

        frame = self._frame
        return {
            "width": frame.width,
            "height": frame.height,
            "format": frame.format,
            "stride": frame.stride,
            "online": bool(frame.online),
            "key": bool(frame.key),
            "grab_ts": float(frame.grab_ts),
            "encode_begin_ts": float(frame.encode_begin_ts),
            "encode_end_ts": float(frame.encode_end_ts),
            "data": bytes(frame.data),
        }