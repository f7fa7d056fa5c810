"""Clock, hashing, locking and naming helpers shared by the streamer modules."""

from __future__ import annotations

import errno
import fcntl
import math
import signal
import time

VERSION_MAJOR = 5
VERSION_MINOR = 23
VERSION = f"{VERSION_MAJOR}.{VERSION_MINOR}"
VERSION_U = VERSION_MAJOR * 1000 + VERSION_MINOR

RN = "\r\n"

_U32 = 0xFFFFFFFF
_U64 = 0xFFFFFFFFFFFFFFFF

_MONOTONIC_CLOCK = getattr(time, "CLOCK_MONOTONIC_RAW", time.CLOCK_MONOTONIC)


def triple_u32(x: int) -> int:
    """Mix the low 32 bits of ``x`` into a well-distributed 32-bit value."""
    x &= _U32
    x ^= x >> 17
    x = (x * 0xED5AD4BB) & _U32
    x ^= x >> 11
    x = (x * 0xAC4C1B51) & _U32
    x ^= x >> 15
    x = (x * 0x31848BAB) & _U32
    x ^= x >> 14
    return x


def floor_ms(now: float) -> int:
    """Return the whole-second floor of a timestamp in seconds."""
    return math.floor(now)


def get_now_monotonic() -> float:
    """Monotonic time in seconds, rounded to milliseconds."""
    ns = time.clock_gettime_ns(_MONOTONIC_CLOCK)
    sec, nsec = divmod(ns, 1_000_000_000)
    msec = round(nsec / 1.0e6)
    if msec > 999:
        sec += 1
        msec = 0
    return sec + msec / 1000


def get_now_monotonic_u64() -> int:
    """Monotonic time in whole microseconds."""
    return (time.clock_gettime_ns(_MONOTONIC_CLOCK) // 1000) & _U64


def get_now_id() -> int:
    """A 64-bit identifier derived from the current monotonic time."""
    now = get_now_monotonic_u64()
    return (triple_u32(now) | (triple_u32(now + 12345) << 32)) & _U64


def flock_timedwait(fd: int, timeout: float) -> bool:
    """Take an exclusive lock on ``fd``, polling until ``timeout`` seconds pass.

    Returns True when the lock was taken and False when it stayed busy.
    Any other locking failure is raised as OSError.
    """
    deadline = get_now_monotonic() + timeout
    while True:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            return True
        except OSError as err:
            if err.errno not in (errno.EWOULDBLOCK, errno.EAGAIN):
                raise
        if get_now_monotonic() > deadline:
            return False
        time.sleep(0.001)


def signum_to_string(signum: int) -> str:
    """Return a signal's abbreviated name such as ``SIGTERM``."""
    try:
        return signal.Signals(signum).name
    except ValueError:
        return f"SIG[{signum}]"