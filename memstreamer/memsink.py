"""Frames exchanged through a named shared-memory segment guarded by flock.

The segment holds a fixed header followed by the frame's bytes. Timestamps
are stored as 80-bit extended floats in 16-byte slots, as on x86-64.
"""

from __future__ import annotations

import errno
import fcntl
import math
import mmap
import os
import struct
from dataclasses import dataclass
from typing import Optional

from .frame import Frame
from .logs import LogLevel, get_logger
from .tools import flock_timedwait, get_now_id, get_now_monotonic

MAGIC = 0xCAFEBABECAFEBABE
VERSION = 2
MAX_DATA = 33554432
SHM_DIR = "/dev/shm"

_HEADER = struct.Struct("<QI4xQQIIII??14x")
_TS_SIZE = 16
_TS_OFFSET = _HEADER.size
_LAST_CLIENT_TS_OFFSET = _TS_OFFSET + 3 * _TS_SIZE
DATA_OFFSET = _LAST_CLIENT_TS_OFFSET + _TS_SIZE

_EXT_BIAS = 16383
_EXT_INT_BIT = 1 << 63

_BUSY = (errno.EWOULDBLOCK, errno.EAGAIN)


class MemsinkError(Exception):
    """A shared-memory sink could not be opened or used."""


def pack_extended(value: float) -> bytes:
    """Encode a float as an 80-bit extended float padded to 16 bytes."""
    value = float(value)
    sign = 0x8000 if math.copysign(1.0, value) < 0 else 0
    if math.isnan(value):
        exponent, mantissa = 0x7FFF, 0xC000000000000000
    elif math.isinf(value):
        exponent, mantissa = 0x7FFF, _EXT_INT_BIT
    elif value == 0:
        exponent, mantissa = 0, 0
    else:
        frac, exp = math.frexp(abs(value))
        exponent = exp - 1 + _EXT_BIAS
        mantissa = int(frac * (1 << 64))
    return mantissa.to_bytes(8, "little") + (sign | exponent).to_bytes(2, "little") + bytes(6)


def unpack_extended(data: bytes) -> float:
    """Decode an 80-bit extended float from the first 10 bytes of ``data``."""
    if len(data) < 10:
        raise ValueError(f"Extended float needs 10 bytes, got {len(data)}")
    mantissa = int.from_bytes(data[:8], "little")
    sign_exp = int.from_bytes(data[8:10], "little")
    sign = -1.0 if sign_exp & 0x8000 else 1.0
    exponent = sign_exp & 0x7FFF
    if exponent == 0x7FFF:
        if mantissa & (_EXT_INT_BIT - 1):
            return math.nan
        return sign * math.inf
    if mantissa == 0:
        return math.copysign(0.0, sign)
    if exponent == 0:
        exponent = 1
    try:
        return sign * math.ldexp(float(mantissa), exponent - _EXT_BIAS - 63)
    except OverflowError:
        return sign * math.inf


def _shm_path(name: str) -> str:
    return os.path.join(SHM_DIR, name.lstrip("/"))


def shm_open(name: str, create: bool = False, mode: int = 0) -> int:
    """Open a named shared-memory object read-write and return its descriptor."""
    flags = os.O_RDWR | (os.O_CREAT if create else 0)
    return os.open(_shm_path(name), flags, mode)


@dataclass
class SharedHeader:
    """The metadata part of the shared segment."""

    magic: int
    version: int
    id: int
    used: int
    width: int
    height: int
    format: int
    stride: int
    online: bool
    key: bool
    grab_ts: float
    encode_begin_ts: float
    encode_end_ts: float
    last_client_ts: float


class SharedMemory:
    """A mapping of the shared segment behind an open descriptor."""

    def __init__(self, fd: int, max_data: int = MAX_DATA) -> None:
        self.max_data = max_data
        self.size = DATA_OFFSET + max_data
        try:
            self._mm: Optional[mmap.mmap] = mmap.mmap(
                fd, self.size, mmap.MAP_SHARED, mmap.PROT_READ | mmap.PROT_WRITE
            )
        except ValueError as err:
            raise MemsinkError(f"Shared memory is smaller than {self.size} bytes") from err

    def _require(self) -> mmap.mmap:
        if self._mm is None:
            raise MemsinkError("Closed")
        return self._mm

    def read_header(self) -> SharedHeader:
        """Read the segment's metadata."""
        mm = self._require()
        fields = _HEADER.unpack(mm[:_HEADER.size])
        stamps = [
            unpack_extended(mm[offset:offset + _TS_SIZE])
            for offset in range(_TS_OFFSET, DATA_OFFSET, _TS_SIZE)
        ]
        return SharedHeader(*fields, *stamps)

    def write_frame(self, frame: Frame, frame_id: int) -> None:
        """Publish ``frame`` under ``frame_id``, keeping the client timestamp."""
        if frame.used > self.max_data:
            raise MemsinkError(f"Frame is too big ({frame.used} > {self.max_data})")
        mm = self._require()
        mm[DATA_OFFSET:DATA_OFFSET + frame.used] = bytes(frame.data)
        mm[_TS_OFFSET:_LAST_CLIENT_TS_OFFSET] = b"".join(
            pack_extended(ts)
            for ts in (frame.grab_ts, frame.encode_begin_ts, frame.encode_end_ts)
        )
        mm[:_HEADER.size] = _HEADER.pack(
            MAGIC,
            VERSION,
            frame_id,
            frame.used,
            frame.width,
            frame.height,
            frame.format,
            frame.stride,
            bool(frame.online),
            bool(frame.key),
        )

    def read_frame(self, frame: Frame) -> SharedHeader:
        """Copy the shared frame's bytes and metadata into ``frame``."""
        mm = self._require()
        header = self.read_header()
        if header.used > self.max_data:
            raise MemsinkError(f"Invalid frame size in shared memory: {header.used}")
        frame.set_data(mm[DATA_OFFSET:DATA_OFFSET + header.used])
        frame.copy_meta_from(header)
        return header

    def touch_client(self) -> float:
        """Record that a client has just read; returns the timestamp stored."""
        mm = self._require()
        now = get_now_monotonic()
        mm[_LAST_CLIENT_TS_OFFSET:DATA_OFFSET] = pack_extended(now)
        return now

    def close(self) -> None:
        """Unmap the segment."""
        if self._mm is not None:
            self._mm.close()
            self._mm = None


class Memsink:
    """One side of a shared-memory frame sink: the server writes, clients read."""

    def __init__(
        self,
        name: str,
        obj: str,
        server: bool = False,
        mode: int = 0o660,
        rm: bool = False,
        client_ttl: float = 10,
        timeout: float = 1,
        max_data: int = MAX_DATA,
    ) -> None:
        self.name = name
        self.obj = obj
        self.server = server
        self.rm = rm
        self.client_ttl = client_ttl
        self.timeout = timeout
        self.fd = -1
        self.mem: Optional[SharedMemory] = None
        self.last_id = 0
        self.has_clients = False
        self._log = get_logger()

        self._log.info("Using %s-sink: %s", name, obj)

        old_mask = os.umask(0)
        try:
            self.fd = shm_open(obj, create=server, mode=mode)
        except OSError as err:
            raise MemsinkError(f"{name}-sink: Can't open shared memory: {err.strerror}") from err
        finally:
            os.umask(old_mask)

        try:
            if server:
                try:
                    os.ftruncate(self.fd, DATA_OFFSET + max_data)
                except OSError as err:
                    raise MemsinkError(
                        f"{name}-sink: Can't truncate shared memory: {err.strerror}"
                    ) from err
            try:
                self.mem = SharedMemory(self.fd, max_data)
            except OSError as err:
                raise MemsinkError(f"{name}-sink: Can't mmap shared memory: {err.strerror}") from err
            except MemsinkError as err:
                raise MemsinkError(f"{name}-sink: Can't mmap shared memory: {err}") from err
        except MemsinkError:
            self.close()
            raise

    def close(self) -> None:
        """Unmap and close the segment, removing it when asked to."""
        if self.mem is not None:
            self.mem.close()
            self.mem = None
        if self.fd >= 0:
            try:
                os.close(self.fd)
            except OSError as err:
                self._log.error("%s-sink: Can't close shared memory fd: %s", self.name, err.strerror)
            self.fd = -1
            if self.rm:
                try:
                    os.unlink(_shm_path(self.obj))
                except FileNotFoundError:
                    pass
                except OSError as err:
                    self._log.error("%s-sink: Can't remove shared memory: %s", self.name, err.strerror)

    def __enter__(self) -> "Memsink":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def _shared(self) -> SharedMemory:
        if self.mem is None or self.fd < 0:
            raise MemsinkError(f"{self.name}-sink: Closed")
        return self.mem

    def _require_server(self) -> SharedMemory:
        if not self.server:
            raise MemsinkError(f"{self.name}-sink: Server only operation")
        return self._shared()

    def _require_client(self) -> SharedMemory:
        if self.server:
            raise MemsinkError(f"{self.name}-sink: Client only operation")
        return self._shared()

    def _unlock(self) -> None:
        try:
            fcntl.flock(self.fd, fcntl.LOCK_UN)
        except OSError as err:
            raise MemsinkError(f"{self.name}-sink: Can't unlock memory: {err.strerror}") from err

    def _client_alive(self, header: SharedHeader) -> bool:
        return header.last_client_ts + self.client_ttl > get_now_monotonic()

    def server_check(self, frame: Frame) -> bool:
        """Tell whether ``frame`` should be written to the sink.

        It should when a client holds the lock, when the segment is not yet
        initialized, when a client has read recently, or when the frame's
        size or metadata differ from the published one.
        """
        mem = self._require_server()
        try:
            fcntl.flock(self.fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as err:
            if err.errno in _BUSY:
                self.has_clients = True
                return True
            self._log.error("%s-sink: Can't lock memory: %s", self.name, err.strerror)
            return False

        header = mem.read_header()
        valid = header.magic == MAGIC and header.version == VERSION
        if valid:
            self.has_clients = self._client_alive(header)
        try:
            self._unlock()
        except MemsinkError as err:
            self._log.error("%s", err)
            return False
        if not valid:
            return True
        return self.has_clients or not frame.same_meta(header)

    def server_put(self, frame: Frame) -> bool:
        """Publish ``frame``; returns False when it was skipped."""
        mem = self._require_server()
        started = get_now_monotonic()

        if frame.used > mem.max_data:
            self._log.error(
                "%s-sink: Can't put frame: is too big (%d > %d)", self.name, frame.used, mem.max_data
            )
            return False

        try:
            locked = flock_timedwait(self.fd, 1)
        except OSError as err:
            raise MemsinkError(f"{self.name}-sink: Can't lock memory: {err.strerror}") from err
        if not locked:
            self._log.log(
                LogLevel.VERBOSE.logging_level,
                "%s-sink: ===== Shared memory is busy now; frame skipped",
                self.name,
            )
            return False

        self._log.log(LogLevel.VERBOSE.logging_level, "%s-sink: >>>>> Exposing new frame ...", self.name)
        try:
            self.last_id = get_now_id()
            mem.write_frame(frame, self.last_id)
            self.has_clients = self._client_alive(mem.read_header())
        finally:
            self._unlock()
        self._log.log(
            LogLevel.VERBOSE.logging_level,
            "%s-sink: Exposed new frame; full exposition time = %.3f",
            self.name,
            get_now_monotonic() - started,
        )
        return True

    def client_get(self, frame: Frame) -> bool:
        """Read a new frame into ``frame``; returns False when there is none."""
        mem = self._require_client()
        try:
            locked = flock_timedwait(self.fd, self.timeout)
        except OSError as err:
            raise MemsinkError(f"{self.name}-sink: Can't lock memory: {err.strerror}") from err
        if not locked:
            return False

        updated = False
        try:
            header = mem.read_header()
            if header.magic == MAGIC:
                if header.version != VERSION:
                    raise MemsinkError(
                        f"{self.name}-sink: Protocol version mismatch: "
                        f"sink={header.version}, required={VERSION}"
                    )
                if header.id != self.last_id:
                    self.last_id = header.id
                    mem.read_frame(frame)
                    updated = True
                mem.touch_client()
        finally:
            self._unlock()
        return updated