"""Video frames: pixel data plus capture and encoding metadata."""

from __future__ import annotations

import base64
import enum
from dataclasses import dataclass, field, fields


def fourcc(code: str) -> int:
    """Pack a four-character code into its integer pixel-format value."""
    if len(code) != 4:
        raise ValueError(f"FourCC must be 4 characters long: {code!r}")
    raw = code.encode("ascii")
    return raw[0] | (raw[1] << 8) | (raw[2] << 16) | (raw[3] << 24)


class PixelFormat(enum.IntEnum):
    """Pixel formats known to the streamer, as FourCC values."""

    YUYV = fourcc("YUYV")
    UYVY = fourcc("UYVY")
    RGB565 = fourcc("RGBP")
    RGB24 = fourcc("RGB3")
    MJPEG = fourcc("MJPG")
    JPEG = fourcc("JPEG")
    H264 = fourcc("H264")


_BYTES_PER_PIXEL = {
    PixelFormat.YUYV: 2,
    PixelFormat.UYVY: 2,
    PixelFormat.RGB565: 2,
    PixelFormat.RGB24: 3,
    PixelFormat.MJPEG: 0,
    PixelFormat.JPEG: 0,
}


def fourcc_to_string(fmt: int) -> str:
    """Render a pixel format as its FourCC, with ``-BE`` for big-endian codes."""
    chars = "".join(chr((fmt >> shift) & 0x7F) for shift in (0, 8, 16, 24))
    if fmt & (1 << 31):
        chars += "-BE"
    return chars.split("\0", 1)[0]


def is_jpeg(fmt: int) -> bool:
    """True for JPEG and MJPEG formats."""
    return fmt in (PixelFormat.JPEG, PixelFormat.MJPEG)


_META_FIELDS = (
    "width",
    "height",
    "format",
    "stride",
    "online",
    "key",
    "grab_ts",
    "encode_begin_ts",
    "encode_end_ts",
)


@dataclass
class Frame:
    """A frame's bytes and the metadata describing them."""

    data: bytearray = field(default_factory=bytearray)
    width: int = 0
    height: int = 0
    format: int = 0
    stride: int = 0
    online: bool = False
    key: bool = False
    grab_ts: float = 0.0
    encode_begin_ts: float = 0.0
    encode_end_ts: float = 0.0
    dma_fd: int = -1

    def __post_init__(self) -> None:
        self.data = bytearray(self.data)

    @property
    def used(self) -> int:
        """Number of data bytes held."""
        return len(self.data)

    def set_data(self, data: bytes) -> None:
        """Replace the frame's bytes."""
        self.data = bytearray(data)

    def append_data(self, data: bytes) -> None:
        """Add bytes to the end of the frame."""
        self.data.extend(data)

    def copy_meta_from(self, other: object) -> None:
        """Take size, format, flags and timestamps from ``other``."""
        for name in _META_FIELDS:
            setattr(self, name, getattr(other, name))

    def copy(self) -> "Frame":
        """Return an independent frame with the same data and metadata."""
        values = {f.name: getattr(self, f.name) for f in fields(self)}
        values["data"] = bytearray(self.data)
        return Frame(**values)

    def same_meta(self, other: object) -> bool:
        """Compare size and metadata, ignoring timestamps."""
        return (
            self.used == getattr(other, "used")
            and self.width == getattr(other, "width")
            and self.height == getattr(other, "height")
            and self.format == getattr(other, "format")
            and self.stride == getattr(other, "stride")
            and bool(self.online) == bool(getattr(other, "online"))
            and bool(self.key) == bool(getattr(other, "key"))
        )

    def get_padding(self) -> int:
        """Bytes at the end of each line beyond the pixel data."""
        try:
            bytes_per_pixel = _BYTES_PER_PIXEL[self.format]
        except KeyError:
            raise ValueError(f"Unknown format: {fourcc_to_string(self.format)}") from None
        if bytes_per_pixel > 0 and self.stride > self.width:
            return self.stride - self.width * bytes_per_pixel
        return 0

    def base64_data(self) -> str:
        """The frame's bytes as standard padded Base64 text."""
        return base64.b64encode(bytes(self.data)).decode("ascii")