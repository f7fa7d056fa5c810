"""Writing frames to a file or stdout, raw or as JSON lines."""

from __future__ import annotations

import sys
from typing import BinaryIO, Optional

from .frame import Frame
from .logs import get_logger


def frame_to_json(frame: Frame) -> str:
    """One JSON object describing ``frame``, with its data in Base64."""
    return (
        f'{{"size": {frame.used}, "width": {frame.width}, "height": {frame.height},'
        f' "format": {frame.format}, "stride": {frame.stride}, "online": {int(bool(frame.online))},'
        f' "grab_ts": {frame.grab_ts:.3f}, "encode_begin_ts": {frame.encode_begin_ts:.3f},'
        f' "encode_end_ts": {frame.encode_end_ts:.3f},'
        f' "data": "{frame.base64_data()}"}}'
    )


class OutputFile:
    """A destination for frames; ``"-"`` means standard output."""

    def __init__(self, path: str, json: bool = False) -> None:
        self.path = path
        self.json = json
        self._log = get_logger()
        self._owned = path != "-"
        self._fp: Optional[BinaryIO]
        if self._owned:
            self._log.info("Using output: %s", path)
            try:
                self._fp = open(path, "wb")
            except OSError as err:
                self._log.error("Can't open output file: %s", err.strerror)
                raise
        else:
            self._log.info("Using output: <stdout>")
            self._fp = getattr(sys.stdout, "buffer", sys.stdout)

    def write(self, frame: Frame) -> None:
        """Write one frame and flush."""
        if self._fp is None:
            raise ValueError("Output is closed")
        if self.json:
            self._fp.write((frame_to_json(frame) + "\n").encode("ascii"))
        else:
            self._fp.write(bytes(frame.data))
        self._fp.flush()

    def close(self) -> None:
        """Close the file; standard output is left open."""
        fp, self._fp = self._fp, None
        if fp is not None and self._owned:
            try:
                fp.close()
            except OSError as err:
                self._log.error("Can't close output file: %s", err.strerror)

    def __enter__(self) -> "OutputFile":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()