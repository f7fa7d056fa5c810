import os

import pytest

from memstreamer import memsink
from memstreamer.frame import Frame, PixelFormat
from memstreamer.memsink import Memsink, MemsinkError, SharedMemory
from memstreamer.reader import MemsinkReader, get_h264_frame, wait_frame

MAX = 4096
OBJ = "reader-test"


@pytest.fixture
def shm_dir(tmp_path, monkeypatch):
    monkeypatch.setattr(memsink, "SHM_DIR", str(tmp_path))
    return tmp_path


@pytest.fixture
def server(shm_dir):
    sink = Memsink("test", OBJ, server=True, rm=True, max_data=MAX)
    yield sink
    sink.close()


def make_frame(data=b"\x00\x00\x01\x65abcdef", fmt=PixelFormat.H264):
    return Frame(
        data=data,
        width=640,
        height=480,
        format=fmt,
        stride=0,
        online=True,
        key=True,
        grab_ts=12.5,
        encode_begin_ts=12.75,
        encode_end_ts=13.0,
    )


@pytest.fixture
def shared(server):
    fd = memsink.shm_open(OBJ)
    mem = SharedMemory(fd, MAX)
    yield fd, mem
    mem.close()
    os.close(fd)


def test_reader_returns_published_frame(server):
    frame = make_frame()
    assert server.server_put(frame)
    with MemsinkReader(OBJ, wait_timeout=0.2, max_data=MAX) as reader:
        result = reader.wait_frame()
    assert result["data"] == bytes(frame.data)
    assert result["width"] == 640
    assert result["height"] == 480
    assert result["format"] == PixelFormat.H264
    assert result["online"] is True
    assert result["key"] is True
    assert result["grab_ts"] == frame.grab_ts
    assert result["encode_begin_ts"] == frame.encode_begin_ts
    assert result["encode_end_ts"] == frame.encode_end_ts


def test_reader_returns_none_without_new_frame(server):
    assert server.server_put(make_frame())
    with MemsinkReader(OBJ, wait_timeout=0.05, max_data=MAX) as reader:
        assert reader.wait_frame() is not None
        assert reader.wait_frame() is None


def test_reader_returns_none_on_empty_sink(server):
    with MemsinkReader(OBJ, wait_timeout=0.05, max_data=MAX) as reader:
        assert reader.wait_frame() is None


def test_reader_releases_lock_and_marks_client(server):
    assert server.server_put(make_frame())
    with MemsinkReader(OBJ, wait_timeout=0.2, max_data=MAX) as reader:
        assert reader.wait_frame() is not None
        assert server.server_put(make_frame(b"\x00\x00\x01\x41zz"))
    assert server.has_clients is True


def test_reader_drops_same_frames(server):
    frame = make_frame()
    with MemsinkReader(OBJ, wait_timeout=0.1, drop_same_frames=10, max_data=MAX) as reader:
        assert server.server_put(frame)
        assert reader.wait_frame()["data"] == bytes(frame.data)
        assert server.server_put(frame.copy())
        assert reader.wait_frame() is None
        other = make_frame(b"\x00\x00\x01\x41other")
        assert server.server_put(other)
        assert reader.wait_frame()["data"] == bytes(other.data)


def test_reader_without_drop_returns_same_frame_again(server):
    frame = make_frame()
    with MemsinkReader(OBJ, wait_timeout=0.1, max_data=MAX) as reader:
        assert server.server_put(frame)
        first = reader.wait_frame()
        assert server.server_put(frame.copy())
        second = reader.wait_frame()
    assert first["data"] == second["data"] == bytes(frame.data)


def test_reader_close_and_closed_errors(server):
    reader = MemsinkReader(OBJ, max_data=MAX)
    assert reader.is_opened() is True
    reader.close()
    assert reader.is_opened() is False
    with pytest.raises(RuntimeError, match="Closed"):
        reader.wait_frame()


def test_reader_properties_and_repr(server):
    with MemsinkReader(OBJ, lock_timeout=0.5, wait_timeout=2, drop_same_frames=1, max_data=MAX) as reader:
        assert reader.obj == OBJ
        assert reader.lock_timeout == 0.5
        assert reader.wait_timeout == 2.0
        assert reader.drop_same_frames == 1.0
        assert repr(reader) == f"<Memsink({OBJ})>"


@pytest.mark.parametrize(
    "kwargs, name",
    [
        ({"lock_timeout": 0}, "lock_timeout"),
        ({"wait_timeout": -1}, "wait_timeout"),
        ({"drop_same_frames": -0.5}, "drop_same_frames"),
    ],
)
def test_reader_rejects_bad_settings(server, kwargs, name):
    with pytest.raises(ValueError, match=name):
        MemsinkReader(OBJ, max_data=MAX, **kwargs)


def test_reader_missing_object(shm_dir):
    with pytest.raises(FileNotFoundError):
        MemsinkReader("no-such-sink", max_data=MAX)


def test_wait_and_get_h264_frame(server, shared):
    fd, mem = shared
    frame = make_frame()
    assert server.server_put(frame)
    assert wait_frame(fd, mem, 0) is True
    got, frame_id = get_h264_frame(fd, mem)
    assert frame_id == server.last_id
    assert got.data == frame.data
    assert got.format == PixelFormat.H264
    assert server.server_put(make_frame(b"\x00\x00\x01\x41x"))


def test_get_h264_frame_rejects_other_formats(server, shared):
    fd, mem = shared
    assert server.server_put(make_frame(b"\xff\xd8\xff", PixelFormat.JPEG))
    assert wait_frame(fd, mem, 0) is True
    with pytest.raises(MemsinkError, match="non-H264"):
        get_h264_frame(fd, mem)
    assert server.server_put(make_frame())


def test_wait_frame_times_out_on_known_id(server, shared):
    fd, mem = shared
    assert server.server_put(make_frame())
    assert wait_frame(fd, mem, server.last_id) is False
    assert server.server_put(make_frame(b"\x00\x00\x01\x41y"))