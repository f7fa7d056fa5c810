# memstreamer

This package moves video frames between processes through a shared-memory
sink. It also packs H.264 and OPUS data into RTP datagrams.

It has these parts:

- `memstreamer.memsink.Memsink` is a named shared-memory object in `/dev/shm`
  that holds one frame, guarded by `flock`.
  - A server side (`server=True`) creates the object and publishes frames with
    `server_put(frame)`. It can ask `server_check(frame)` whether publishing is
    worth it.
  - A client side reads new frames with `client_get(frame)`.
  - Both methods return `True` or `False` and raise `MemsinkError` on failure.
- `memstreamer.reader.MemsinkReader` is a client that waits for new frames and
  returns each one as a dict. It can skip frames that repeat the previous one
  within `drop_same_frames` seconds.
- `memstreamer.reader` also has two lower-level helpers. `wait_frame(fd, shared,
  last_id)` waits for a new frame and `get_h264_frame(fd, shared)` takes it.
- `memstreamer.frame.Frame` holds a frame's bytes together with its size,
  format, flags and timestamps. `PixelFormat`, `fourcc()`, `fourcc_to_string()`
  and `is_jpeg()` describe pixel formats.
- `memstreamer.rtpv.VideoPacketizer` packs H.264 Annex B frames into RTP.
  - A NAL unit that fits one datagram goes out whole. A larger one is split into
    FU-A fragments.
  - The last NAL unit of a frame carries the marker bit.
  - `make_sdp()` builds an SDP media section from the last SPS and PPS seen.
  - `find_annexb()` and `iter_nalus()` split an Annex B byte stream.
- `memstreamer.rtpa.AudioPacketizer` packs OPUS packets into RTP, one packet
  per datagram, and builds the matching SDP section.
- `memstreamer.rtp.Rtp` holds an RTP stream's SSRC, its sequence number and
  the 1200-byte datagram it last built.
- `memstreamer.queue.BoundedQueue` is a fixed-capacity, thread-safe FIFO.
  - `put` and `get` take a timeout; 0 means no waiting.
  - They raise `queue.Full` or `queue.Empty` when they cannot proceed.
- `memstreamer.client.RelayClient` copies RTP datagrams into per-session
  queues. Background threads hand each one to a callback as a `RelayPacket`.
  Video and, optionally, audio each get their own thread.
- `memstreamer.output.OutputFile` writes frames to a file or to standard
  output, either raw or as JSON lines (`frame_to_json()`).
- `memstreamer.logs.setup_logging()` sends the package's log to stderr in the
  format `-- LABEL [time thread] -- message`, with or without colours.

## Installation

```
pip install .
```

You need Python 3.10 or newer and a POSIX system with `/dev/shm`.

## Dumping a sink

The `memstreamer-dump` command reads frames from a sink. It can write them to a
file, or to standard output if you give `-`:

```
memstreamer-dump --sink test --output - > stream.raw
memstreamer-dump --sink test --output frames.jsonl --output-json --count 100
```

Options:

- `-s/--sink <name>`: the name of the sink. This option is required.
- `-t/--sink-timeout <sec>`: how long to wait for the sink's lock on each read,
  from 1 to 60. The default is 1.
- `-o/--output <file>`: the file to write to; `-` means standard output. With no
  output, frames are only read.
- `-j/--output-json`: write one JSON object per frame instead of raw bytes. The
  frame data is in Base64.
- `-c/--count <N>`: stop after N frames. The default, 0, means no limit.
- `-i/--interval <sec>`: the pause between reads, from 0 to 60.
- `--log-level <0-3>`, `--perf`, `--verbose`, `--debug`: how much to log.
- `--force-log-colors`, `--no-log-colors`: turn coloured logs on or off. By
  default, logs are coloured when stderr is a terminal.
- `-h/--help`, `-v/--version`.

SIGINT, SIGTERM and SIGPIPE stop the command cleanly.

## Publishing and reading frames from Python

```python
from memstreamer.frame import Frame, PixelFormat
from memstreamer.memsink import Memsink
from memstreamer.reader import MemsinkReader

with Memsink("demo", "test", server=True, rm=True) as sink:
    frame = Frame(width=640, height=480, format=PixelFormat.JPEG, online=True)
    frame.set_data(b"\xff\xd8...\xff\xd9")
    sink.server_put(frame)

    with MemsinkReader("test", lock_timeout=1, wait_timeout=1) as reader:
        got = reader.wait_frame()
        if got is not None:
            print(got["width"], got["height"], len(got["data"]))
```

`wait_frame()` returns `None` if no new frame arrives within `wait_timeout`.

## Packetizing H.264

```python
from memstreamer.frame import Frame, PixelFormat
from memstreamer.rtpv import VideoPacketizer

packets = []
packetizer = VideoPacketizer(lambda rtp: packets.append(rtp.packet))
frame = Frame(format=PixelFormat.H264)
frame.set_data(b"\x00\x00\x01\x67\x42\xe0\x1f\x00\x00\x01\x68\xce\x3c\x80\x00\x00\x01\x65\x88")
packetizer.wrap(frame, pts=0)
print(packetizer.make_sdp())
```

`make_sdp()` returns `None` until the packetizer has seen an SPS and a PPS.

## What this package does not do

- It does not capture video from devices, and it does not encode or decode
  images. Frames must come from another program that writes the sink.
- It does not capture or encode audio. `AudioPacketizer` only wraps OPUS
  packets that are already encoded.
- It has no HTTP or WebRTC server. `RelayClient` passes datagrams to a callback
  you supply and does not send anything over the network itself.