"""Command that reads frames from a shared-memory sink and dumps them."""

from __future__ import annotations

import argparse
import signal
import sys
import threading
import time
from dataclasses import dataclass
from typing import IO, List, Optional, Sequence

from .frame import Frame, fourcc_to_string
from .logs import LogLevel, get_logger, setup_logging
from .memsink import Memsink, MemsinkError
from .output import OutputFile
from .tools import VERSION, floor_ms, get_now_monotonic, signum_to_string

LLONG_MAX = 9223372036854775807

_stop = threading.Event()


class UsageError(Exception):
    """The command line is invalid."""


@dataclass
class DumpOptions:
    """Options taken from the command line."""

    sink: Optional[str] = None
    sink_timeout: int = 1
    output: Optional[str] = None
    output_json: bool = False
    count: int = 0
    interval: float = 0.0
    log_level: LogLevel = LogLevel.INFO
    colored: Optional[bool] = None
    help: bool = False
    version: bool = False


class _Parser(argparse.ArgumentParser):
    def error(self, message: str) -> None:  # type: ignore[override]
        raise UsageError(message)


def _build_parser() -> _Parser:
    parser = _Parser(prog="memstreamer-dump", add_help=False)
    parser.add_argument("-s", "--sink", dest="sink")
    parser.add_argument("-t", "--sink-timeout", dest="sink_timeout")
    parser.add_argument("-o", "--output", dest="output")
    parser.add_argument("-j", "--output-json", dest="output_json", action="store_true")
    parser.add_argument("-c", "--count", dest="count")
    parser.add_argument("-i", "--interval", dest="interval")

    parser.add_argument("--log-level", dest="log_level")
    parser.add_argument("--perf", dest="log_level", action="store_const", const=LogLevel.PERF)
    parser.add_argument("--verbose", dest="log_level", action="store_const", const=LogLevel.VERBOSE)
    parser.add_argument("--debug", dest="log_level", action="store_const", const=LogLevel.DEBUG)
    parser.add_argument("--force-log-colors", dest="colored", action="store_const", const=True)
    parser.add_argument("--no-log-colors", dest="colored", action="store_const", const=False)

    parser.add_argument("-h", "--help", dest="help", action="store_true")
    parser.add_argument("-v", "--version", dest="version", action="store_true")
    return parser


def _to_int(text: str) -> int:
    value = text.lstrip()
    if "_" in value:
        raise ValueError(text)
    try:
        return int(value, 0)
    except ValueError:
        digits = value.lstrip("+-")
        if len(digits) > 1 and digits.startswith("0") and digits.isdigit():
            return int(value, 8)
        raise


def _parse_number(name: str, text: str, lo: int, hi: int) -> int:
    try:
        value = _to_int(text)
    except ValueError:
        value = None
    if value is None or not lo <= value <= hi:
        raise UsageError(f"Invalid value for '{name}={text}': min={lo}, max={hi}")
    return value


def _parse_float(name: str, text: str, lo: float, hi: float) -> float:
    try:
        value: Optional[float] = float(text)
    except ValueError:
        value = None
    if value is None or not lo <= value <= hi:
        raise UsageError(f"Invalid value for '{name}={text}': min={lo:f}, max={hi:f}")
    return value


def parse_args(argv: Optional[Sequence[str]] = None) -> DumpOptions:
    """Parse the command line; raises UsageError on invalid input."""
    if argv is None:
        argv = sys.argv[1:]
    ns, rest = _build_parser().parse_known_args(list(argv))
    for arg in rest:
        if arg.startswith("-") and arg != "-":
            raise UsageError(f"unrecognized option: {arg}")

    opts = DumpOptions(
        sink=ns.sink,
        output=ns.output,
        output_json=ns.output_json,
        colored=ns.colored,
        help=ns.help,
        version=ns.version,
    )
    if ns.sink_timeout is not None:
        opts.sink_timeout = _parse_number("--sink-timeout", ns.sink_timeout, 1, 60)
    if ns.count is not None:
        opts.count = _parse_number("--count", ns.count, 0, LLONG_MAX)
    if ns.interval is not None:
        opts.interval = _parse_float("--interval", ns.interval, 0, 60)
    if isinstance(ns.log_level, str):
        opts.log_level = LogLevel(
            _parse_number("--log-level", ns.log_level, LogLevel.INFO, LogLevel.DEBUG)
        )
    elif ns.log_level is not None:
        opts.log_level = LogLevel(ns.log_level)

    if not (opts.help or opts.version) and not opts.sink:
        raise UsageError("Missing option --sink. See --help for details.")
    return opts


def dump_sink(
    sink: Memsink,
    count: int = 0,
    interval: float = 0.0,
    output: Optional[OutputFile] = None,
) -> int:
    """Read frames from ``sink`` until stopped or ``count`` frames were taken.

    A ``count`` of 0 means no limit. Each frame goes to ``output`` when one is
    given. Returns the number of frames read.
    """
    if count < 0:
        raise ValueError("count must be >= 0")
    if interval < 0:
        raise ValueError("interval must be >= 0")

    log = get_logger()
    frame = Frame()
    got = 0
    fps_accum = 0
    fps_second = 0
    last_ts = 0.0

    try:
        while not _stop.is_set():
            if not sink.client_get(frame):
                time.sleep(0.001)
                continue

            now = get_now_monotonic()
            now_second = floor_ms(now)
            log.log(
                LogLevel.VERBOSE.logging_level,
                "Frame: size=%d, res=%dx%d, fourcc=%s, stride=%d, online=%d, key=%d,"
                " latency=%.3f, diff=%.3f",
                frame.used, frame.width, frame.height, fourcc_to_string(frame.format),
                frame.stride, int(bool(frame.online)), int(bool(frame.key)),
                now - frame.grab_ts, (now - last_ts if last_ts else 0.0),
            )
            last_ts = now
            log.debug(
                "       grab_ts=%.3f, encode_begin_ts=%.3f, encode_end_ts=%.3f",
                frame.grab_ts, frame.encode_begin_ts, frame.encode_end_ts,
            )

            if now_second != fps_second:
                fps = fps_accum
                fps_accum = 0
                fps_second = now_second
                log.log(
                    LogLevel.PERF.logging_level,
                    "A new second has come; captured_fps=%d",
                    fps,
                    extra={"fps": True},
                )
            fps_accum += 1

            if output is not None:
                output.write(frame)

            got += 1
            if count > 0 and got >= count:
                break
            if interval > 0:
                time.sleep(interval)
    finally:
        log.info("Bye-bye")
    return got


def _signal_handler(signum: int, _frame: object) -> None:
    get_logger().info("===== Stopping by %s =====", signum_to_string(signum))
    _stop.set()


def _install_signal_handlers() -> List[tuple]:
    saved = []
    for name in ("SIGINT", "SIGTERM", "SIGPIPE"):
        signum = getattr(signal, name, None)
        if signum is None:
            continue
        get_logger().debug("Installing %s handler ...", name)
        saved.append((signum, signal.signal(signum, _signal_handler)))
    return saved


def _restore_signal_handlers(saved: List[tuple]) -> None:
    for signum, handler in saved:
        signal.signal(signum, handler)


def print_help(fp: IO[str], log_level: int = LogLevel.INFO) -> None:
    """Write the usage text to ``fp``."""
    lines = [
        "",
        "memstreamer-dump - Dump a memory sink to file",
        "═════════════════════════════════════════════",
        f"Version: {VERSION}",
        "",
        "Example:",
        "════════",
        "    memstreamer-dump --sink test --output - \\",
        "        | ffmpeg -use_wallclock_as_timestamps 1 -i pipe: -c:v libx264 test.mp4",
        "",
        "Sink options:",
        "═════════════",
        "    -s|--sink <name>  ──────── Memory sink ID. No default.\n",
        "    -t|--sink-timeout <sec>  ─ Timeout for the upcoming frame. Default: 1.\n",
        "    -o|--output <filename> ─── Filename to dump output to. Use '-' for stdout."
        " Default: just consume the sink.\n",
        "    -j|--output-json  ──────── Format output as JSON. Required option --output."
        " Default: disabled.\n",
        "    -c|--count  <N>  ───────── Limit the number of frames. Default: 0 (infinite).\n",
        "    -i|--interval <sec>  ───── Delay between reading frames (float). Default: 0.\n",
        "Logging options:",
        "════════════════",
        "    --log-level <N>  ──── Verbosity level of messages from 0 (info) to 3 (debug).",
        "                          Enabling debugging messages can slow down the program.",
        "                          Available levels: 0 (info), 1 (performance),"
        " 2 (verbose), 3 (debug).",
        f"                          Default: {int(log_level)}.\n",
        "    --perf  ───────────── Enable performance messages (same as --log-level=1)."
        " Default: disabled.\n",
        "    --verbose  ────────── Enable verbose messages and lower (same as --log-level=2)."
        " Default: disabled.\n",
        "    --debug  ──────────── Enable debug messages and lower (same as --log-level=3)."
        " Default: disabled.\n",
        "    --force-log-colors  ─ Force color logging. Default: colored if stderr is a TTY.\n",
        "    --no-log-colors  ──── Disable color logging. Default: ditto.\n",
        "Help options:",
        "═════════════",
        "    -h|--help  ─────── Print this text and exit.\n",
        "    -v|--version  ──── Print version and exit.\n",
    ]
    for line in lines:
        fp.write(line + "\n")


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the dump command and return its exit status."""
    setup_logging(LogLevel.INFO)
    try:
        opts = parse_args(argv)
    except UsageError as err:
        print(err)
        return 1

    if opts.help:
        print_help(sys.stdout)
        return 0
    if opts.version:
        print(VERSION)
        return 0

    setup_logging(opts.log_level, opts.colored)
    assert opts.sink is not None

    output: Optional[OutputFile] = None
    if opts.output:
        try:
            output = OutputFile(opts.output, opts.output_json)
        except OSError:
            return 1

    _stop.clear()
    saved = _install_signal_handlers()
    try:
        try:
            sink = Memsink("input", opts.sink, server=False, timeout=opts.sink_timeout)
        except MemsinkError as err:
            get_logger().error("%s", err)
            return 1
        with sink:
            try:
                dump_sink(sink, opts.count, opts.interval, output)
            except MemsinkError as err:
                get_logger().error("%s", err)
                return 1
        return 0
    finally:
        _restore_signal_handlers(saved)
        if output is not None:
            output.close()


if __name__ == "__main__":
    sys.exit(main())