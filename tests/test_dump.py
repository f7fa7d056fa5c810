import base64
import json
import uuid

import pytest

from memstreamer.dump import UsageError, dump_sink, main, parse_args
from memstreamer.frame import Frame, PixelFormat
from memstreamer.logs import LogLevel
from memstreamer.memsink import Memsink
from memstreamer.output import OutputFile
from memstreamer.tools import VERSION


def _name():
    return f"memstreamer-test-{uuid.uuid4().hex}"


def _frame(data=b"\xff\xd8hello\xff\xd9"):
    return Frame(
        data=data, width=640, height=480, format=PixelFormat.JPEG, stride=0, online=True
    )


def test_parse_defaults():
    opts = parse_args(["--sink", "abc"])
    assert opts.sink == "abc"
    assert opts.sink_timeout == 1
    assert opts.count == 0
    assert opts.interval == 0.0
    assert opts.output is None
    assert opts.output_json is False
    assert opts.log_level == LogLevel.INFO
    assert opts.colored is None


def test_parse_short_options():
    opts = parse_args(["-s", "a", "-t", "5", "-o", "-", "-j", "-c", "3", "-i", "0.5"])
    assert opts.sink == "a"
    assert opts.sink_timeout == 5
    assert opts.output == "-"
    assert opts.output_json is True
    assert opts.count == 3
    assert opts.interval == 0.5


def test_parse_count_base_prefix():
    assert parse_args(["-s", "a", "-c", "0x10"]).count == 16


def test_parse_invalid_sink_timeout():
    with pytest.raises(UsageError) as info:
        parse_args(["-s", "a", "--sink-timeout", "0"])
    assert str(info.value) == "Invalid value for '--sink-timeout=0': min=1, max=60"


def test_parse_invalid_interval():
    with pytest.raises(UsageError) as info:
        parse_args(["-s", "a", "--interval", "61"])
    assert "min=0.000000, max=60.000000" in str(info.value)


def test_parse_non_numeric_count():
    with pytest.raises(UsageError):
        parse_args(["-s", "a", "--count", "abc"])


def test_parse_missing_sink():
    with pytest.raises(UsageError) as info:
        parse_args([])
    assert "Missing option --sink" in str(info.value)


def test_parse_unknown_option():
    with pytest.raises(UsageError):
        parse_args(["-s", "a", "--bogus"])


def test_parse_log_levels_later_wins():
    assert parse_args(["-s", "a", "--debug", "--perf"]).log_level == LogLevel.PERF
    assert parse_args(["-s", "a", "--log-level", "2"]).log_level == LogLevel.VERBOSE
    with pytest.raises(UsageError):
        parse_args(["-s", "a", "--log-level", "4"])


def test_parse_colors():
    assert parse_args(["-s", "a", "--force-log-colors"]).colored is True
    assert parse_args(["-s", "a", "--force-log-colors", "--no-log-colors"]).colored is False


def test_main_version(capsys):
    assert main(["--version"]) == 0
    assert capsys.readouterr().out.strip() == VERSION


def test_main_help(capsys):
    assert main(["--help"]) == 0
    out = capsys.readouterr().out
    assert "--sink" in out
    assert "--output-json" in out


def test_main_missing_sink(capsys):
    assert main([]) == 1
    assert "Missing option --sink" in capsys.readouterr().out


def test_main_invalid_value(capsys):
    assert main(["-s", "a", "-t", "99"]) == 1
    assert "--sink-timeout=99" in capsys.readouterr().out


def test_main_missing_shared_memory():
    assert main(["--sink", _name(), "--count", "1"]) == 1


def test_dump_sink_writes_raw(tmp_path):
    name = _name()
    path = tmp_path / "out.bin"
    frame = _frame()
    with Memsink("test", name, server=True, rm=True, max_data=4096) as server:
        assert server.server_put(frame) is True
        with Memsink("input", name, server=False, max_data=4096) as client:
            with OutputFile(str(path)) as output:
                got = dump_sink(client, count=1, interval=0, output=output)
    assert got == 1
    assert path.read_bytes() == bytes(frame.data)


def test_dump_sink_without_output():
    name = _name()
    with Memsink("test", name, server=True, rm=True, max_data=4096) as server:
        server.server_put(_frame(b"abc"))
        with Memsink("input", name, server=False, max_data=4096) as client:
            assert dump_sink(client, 1) == 1


def test_dump_sink_rejects_negative_count():
    name = _name()
    with Memsink("test", name, server=True, rm=True, max_data=4096) as server:
        with pytest.raises(ValueError):
            dump_sink(server, -1)