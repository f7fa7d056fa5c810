import os
import signal

import pytest

from memstreamer import tools


def test_triple_zero_is_fixed_point():
    assert tools.triple_u32(0) == 0


@pytest.mark.parametrize("value", [1, 12345, 0xCAFEBABE, 2**32 - 1])
def test_triple_uses_low_32_bits(value):
    result = tools.triple_u32(value)
    assert 0 <= result < 2**32
    assert tools.triple_u32(value + 2**32) == result


def test_triple_is_distinct_on_small_inputs():
    results = {tools.triple_u32(x) for x in range(2000)}
    assert len(results) == 2000


def test_floor_ms():
    assert tools.floor_ms(1.5) == 1
    assert tools.floor_ms(-1.5) == -2
    assert tools.floor_ms(7.0) == 7


def test_monotonic_is_non_decreasing_and_ms_rounded():
    a = tools.get_now_monotonic()
    b = tools.get_now_monotonic()
    assert b >= a
    assert abs(a * 1000 - round(a * 1000)) < 1e-3


def test_monotonic_u64_agrees_with_seconds():
    us = tools.get_now_monotonic_u64()
    sec = tools.get_now_monotonic()
    assert abs(us / 1_000_000 - sec) < 1.0


def test_now_id_fits_64_bits():
    ident = tools.get_now_id()
    assert 0 <= ident < 2**64


def test_flock_timedwait_contention(tmp_path):
    path = tmp_path / "lock"
    path.write_bytes(b"")
    fd1 = os.open(path, os.O_RDWR)
    fd2 = os.open(path, os.O_RDWR)
    try:
        assert tools.flock_timedwait(fd1, 0.05) is True
        assert tools.flock_timedwait(fd2, 0.05) is False
        import fcntl

        fcntl.flock(fd1, fcntl.LOCK_UN)
        assert tools.flock_timedwait(fd2, 0.05) is True
    finally:
        os.close(fd1)
        os.close(fd2)


def test_flock_timedwait_bad_fd_raises(tmp_path):
    path = tmp_path / "lock"
    path.write_bytes(b"")
    fd = os.open(path, os.O_RDWR)
    os.close(fd)
    with pytest.raises(OSError):
        tools.flock_timedwait(fd, 0.01)


def test_signum_to_string_known():
    assert tools.signum_to_string(signal.SIGTERM) == "SIGTERM"
    assert tools.signum_to_string(signal.SIGINT) == "SIGINT"
    assert tools.signum_to_string(signal.SIGPIPE) == "SIGPIPE"


def test_signum_to_string_unknown():
    assert tools.signum_to_string(1000) == "SIG[1000]"