import io

import pytest

from canutils.canfdtest import (
    CAN_EFF_FLAG,
    CAN_MTU,
    CANFD_MTU,
    EchoTester,
    Frame,
    TestConfig,
    check_frame,
    compare_frame,
    format_frame,
    inc_frame,
    main,
    normalize_ids,
    pack_frame,
    unpack_frame,
)


def test_format_frame_applies_increment():
    assert format_frame(0x77, b"\x01\xff", 1) == "0077: [2] 02 00"


def test_format_remote_request():
    assert format_frame(0x40000077, b"", 0).endswith("remote request")


@pytest.mark.parametrize("fd,mtu", [(False, CAN_MTU), (True, CANFD_MTU)])
def test_pack_unpack_round_trip(fd, mtu):
    frame = Frame(0x123, bytes(range(8)), 0)
    raw = pack_frame(frame, fd)
    assert len(raw) == mtu
    assert unpack_frame(raw) == frame


def test_unpack_rejects_short():
    with pytest.raises(ValueError):
        unpack_frame(b"\0" * 10)


def test_inc_frame_and_compare():
    tx = Frame(0x77, bytes([1, 2, 0xFF]))
    echo = inc_frame(tx)
    assert echo.can_id == 0x78
    assert compare_frame(tx, echo, 0x78, 1) == []
    assert inc_frame(tx, 0x200).can_id == 0x200


def test_compare_detects_mismatches():
    tx = Frame(0x77, bytes([1, 2]))
    assert compare_frame(tx, Frame(0x79, bytes([2, 3])), 0x78, 1)[0] == "Message ID mismatch!"
    assert compare_frame(tx, Frame(0x78, bytes([2])), 0x78, 1)[0] == "Message length mismatch!"
    assert "Databyte 1 mismatch!" in compare_frame(tx, Frame(0x78, bytes([2, 9])), 0x78, 1)


def test_check_frame():
    assert check_frame(Frame(0x77, bytes(range(5, 13))), 0x77, 8) == []
    report = check_frame(Frame(0x77, bytes([1, 3])), 0x77, 2)
    assert "Frame inconsistent!" in report


def test_normalize_ids():
    assert normalize_ids(0x1234, 0x1235, False) == (0x1234 & 0x7FF, 0x1235 & 0x7FF)
    ping, pong = normalize_ids(0x1234, 0x1235, True)
    assert ping & CAN_EFF_FLAG and pong & CAN_EFF_FLAG
    assert ping & ~CAN_EFF_FLAG == 0x1234


class _EchoSocket:
    def __init__(self, fd=False):
        self.queue = []
        self.fd = fd

    def send(self, raw):
        frame = unpack_frame(raw)
        self.queue.append(raw)
        self.queue.append(pack_frame(inc_frame(frame), self.fd))
        return len(raw)

    def recv(self, size):
        return self.queue.pop(0) if self.queue else b""


def test_generator_with_echo():
    out = io.StringIO()
    cfg = TestConfig(inflight_count=2, test_loops=3)
    tester = EchoTester(_EchoSocket(), cfg, out=out, sleep=lambda s: None)
    assert tester.run_generator() == 0
    assert "Test messages sent and received: 3" in out.getvalue()


class _DutSocket:
    def __init__(self, frames):
        self.incoming = [pack_frame(f, False) for f in frames]
        self.sent = []

    def recv(self, size):
        return self.incoming.pop(0) if self.incoming else b""

    def send(self, raw):
        self.sent.append(unpack_frame(raw))
        return len(raw)


def test_dut_echoes_frames():
    frames = [Frame(0x77, bytes(range(i, i + 8))) for i in range(3)]
    sock = _DutSocket(frames)
    tester = EchoTester(sock, TestConfig(), out=io.StringIO(), sleep=lambda s: None)
    assert tester.run_dut() == -1  # ends when the stream runs dry
    assert sock.sent == [inc_frame(f) for f in frames]


@pytest.mark.parametrize("argv", [["-b", "can0"], ["-s", "0", "can0"],
                                  ["-s", "9", "can0"], ["-d", "-s", "65", "can0"], []])
def test_main_rejects_bad_options(argv):
    assert main(argv) == 1


def test_config_defaults_match_source():
    cfg = TestConfig()
    assert (cfg.ping_id, cfg.msg_len, cfg.inflight_count) == (0x77, 8, 50)