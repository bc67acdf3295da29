"""Full-duplex CAN test: a device under test echoes frames, a host checks them.

The host (generator) sends frames with an incrementing payload and expects
each to come back with the CAN id changed and every data byte incremented.
"""

from __future__ import annotations

import argparse
import errno
import socket
import struct
import sys
import time
from dataclasses import dataclass, field, replace
from typing import Callable, Optional, Sequence, TextIO

CAN_MSG_ID_PING = 0x77
CAN_MSG_ID_PONG = 0x78
CAN_MSG_LEN = 8
CAN_MSG_COUNT = 50
CAN_MSG_WAIT = 27

CAN_EFF_FLAG = 0x80000000
CAN_RTR_FLAG = 0x40000000
CAN_SFF_MASK = 0x000007FF
CAN_EFF_MASK = 0x1FFFFFFF
CANFD_BRS = 0x01
CAN_MAX_DLEN = 8
CANFD_MAX_DLEN = 64
CAN_MTU = 16
CANFD_MTU = 72

_HEADER = struct.Struct("<IBBxx")


@dataclass(frozen=True)
class Frame:
    """A CAN or CAN FD frame."""

    can_id: int
    data: bytes = b""
    flags: int = 0


@dataclass
class TestConfig:
    """Options of a test run."""

    __test__ = False

    ping_id: int = CAN_MSG_ID_PING
    pong_id: Optional[int] = None
    fd: bool = False
    brs: bool = False
    msg_len: int = CAN_MSG_LEN
    inflight_count: int = CAN_MSG_COUNT
    test_loops: int = 0
    verbose: int = 0
    extended: bool = False
    filter: bool = False


def format_frame(can_id: int, data: bytes, inc: int = 0) -> str:
    """Render a frame as ``id: [len] bytes``, each byte increased by ``inc``."""
    if can_id & CAN_RTR_FLAG:
        return f"{can_id:04x}: remote request"
    body = "".join(f" {(b + inc) & 0xFF:02x}" for b in data)
    return f"{can_id:04x}: [{len(data)}]{body}"


def _compare_lines(expected_id, expected, received, inc):
    return [
        "expected: " + format_frame(expected_id, expected.data, inc),
        "received: " + format_frame(received.can_id, received.data, 0),
    ]


def compare_frame(expected: Frame, received: Frame, expected_id: int, inc: int) -> list[str]:
    """Compare a received frame with the expected one; return report lines."""
    if received.can_id != expected_id:
        return ["Message ID mismatch!"] + _compare_lines(expected_id, expected, received, inc)
    if len(received.data) != len(expected.data):
        return ["Message length mismatch!"] + _compare_lines(expected_id, expected, received, inc)
    lines = []
    for i, (exp, rec) in enumerate(zip(expected.data, received.data)):
        if rec != (exp + inc) & 0xFF:
            lines.append(f"Databyte {i:x} mismatch!")
            lines += _compare_lines(expected_id, expected, received, inc)
    return lines


def check_frame(frame: Frame, ping_id: int, msg_len: int) -> list[str]:
    """Check a frame received by the device under test; return report lines."""
    lines = []
    if frame.can_id != ping_id:
        lines.append(f"Unexpected Message ID 0x{frame.can_id:04x}!")
    if len(frame.data) != msg_len:
        lines.append(f"Unexpected Message length {len(frame.data)}!")
    for prev, cur in zip(frame.data, frame.data[1:]):
        if cur != (prev + 1) & 0xFF:
            lines.append("Frame inconsistent!")
            lines.append(format_frame(frame.can_id, frame.data, 0))
            break
    return lines


def inc_frame(frame: Frame, pong_id: Optional[int] = None) -> Frame:
    """Return the echo of a frame: new id and every data byte incremented."""
    can_id = pong_id if pong_id is not None else (frame.can_id + 1) & 0xFFFFFFFF
    return replace(frame, can_id=can_id, data=bytes((b + 1) & 0xFF for b in frame.data))


def normalize_ids(ping: int, pong: int, extended: bool) -> tuple[int, int]:
    """Mask ping and pong ids to the standard or extended id range."""
    if extended:
        return ((ping & CAN_EFF_MASK) | CAN_EFF_FLAG, (pong & CAN_EFF_MASK) | CAN_EFF_FLAG)
    return ping & CAN_SFF_MASK, pong & CAN_SFF_MASK


def pack_frame(frame: Frame, fd: bool) -> bytes:
    """Serialise a frame into the kernel's can_frame or canfd_frame layout."""
    size = CANFD_MAX_DLEN if fd else CAN_MAX_DLEN
    if len(frame.data) > size:
        raise ValueError(f"payload longer than {size} bytes")
    flags = frame.flags if fd else 0
    return _HEADER.pack(frame.can_id, len(frame.data), flags) + frame.data.ljust(size, b"\0")


def unpack_frame(data: bytes) -> Frame:
    """Parse a can_frame or canfd_frame; raise ValueError on other sizes."""
    if len(data) not in (CAN_MTU, CANFD_MTU):
        raise ValueError(f"incomplete CAN frame of {len(data)} bytes")
    can_id, length, flags = _HEADER.unpack_from(data)
    fd = len(data) == CANFD_MTU
    length = min(length, CANFD_MAX_DLEN if fd else CAN_MAX_DLEN)
    payload = data[_HEADER.size:_HEADER.size + length]
    return Frame(can_id, bytes(payload), flags if fd else 0)


@dataclass
class EchoTester:
    """Runs either side of the test over a socket-like object."""

    sock: object
    config: TestConfig
    out: TextIO = field(default_factory=lambda: sys.stdout)
    sleep: Callable[[float], None] = time.sleep
    running: bool = True

    @property
    def _pong_id(self) -> int:
        if self.config.pong_id is not None:
            return self.config.pong_id
        return (self.config.ping_id + 1) & 0xFFFFFFFF

    def _mtu(self) -> int:
        return CANFD_MTU if self.config.fd else CAN_MTU

    def _print(self, text: str) -> None:
        self.out.write(text)
        self.out.flush()

    def _recv(self) -> Optional[Frame]:
        raw = self.sock.recv(self._mtu())
        if len(raw) != self._mtu():
            sys.stderr.write(f"recv returned {len(raw)}")
            return None
        return unpack_frame(raw)

    def _send(self, frame: Frame) -> None:
        if self.config.brs:
            frame = replace(frame, flags=frame.flags | CANFD_BRS)
        raw = pack_frame(frame, self.config.fd)
        while True:
            try:
                sent = self.sock.send(raw)
            except OSError as exc:
                if exc.errno != errno.ENOBUFS:
                    raise
                if self.config.verbose:
                    self._print("N")
                continue
            if sent != len(raw):
                raise OSError(f"send returned {sent}")
            return

    def _progress(self, value: int) -> None:
        if value == 0xFF:
            self._print(".")

    def run_dut(self) -> int:
        """Echo received frames until stopped; return 0 or -1 on error."""
        count = 0
        err = 0
        while self.running:
            frame = self._recv()
            if frame is None:
                return -1
            count += 1
            if self.config.verbose == 1:
                self._progress(frame.data[0] if frame.data else 0)
            elif self.config.verbose > 1:
                self._print(format_frame(frame.can_id, frame.data) + "\n")
            report = check_frame(frame, self.config.ping_id, self.config.msg_len)
            if report:
                self._print("\n".join(report) + "\n")
            err = -1 if report else 0
            self._send(inc_frame(frame, self.config.pong_id))
            if count == CAN_MSG_WAIT:
                count = 0
                self.sleep(0.003)
        return err

    def _compare(self, expected: Frame, received: Frame, inc: int) -> int:
        expected_id = self._pong_id if inc else self.config.ping_id
        report = compare_frame(expected, received, expected_id, inc)
        if report:
            self._print("\n".join(report) + "\n")
            self.running = False
            return -1
        return 0

    def run_generator(self) -> int:
        """Send frames and check their echoes; return 0 or -1 on error."""
        cfg = self.config
        inflight = cfg.inflight_count
        tx_frames: list[Frame] = [Frame(0)] * inflight
        recv_tx = [False] * inflight
        counter = 0
        send_pos = recv_rx_pos = recv_tx_pos = unprocessed = loops = 0
        err = 0

        while self.running:
            if unprocessed < inflight:
                frame = Frame(cfg.ping_id,
                              bytes((counter + i) & 0xFF for i in range(cfg.msg_len)))
                tx_frames[send_pos] = frame
                recv_tx[send_pos] = False
                self._send(frame)
                send_pos = (send_pos + 1) % inflight
                unprocessed += 1
                if cfg.verbose == 1:
                    self._progress(counter)
                counter = (counter + 1) & 0xFF
                self.sleep(0.003 if counter % 33 == 0 else 0.001)
                continue

            rx = self._recv()
            if rx is None:
                return -1
            if cfg.verbose > 1:
                self._print(format_frame(rx.can_id, rx.data) + "\n")

            if rx.can_id == cfg.ping_id:
                err = self._compare(tx_frames[recv_tx_pos], rx, 0)
                recv_tx[recv_tx_pos] = True
                recv_tx_pos = (recv_tx_pos + 1) % inflight
                continue

            if not recv_tx[recv_rx_pos]:
                self._print("RX before TX!\n" + format_frame(rx.can_id, rx.data) + "\n")
                self.running = False
            err = self._compare(tx_frames[recv_rx_pos], rx, 1)
            recv_rx_pos = (recv_rx_pos + 1) % inflight
            loops += 1
            if cfg.test_loops and loops >= cfg.test_loops:
                break
            unprocessed -= 1

        self._print(f"\nTest messages sent and received: {loops}\n")
        return err


_USAGE = """\
{prg} - Full-duplex test program (DUT and host part).
Usage: {prg} [options] <can-interface>

Options:
         -b       (enable CAN FD Bit Rate Switch)
         -d       (use CAN FD frames instead of classic CAN)
         -e       (use 29-bit extended frame format instead of classic 11-bit one)
         -f COUNT (number of frames in flight, default: {count})
         -g       (generate messages)
         -i ID    (CAN ID to use for frames to DUT (ping), default {ping:x})
         -l COUNT (test loop count)
         -o ID    (CAN ID to use for frames to host (pong), default {pong:x})
         -s SIZE  (frame payload size in bytes)
         -v       (low verbosity)
         -vv      (high verbosity)
         -x       (ignore other frames on bus)
"""


def _usage() -> str:
    return _USAGE.format(prg="canfdtest", count=CAN_MSG_COUNT,
                         ping=CAN_MSG_ID_PING, pong=CAN_MSG_ID_PONG)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the test program; return the exit status."""
    parser = argparse.ArgumentParser(prog="canfdtest", add_help=False, exit_on_error=False)
    parser.add_argument("-b", action="store_true", dest="brs")
    parser.add_argument("-d", action="store_true", dest="fd")
    parser.add_argument("-e", action="store_true", dest="extended")
    parser.add_argument("-f", type=int, dest="inflight", default=CAN_MSG_COUNT)
    parser.add_argument("-g", action="store_true", dest="gen")
    parser.add_argument("-i", type=lambda s: int(s, 16), dest="ping", default=CAN_MSG_ID_PING)
    parser.add_argument("-l", type=int, dest="loops", default=0)
    parser.add_argument("-o", type=lambda s: int(s, 16), dest="pong", default=None)
    parser.add_argument("-s", type=int, dest="size", default=CAN_MSG_LEN)
    parser.add_argument("-v", action="count", dest="verbose", default=0)
    parser.add_argument("-x", action="store_true", dest="filter")
    parser.add_argument("interface", nargs="*")
    try:
        args = parser.parse_args(argv)
    except (argparse.ArgumentError, SystemExit):
        sys.stderr.write(_usage())
        return 1

    if args.brs and not args.fd:
        print("Bit rate switch (-b) needs CAN FD (-d) to be enabled")
        return 1
    if args.size <= 0:
        print("Message length must > 0")
        return 1
    if args.fd and args.size > CANFD_MAX_DLEN:
        print(f"Message length must be <= {CANFD_MAX_DLEN} bytes for CAN FD")
        return 1
    if not args.fd and args.size > CAN_MAX_DLEN:
        print(f"Message length must be <= {CAN_MAX_DLEN} bytes for CAN 2.0B")
        return 1
    if len(args.interface) != 1:
        sys.stderr.write(_usage())
        return 1

    ping, pong = normalize_ids(args.ping, args.pong if args.pong is not None else CAN_MSG_ID_PONG,
                               args.extended)
    if args.pong is None:
        pong = ping + 1
    config = TestConfig(ping_id=ping, pong_id=pong if args.pong is not None else None,
                        fd=args.fd, brs=args.brs, msg_len=args.size,
                        inflight_count=args.inflight, test_loops=args.loops,
                        verbose=args.verbose, extended=args.extended, filter=args.filter)
    ifname = args.interface[0]
    print(f"interface = {ifname}, family = {socket.PF_CAN}, "
          f"type = {socket.SOCK_RAW}, proto = {socket.CAN_RAW}")

    try:
        sock = socket.socket(socket.PF_CAN, socket.SOCK_RAW, socket.CAN_RAW)
    except OSError as exc:
        print(f"socket: {exc}", file=sys.stderr)
        return 1
    with sock:
        try:
            if args.gen:
                sock.setsockopt(socket.SOL_CAN_RAW, socket.CAN_RAW_RECV_OWN_MSGS, 1)
            if args.fd:
                sock.setsockopt(socket.SOL_CAN_RAW, socket.CAN_RAW_FD_FRAMES, 1)
            sock.bind((ifname,))
            if args.filter:
                mask = CAN_EFF_FLAG | CAN_RTR_FLAG | CAN_SFF_MASK
                ids = [ping, pong][: 1 + int(args.gen)]
                sock.setsockopt(socket.SOL_CAN_RAW, socket.CAN_RAW_FILTER,
                                b"".join(struct.pack("=II", i, mask) for i in ids))
        except OSError as exc:
            print(f"setup: {exc}", file=sys.stderr)
            return 1

        tester = EchoTester(sock, config)
        try:
            err = tester.run_generator() if args.gen else tester.run_dut()
        except KeyboardInterrupt:
            err = 0
        except OSError as exc:
            print(f"send failed: {exc}", file=sys.stderr)
            err = -1
    if args.verbose:
        print("Exiting...")
    return 1 if err else 0


if __name__ == "__main__":
    sys.exit(main())