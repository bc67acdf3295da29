"""TCP server that turns ASCII commands into CAN broadcast manager jobs.

Commands arrive as ``< interface command ival_s ival_us can_id can_dlc [data]* >``.
``can_id`` and the data bytes are hexadecimal. The TX commands are ``A``dd,
``U``pdate, ``D``elete and ``S``end. The RX commands are ``R`` (receive with
content filter), ``F`` (ID filter) and ``X`` (delete). Frames received by the
filters are sent to the client as ``< interface can_id can_dlc [data]* >``
followed by a NUL byte.
"""

from __future__ import annotations

import argparse
import select
import socket
import struct
import sys
import threading
import time
from dataclasses import dataclass
from enum import IntEnum, IntFlag
from typing import Optional, Sequence

PORT = 28600
MAXLEN = 100
IFNAMSIZ = 16

_HEAD = struct.Struct("=IIIxxxxqqqqII")
_FRAME = struct.Struct("=IB3x8s")


class BcmOpcode(IntEnum):
    """Broadcast manager operation codes."""

    TX_SETUP = 1
    TX_DELETE = 2
    TX_READ = 3
    TX_SEND = 4
    RX_SETUP = 5
    RX_DELETE = 6


class BcmFlags(IntFlag):
    """Broadcast manager flags used by this server."""

    NONE = 0
    SETTIMER = 0x0001
    STARTTIMER = 0x0002
    RX_FILTER_ID = 0x0020


class CommandError(ValueError):
    """A client command could not be understood."""


_COMMANDS = {
    "S": (BcmOpcode.TX_SEND, BcmFlags.NONE),
    "A": (BcmOpcode.TX_SETUP, BcmFlags.SETTIMER | BcmFlags.STARTTIMER),
    "U": (BcmOpcode.TX_SETUP, BcmFlags.NONE),
    "D": (BcmOpcode.TX_DELETE, BcmFlags.NONE),
    "R": (BcmOpcode.RX_SETUP, BcmFlags.SETTIMER),
    "F": (BcmOpcode.RX_SETUP, BcmFlags.RX_FILTER_ID | BcmFlags.SETTIMER),
    "X": (BcmOpcode.RX_DELETE, BcmFlags.NONE),
}


@dataclass(frozen=True)
class BcmCommand:
    """A parsed client command ready to be sent to a BCM socket."""

    ifname: str
    command: str
    opcode: BcmOpcode
    flags: BcmFlags
    ival_sec: int
    ival_usec: int
    can_id: int
    data: bytes

    def pack(self) -> bytes:
        """Return the BCM message head followed by one classic CAN frame."""
        head = _HEAD.pack(int(self.opcode), int(self.flags), 0, 0, 0,
                          self.ival_sec, self.ival_usec, self.can_id, 1)
        frame = _FRAME.pack(self.can_id, len(self.data), self.data.ljust(8, b"\0"))
        return head + frame


def _int(token: str, base: int, limit: int) -> int:
    value = int(token, base)
    if value < 0:
        raise ValueError(token)
    return value & limit


def parse_command(text: str) -> BcmCommand:
    """Parse one ``< ... >`` command; raise CommandError when it is invalid."""
    tokens = text.split()
    if not tokens or tokens[0] != "<":
        raise CommandError(f"malformed command {text!r}")
    fields = tokens[1:]
    if fields and fields[-1] == ">":
        fields = fields[:-1]

    parsed = []
    converters = [
        lambda t: t[:IFNAMSIZ - 1],
        lambda t: t[0],
        lambda t: _int(t, 10, 0xFFFFFFFFFFFFFFFF),
        lambda t: _int(t, 10, 0xFFFFFFFFFFFFFFFF),
        lambda t: _int(t, 16, 0xFFFFFFFF),
        lambda t: _int(t, 10, 0xFF),
    ] + [lambda t: _int(t, 16, 0xFF)] * 8
    for token, convert in zip(fields, converters):
        try:
            parsed.append(convert(token))
        except ValueError:
            break

    if len(parsed) < 6:
        raise CommandError(f"too few items in {text!r}")
    ifname, cmd, sec, usec, can_id, dlc = parsed[:6]
    if dlc > 8:
        raise CommandError(f"invalid dlc {dlc}")
    if len(parsed) != 6 + dlc:
        raise CommandError("number of data bytes does not match dlc")
    if cmd not in _COMMANDS:
        raise CommandError(f"unknown command '{cmd}'.")
    opcode, flags = _COMMANDS[cmd]
    return BcmCommand(ifname, cmd, opcode, flags, sec, usec, can_id,
                      bytes(parsed[6:]))


class MessageAssembler:
    """Collects bytes from a stream into ``< ... >`` messages."""

    def __init__(self) -> None:
        self._buf = bytearray()

    def feed(self, byte: int) -> Optional[str]:
        """Add one byte; return a complete message when one has ended."""
        if not self._buf:
            if byte == ord("<"):
                self._buf.append(byte)
            return None
        if len(self._buf) > MAXLEN - 2:
            self._buf.clear()
            return None
        self._buf.append(byte)
        if byte != ord(">"):
            return None
        message = self._buf.decode("latin-1")
        self._buf.clear()
        return message


def format_rx_message(ifname: str, can_id: int, data: bytes) -> str:
    """Render a received frame for the client (without the trailing NUL)."""
    parts = [f"< {ifname} {can_id:03X} {len(data)} "]
    parts.extend(f"{b:02X} " for b in data)
    parts.append(">")
    return "".join(parts)


def _handle_client(conn: socket.socket) -> None:
    bcm = socket.socket(socket.AF_CAN, socket.SOCK_DGRAM, socket.CAN_BCM)
    try:
        bcm.connect(("",))
        assembler = MessageAssembler()
        while True:
            readable, _, _ = select.select([bcm, conn], [], [])
            if bcm in readable:
                msg, addr = bcm.recvfrom(_HEAD.size + _FRAME.size)
                head = _HEAD.unpack_from(msg)
                _, dlc, payload = _FRAME.unpack_from(msg, _HEAD.size)
                dlc = min(dlc, 8)
                ifname = addr[0] if isinstance(addr, tuple) else str(addr)
                text = format_rx_message(ifname, head[7], payload[:dlc])
                conn.sendall(text.encode("latin-1") + b"\0")
            if conn in readable:
                chunk = conn.recv(1)
                if not chunk:
                    return
                message = assembler.feed(chunk[0])
                if message is None:
                    continue
                try:
                    command = parse_command(message)
                except CommandError as exc:
                    print(exc)
                    return
                try:
                    socket.if_nametoindex(command.ifname)
                except OSError:
                    continue
                bcm.sendto(command.pack(), (command.ifname,))
    finally:
        bcm.close()
        conn.close()


def serve(port: int = PORT) -> None:
    """Accept clients forever, each handled on its own thread."""
    listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    while True:
        try:
            listener.bind(("", port))
            break
        except OSError:
            print(".", end="", flush=True)
            time.sleep(0.1)
    listener.listen(3)
    with listener:
        while True:
            conn, _ = listener.accept()
            threading.Thread(target=_handle_client, args=(conn,), daemon=True).start()


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the server."""
    parser = argparse.ArgumentParser(prog="bcmserver")
    parser.add_argument("-p", "--port", type=int, default=PORT)
    args = parser.parse_args(argv)
    try:
        serve(args.port)
    except KeyboardInterrupt:
        return 0
    return 0


if __name__ == "__main__":
    sys.exit(main())