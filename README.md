# canutils

Tools for working with CAN and CAN FD buses:

- **can-calc-bit-timing** – computes bit timing parameters (time quantum,
  propagation and phase segments, SJW, prescaler) for a list of known CAN
  controllers and their reference clocks, and prints the matching controller
  register values where the register layout is known.
- **bcmserver** – a TCP server that turns short ASCII commands into
  SocketCAN broadcast manager jobs (cyclic send, receive filters) and reports
  received frames back to the client.
- **canfdtest** – a full-duplex test: one side generates frames and checks
  the answers, the device under test echoes every frame back with the CAN ID
  changed and all data bytes incremented.

`bcmserver` and `canfdtest` need Linux with SocketCAN. The bit timing
calculator runs anywhere.

## Installation

```
pip install .
```

For running the tests:

```
pip install .[test]
pytest
```

## Bit timing calculation

List the known controllers:

```
can-calc-bit-timing -l
```

Calculate the common bitrates for one controller on all of its reference
clocks (without a controller name, all controllers are calculated):

```
can-calc-bit-timing mcp251x
```

Options:

| option            | meaning                                                           |
|-------------------|-------------------------------------------------------------------|
| `-q`              | do not print the header line                                      |
| `-l`              | list all supported controller names                               |
| `-b <bitrate>`    | arbitration bitrate in bit/s                                      |
| `-d <bitrate>`    | data bitrate in bit/s (CAN FD)                                    |
| `-s <samp_pt>`    | sample point in tenths of a percent, 0 for the CiA recommendation |
| `-c <clock>`      | the real CAN system clock in Hz                                   |
| `--alg=<alg>`     | pick the calculation algorithm                                    |
| `--alg`           | list the algorithms                                               |
| `-?`              | show the usage text                                               |

The algorithms are `v5.19` (the default), `v5.16`, `v4.8`, `v3.18` and
`v2.6.31`.

Low level parameters can be given instead, to check them against a
controller's limits and decode them into bitrate and sample point:
`--tq`, `--prop-seg`, `--phase-seg1`, `--phase-seg2`, `--sjw`, `--brp`,
`--tseg1` (split into propagation and phase segment 1), `--tseg2`. They are
used when the propagation segment is non-zero. The prescaler is derived from
the time quantum (`--tq`, in nanoseconds) and the clock.

```
can-calc-bit-timing -c 16000000 -b 500000 sja1000
can-calc-bit-timing --alg=v4.8 -b 1000000 -d 5000000 mcp251xfd
can-calc-bit-timing -c 8000000 --tq 125 --prop-seg 5 --phase-seg1 6 --phase-seg2 4 sja1000
```

The same calculation is available from Python:

- `canutils.bittiming` – `BitTiming`, `BitTimingConst`, `cia_sample_point`,
  `update_spt`, `calc_bittiming_v2_6_31`, `calc_bittiming_v3_18` and
  `fixup_bittiming`;
- `canutils.algorithms` – `update_sample_point`, `calc_bittiming_v4_8`,
  `calc_bittiming_v5_16`, `calc_bittiming_v5_19`, the `ALGORITHMS` table and
  `find_algorithm`;
- `canutils.controllers` – the controller table (`CONTROLLERS`,
  `find_controllers`, `controller_names`) and the register formatters
  (`format_btr_sja1000` and the like);
- `canutils.calc_cli.calc_report` – the full text report the command prints.

When a bitrate cannot be reached closely enough the calculation raises
`BitrateNotPossible`; parameters outside a controller's range raise
`ParameterRangeError`. Both derive from `BitTimingError`.

```python
from canutils.algorithms import calc_bittiming_v5_19
from canutils.bittiming import BitTiming
from canutils.controllers import find_controllers

sja1000 = find_controllers("sja1000")[0]
bt = calc_bittiming_v5_19(8_000_000, BitTiming(bitrate=500_000), sja1000.bittiming_const)
print(bt.brp, bt.prop_seg, bt.phase_seg1, bt.phase_seg2, bt.sample_point)
```

## Broadcast manager server

```
bcmserver
bcmserver --port 28700
```

The server listens on TCP port 28600 by default (`-p`/`--port` changes it).
Each client is handled on its own thread with its own broadcast manager
socket. Commands have the form

```
< interface command ival_s ival_us can_id can_dlc [data]* >
```

with `can_id` and the data bytes in hexadecimal. Commands are `A`dd,
`U`pdate, `D`elete and `S`end for transmission, `R`eceive setup, `F`ilter
setup and `X` (delete receive job) for reception:

```
< vcan1 A 1 0 123 8 11 22 33 44 55 66 77 88 >   send every second
< vcan1 U 0 0 123 3 11 22 33 >                  update the frame content
< vcan1 D 0 0 123 0 >                           stop the cyclic job
< vcan1 R 0 0 123 1 FF >                        watch the first byte for changes
< vcan1 X 0 0 123 0 >                           remove the receive filter
```

Received frames come back as `< vcan1 123 4 11 22 33 44 >` followed by a
zero byte. A malformed or unknown command closes the client's connection;
a command naming an unknown interface is ignored. Closing the connection
closes the client's broadcast manager socket and so ends its cyclic jobs.

From Python, `parse_command` turns a command into a `BcmCommand` (raising
`CommandError` when it is invalid), `BcmCommand.pack` gives the broadcast
manager message, `MessageAssembler` collects `< ... >` messages from a byte
stream and `format_rx_message` renders a received frame.

## Full-duplex test

On the device under test:

```
canfdtest -v can0
```

On the host:

```
canfdtest -g -v can2
```

| option      | meaning                                          |
|-------------|--------------------------------------------------|
| `-b`        | enable CAN FD bit rate switch (needs `-d`)       |
| `-d`        | use CAN FD frames                                |
| `-e`        | use 29-bit extended identifiers                  |
| `-f COUNT`  | frames in flight (default 50)                    |
| `-g`        | generate and check frames                        |
| `-i ID`     | ping CAN ID, hexadecimal (default 77)            |
| `-o ID`     | pong CAN ID, hexadecimal (default ping + 1)      |
| `-l COUNT`  | number of test loops                             |
| `-s SIZE`   | payload size in bytes (default 8)                |
| `-v`, `-vv` | more output                                      |
| `-x`        | ignore other frames on the bus                   |

Stop the test with Ctrl-C. The exit status is 1 when a mismatch was found.

The test logic is usable over any object with `send` and `recv`:
`EchoTester(sock, TestConfig(...)).run_generator()` or `.run_dut()`. The
helpers `format_frame`, `compare_frame`, `check_frame`, `inc_frame`,
`normalize_ids`, `pack_frame` and `unpack_frame` work on `Frame` values.

## What the package does not do

There is no tool here to capture, log, replay or send arbitrary CAN traffic,
nor to measure bus load; frames can only be sent through `bcmserver` jobs or
by `canfdtest`. Log file conversion and ISO-TP and J1939 tools are not
included either.