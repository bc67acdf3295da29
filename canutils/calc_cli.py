"""Command line tool that calculates and prints CAN bit-timing parameters."""

from __future__ import annotations

import argparse
import sys
from typing import Optional, Sequence

from canutils.algorithms import ALGORITHMS, DEFAULT_ALGORITHM, Algorithm, find_algorithm
from canutils.bittiming import BitTiming, BitTimingConst, BitTimingError, cia_sample_point
from canutils.controllers import (
    COMMON_BITRATES,
    COMMON_DATA_BITRATES,
    BtrFormatter,
    RefClock,
    controller_names,
    find_controllers,
    format_btr_nop,
)

PROG = "can-calc-bit-timing"


class UnknownControllerError(LookupError):
    """No CAN controller with the requested name is known."""

    def __init__(self, name: str) -> None:
        super().__init__(f"unknown CAN controller '{name}'")
        self.name = name


def _usage(cmd: str) -> str:
    return (
        f"{cmd} - calculate CAN bit timing parameters.\n"
        f"Usage: {cmd} [options] [<CAN-contoller-name>]\n"
        "Options:\n"
        "\t-q             don't print header line\n"
        "\t-l             list all support CAN controller names\n"
        "\t-b <bitrate>   arbitration bit-rate in bits/sec\n"
        "\t-d <bitrate>   data bit-rate in bits/sec\n"
        "\t-s <samp_pt>   sample-point in one-tenth of a percent\n"
        "\t               or 0 for CIA recommended sample points\n"
        "\t-c <clock>     real CAN system clock in Hz\n"
        "\t--alg <alg>    choose specified algorithm for bit-timing calculation\n"
        "\n"
        "Or supply low level bit timing parameters to decode them:\n"
        "\n"
        "\t--prop-seg     Propagation segment in TQs\n"
        "\t--phase-seg1   Phase buffer segment 1 in TQs\n"
        "\t--phase-seg2   Phase buffer segment 2 in TQs\n"
        "\t--sjw          Synchronisation jump width in TQs\n"
        "\t--brp          Bit-rate prescaler\n"
        "\t--tseg1        Time segment 1 = prop-seg + phase-seg1\n"
        "\t--tseg2        Time segment 2 = phase_seg2\n"
    )


def _percent(value: float, trailer: str) -> str:
    if value > 99.9:
        return "≥100%" + trailer
    return f"{value:4.1f}%" + trailer


def format_bittiming_one(
    algorithm: Algorithm,
    btc: BitTimingConst,
    ref_bt: Optional[BitTiming],
    ref_clk: RefClock,
    bitrate_nominal: int,
    sample_point_nominal: int,
    format_btr: BtrFormatter,
    quiet: bool,
    fd_mode: bool,
) -> str:
    """Render the result row (and optionally the header) for one bitrate."""
    bt = BitTiming(bitrate=bitrate_nominal, sample_point=sample_point_nominal)
    out = []

    if not quiet:
        clock_name = f"({ref_clk.name}) " if ref_clk.name else ""
        out.append(
            f"{'Data ' if fd_mode else ''}Bit timing parameters for {btc.name} "
            f"with {ref_clk.clk / 1000000.0:.6f} MHz ref clock {clock_name}"
            f"using algo '{algorithm.name}'\n"
            " nominal                                  real  Bitrt    nom   real  SampP\n"
            " Bitrate TQ[ns] PrS PhS1 PhS2 SJW BRP  Bitrate  Error  SampP  SampP  Error   "
        )
        out.append(format_btr(bt, True))
        out.append("\n")

    if ref_bt is not None:
        try:
            bt = algorithm.fixup(ref_clk.clk, ref_bt, btc)
        except BitTimingError:
            out.append(f"{bitrate_nominal:8d} ***parameters exceed controller's range***\n")
            return "".join(out)
    else:
        try:
            bt = algorithm.calc(ref_clk.clk, bt, btc)
        except BitTimingError:
            out.append(f"{bitrate_nominal:8d} ***bitrate not possible***\n")
            return "".join(out)

    bitrate_error = abs(bitrate_nominal - bt.bitrate)
    sample_point_error = abs(sample_point_nominal - bt.sample_point)

    out.append(
        f"{bitrate_nominal:8d} "
        f"{bt.tq:6d} {bt.prop_seg:3d} {bt.phase_seg1:4d} {bt.phase_seg2:4d} "
        f"{bt.sjw:3d} {bt.brp:3d} "
        f"{bt.bitrate:8d}  "
    )
    out.append(_percent(100.0 * bitrate_error / bitrate_nominal, "  "))
    out.append(f"{sample_point_nominal / 10.0:4.1f}%  {bt.sample_point / 10.0:4.1f}%  ")
    out.append(_percent(100.0 * sample_point_error / sample_point_nominal, "   "))
    out.append(format_btr(bt, False))
    out.append("\n")
    return "".join(out)


def _format_bittiming(
    algorithm: Algorithm,
    btc: BitTimingConst,
    format_btr: Optional[BtrFormatter],
    ref_clks: Sequence[RefClock],
    bitrates: Sequence[int],
    sample_point: int,
    ref_bt: Optional[BitTiming],
    quiet: bool,
    fd_mode: bool,
) -> str:
    out = []
    if not ref_clks and not quiet:
        out.append(
            f"Skipping bit timing parameter calculation for {btc.name}, "
            "no ref clock defined\n\n"
        )
    formatter = format_btr or format_btr_nop
    for ref_clk in ref_clks:
        row_quiet = quiet
        for bitrate in bitrates:
            nominal = sample_point or cia_sample_point(bitrate)
            out.append(format_bittiming_one(
                algorithm, btc, ref_bt, ref_clk, bitrate, nominal,
                formatter, row_quiet, fd_mode,
            ))
            row_quiet = True
        out.append("\n")
    return "".join(out)


def calc_report(
    name: Optional[str],
    algorithm: Algorithm = DEFAULT_ALGORITHM,
    ref_clock: Optional[int] = None,
    bitrates: Optional[Sequence[int]] = None,
    data_bitrates: Optional[Sequence[int]] = None,
    sample_point: int = 0,
    ref_bt: Optional[BitTiming] = None,
    quiet: bool = False,
) -> str:
    """Build the bit-timing report for one controller, or all when name is None.

    A ``ref_clock`` of None uses the controllers' own reference clocks; a
    ``sample_point`` of 0 uses the CiA recommended sample points.
    """
    controllers = find_controllers(name)
    if not controllers:
        raise UnknownControllerError(name or "")

    opt_clks = (RefClock(ref_clock, "cmd-line"),) if ref_clock else None
    out = []
    for controller in controllers:
        ref_clks = opt_clks or controller.ref_clks

        out.append(_format_bittiming(
            algorithm, controller.bittiming_const, controller.format_btr,
            ref_clks, bitrates or COMMON_BITRATES, sample_point, ref_bt,
            quiet, False,
        ))

        if controller.data_bittiming_const is not None:
            data_rates = data_bitrates or bitrates or COMMON_DATA_BITRATES
            out.append(_format_bittiming(
                algorithm, controller.data_bittiming_const,
                controller.format_data_btr or controller.format_btr,
                ref_clks, data_rates, sample_point, ref_bt, quiet, True,
            ))
    return "".join(out)


class _TimingAction(argparse.Action):
    """Collect low-level bit-timing options in command line order."""

    def __call__(self, parser, namespace, values, option_string=None):
        fields = namespace.bt_fields
        if self.dest == "tseg1":
            fields["prop_seg"] = values // 2
            fields["phase_seg1"] = values - values // 2
        else:
            fields[self.dest] = values


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=PROG, add_help=False, exit_on_error=False)
    parser.add_argument("-b", dest="bitrate", type=int, default=0)
    parser.add_argument("-c", dest="clock", type=int, default=0)
    parser.add_argument("-d", dest="data_bitrate", type=int, default=0)
    parser.add_argument("-l", dest="list", action="store_true")
    parser.add_argument("-q", dest="quiet", action="store_true")
    parser.add_argument("-s", dest="sample_point", type=int, default=0)
    parser.add_argument("-?", dest="help", action="store_true")
    for option, dest in (
        ("--tq", "tq"),
        ("--prop-seg", "prop_seg"),
        ("--phase-seg1", "phase_seg1"),
        ("--phase-seg2", "phase_seg2"),
        ("--sjw", "sjw"),
        ("--brp", "brp"),
        ("--tseg1", "tseg1"),
        ("--tseg2", "phase_seg2"),
    ):
        parser.add_argument(option, dest=dest, type=int, action=_TimingAction,
                            default=argparse.SUPPRESS)
    parser.add_argument("--alg", dest="alg", default=None)
    parser.add_argument("--alg-list", dest="alg_list", action="store_true",
                        help=argparse.SUPPRESS)
    parser.add_argument("names", nargs="*")
    parser.set_defaults(bt_fields={})
    return parser


def _algorithm_list() -> str:
    return "".join(f"    {algorithm.name}\n" for algorithm in ALGORITHMS)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the bit-timing calculator; return the process exit status."""
    args_in = list(sys.argv[1:] if argv is None else argv)
    # a bare --alg (no "=name") asks for the list of algorithms
    args_in = ["--alg-list" if arg == "--alg" else arg for arg in args_in]
    out = sys.stdout
    parser = _build_parser()

    try:
        args, extra = parser.parse_known_args(args_in)
    except argparse.ArgumentError:
        out.write(_usage(PROG))
        return 1
    if extra:
        out.write(_usage(PROG))
        return 1

    if args.help:
        out.write(_usage(PROG))
        return 0

    if args.alg_list:
        out.write("Supported CAN calc bit timing algorithms:\n\n")
        out.write(_algorithm_list())
        out.write("\n")
        return 0

    if len(args.names) > 1:
        out.write(_usage(PROG))
        return 1
    name = args.names[0] if args.names else None

    if args.list:
        out.write("".join(f"{n}\n" for n in controller_names()))
        return 0

    if args.sample_point and (args.sample_point >= 1000 or args.sample_point < 100):
        out.write(_usage(PROG))

    algorithm = DEFAULT_ALGORITHM
    if args.alg is not None:
        try:
            algorithm = find_algorithm(args.alg)
        except KeyError:
            out.write(
                f"error: unknown CAN calc bit timing algorithm '{args.alg}', "
                "try one of these:\n\n"
            )
            out.write(_algorithm_list())
            return 1

    fields = args.bt_fields
    ref_bt = BitTiming(**fields) if fields.get("prop_seg") else None

    try:
        report = calc_report(
            name,
            algorithm=algorithm,
            ref_clock=args.clock or None,
            bitrates=(args.bitrate,) if args.bitrate else None,
            data_bitrates=(args.data_bitrate,) if args.data_bitrate else None,
            sample_point=args.sample_point,
            ref_bt=ref_bt,
            quiet=args.quiet,
        )
    except UnknownControllerError as exc:
        out.write(f"error: unknown CAN controller '{exc.name}', try one of these:\n\n")
        out.write("".join(f"{n}\n" for n in controller_names()))
        return 1

    out.write(report)
    return 0


if __name__ == "__main__":
    sys.exit(main())