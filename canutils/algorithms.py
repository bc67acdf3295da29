"""Newer CAN bit-timing algorithms and the table of all selectable algorithms.

These algorithms search for the prescaler and time segments that give the
smallest bitrate error and, among equal bitrate errors, the smallest sample
point error. All arithmetic follows 32-bit unsigned register semantics.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Callable, Optional

from canutils.bittiming import (
    CAN_CALC_MAX_ERROR,
    CAN_SYNC_SEG,
    BitrateNotPossible,
    BitTiming,
    BitTimingConst,
    calc_bittiming_v2_6_31,
    calc_bittiming_v3_18,
    cia_sample_point,
    fixup_bittiming,
)

_U32_MASK = 0xFFFFFFFF
_UINT_MAX = _U32_MASK
_NSEC_PER_SEC = 1_000_000_000

CalcFunction = Callable[[int, BitTiming, BitTimingConst], BitTiming]


def _u32(value: int) -> int:
    return value & _U32_MASK


def _abs32(value: int) -> int:
    """Absolute value of a 32-bit quantity taken as signed, returned unsigned."""
    signed = _u32(value)
    if signed & 0x80000000:
        signed -= 1 << 32
    return _u32(-signed if signed < 0 else signed)


@dataclass(frozen=True)
class Algorithm:
    """A named pair of calculation and validation functions."""

    name: str
    calc: CalcFunction
    fixup: CalcFunction


def update_sample_point(
    btc: BitTimingConst, sample_point_nominal: int, tseg: int
) -> tuple[int, Optional[int], Optional[int], int]:
    """Find the best split of tseg for a nominal sample point.

    Returns ``(sample_point, tseg1, tseg2, sample_point_error)``. Only splits
    whose sample point does not exceed the nominal one are accepted; when none
    is, the sample point is 0, both segments are ``None`` and the error is the
    largest 32-bit value.
    """
    best_error = _UINT_MAX
    best_sample_point = 0
    best_tseg1: Optional[int] = None
    best_tseg2: Optional[int] = None

    for i in (0, 1):
        total = tseg + CAN_SYNC_SEG
        tseg2 = _u32(total - _u32(sample_point_nominal * total) // 1000 - i)
        tseg2 = min(max(tseg2, btc.tseg2_min), btc.tseg2_max)
        tseg1 = _u32(tseg - tseg2)
        if tseg1 > btc.tseg1_max:
            tseg1 = btc.tseg1_max
            tseg2 = _u32(tseg - tseg1)

        sample_point = _u32(1000 * _u32(total - tseg2)) // total
        error = _abs32(sample_point_nominal - sample_point)

        if sample_point <= sample_point_nominal and error < best_error:
            best_sample_point = sample_point
            best_error = error
            best_tseg1 = tseg1
            best_tseg2 = tseg2

    return best_sample_point, best_tseg1, best_tseg2, best_error


def _calc_bittiming(
    clock: int, bt: BitTiming, btc: BitTimingConst, strict: bool
) -> BitTiming:
    if bt.bitrate <= 0:
        raise ValueError("bitrate must be positive")
    if clock <= 0:
        raise ValueError("clock must be positive")

    sample_point_nominal = bt.sample_point or cia_sample_point(bt.bitrate)

    best_bitrate_error = _UINT_MAX
    best_sample_point_error = _UINT_MAX
    best_tseg = 0
    best_brp = 0
    tseg1 = 0
    tseg2 = 0

    high = (btc.tseg1_max + btc.tseg2_max) * 2 + 1
    low = (btc.tseg1_min + btc.tseg2_min) * 2
    for tseg in range(high, low - 1, -1):
        tsegall = CAN_SYNC_SEG + tseg // 2

        divisor = _u32(tsegall * bt.bitrate)
        if divisor == 0:
            continue
        brp = _u32(clock // divisor + tseg % 2)
        brp = (brp // btc.brp_inc) * btc.brp_inc
        if brp < btc.brp_min or brp > btc.brp_max or brp == 0:
            continue

        bitrate = clock // _u32(brp * tsegall)
        bitrate_error = _abs32(bt.bitrate - bitrate)

        if bitrate_error > best_bitrate_error:
            continue

        if bitrate_error < best_bitrate_error:
            best_sample_point_error = _UINT_MAX

        _, found1, found2, sample_point_error = update_sample_point(
            btc, sample_point_nominal, tseg // 2
        )
        if found1 is not None and found2 is not None:
            tseg1, tseg2 = found1, found2

        if strict:
            if sample_point_error >= best_sample_point_error:
                continue
        elif sample_point_error > best_sample_point_error:
            continue

        best_sample_point_error = sample_point_error
        best_bitrate_error = bitrate_error
        best_tseg = tseg // 2
        best_brp = brp

        if bitrate_error == 0 and sample_point_error == 0:
            break

    if best_bitrate_error:
        permille = _u32(best_bitrate_error * 1000 // bt.bitrate)
        if permille > CAN_CALC_MAX_ERROR:
            raise BitrateNotPossible(
                f"bitrate error {permille // 10}.{permille % 10}% too high"
            )

    sample_point, found1, found2, _ = update_sample_point(
        btc, sample_point_nominal, best_tseg
    )
    if found1 is not None and found2 is not None:
        tseg1, tseg2 = found1, found2

    tq = _u32(best_brp * _NSEC_PER_SEC // clock)
    prop_seg = tseg1 // 2

    if not bt.sjw or not btc.sjw_max:
        sjw = 1
    else:
        sjw = min(bt.sjw, btc.sjw_max)
        if tseg2 < sjw:
            sjw = tseg2

    divisor = _u32(best_brp * (CAN_SYNC_SEG + tseg1 + tseg2))
    if divisor == 0:
        raise BitrateNotPossible("no usable bitrate prescaler")

    return replace(
        bt,
        sample_point=sample_point,
        tq=tq,
        prop_seg=prop_seg,
        phase_seg1=tseg1 - prop_seg,
        phase_seg2=tseg2,
        sjw=sjw,
        brp=best_brp,
        bitrate=clock // divisor,
    )


def calc_bittiming_v4_8(clock: int, bt: BitTiming, btc: BitTimingConst) -> BitTiming:
    """Calculate bit timing minimising bitrate and then sample point error."""
    return _calc_bittiming(clock, bt, btc, strict=False)


def calc_bittiming_v5_16(clock: int, bt: BitTiming, btc: BitTimingConst) -> BitTiming:
    """Calculate bit timing; same search as the v4.8 algorithm."""
    return _calc_bittiming(clock, bt, btc, strict=False)


def calc_bittiming_v5_19(clock: int, bt: BitTiming, btc: BitTimingConst) -> BitTiming:
    """Calculate bit timing, keeping the first of equally good candidates."""
    return _calc_bittiming(clock, bt, btc, strict=True)


ALGORITHMS: tuple[Algorithm, ...] = (
    Algorithm("v5.19", calc_bittiming_v5_19, fixup_bittiming),
    Algorithm("v5.16", calc_bittiming_v5_16, fixup_bittiming),
    Algorithm("v4.8", calc_bittiming_v4_8, fixup_bittiming),
    Algorithm("v3.18", calc_bittiming_v3_18, fixup_bittiming),
    Algorithm("v2.6.31", calc_bittiming_v2_6_31, fixup_bittiming),
)

DEFAULT_ALGORITHM = ALGORITHMS[0]


def find_algorithm(name: str) -> Algorithm:
    """Return the algorithm with the given name; raise KeyError if unknown."""
    for algorithm in ALGORITHMS:
        if algorithm.name == name:
            return algorithm
    raise KeyError(f"unknown CAN calc bit timing algorithm '{name}'")