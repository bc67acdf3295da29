"""CAN bit-timing data types and the classic calculation algorithms.

Computes bit-timing parameters (prescaler, segments, sample point) for a
requested bitrate on a controller with given hardware limits, and checks
user-supplied low-level parameters against those limits.
"""

from __future__ import annotations

from dataclasses import dataclass, replace

CAN_CALC_MAX_ERROR = 50  # in one-tenth of a percent
CAN_SYNC_SEG = 1
_NSEC_PER_SEC = 1_000_000_000
_U32_MASK = 0xFFFFFFFF


class BitTimingError(Exception):
    """Base class for bit-timing calculation failures."""


class BitrateNotPossible(BitTimingError):
    """The requested bitrate cannot be reached closely enough."""


class ParameterRangeError(BitTimingError):
    """The given bit-timing parameters exceed the controller's range."""


@dataclass(frozen=True)
class BitTiming:
    """Bit-timing parameters; sample_point is in one-tenth of a percent."""

    bitrate: int = 0
    sample_point: int = 0
    tq: int = 0
    prop_seg: int = 0
    phase_seg1: int = 0
    phase_seg2: int = 0
    sjw: int = 0
    brp: int = 0


@dataclass(frozen=True)
class BitTimingConst:
    """Hardware limits of a CAN controller's bit-timing registers."""

    name: str = ""
    tseg1_min: int = 0
    tseg1_max: int = 0
    tseg2_min: int = 0
    tseg2_max: int = 0
    sjw_max: int = 0
    brp_min: int = 0
    brp_max: int = 0
    brp_inc: int = 0


def _tdiv(a: int, b: int) -> int:
    """Integer division truncating toward zero."""
    q = abs(a) // abs(b)
    return q if (a >= 0) == (b >= 0) else -q


def cia_sample_point(bitrate: int) -> int:
    """Return the CiA recommended sample point for a bitrate."""
    if bitrate > 800_000:
        return 750
    if bitrate > 500_000:
        return 800
    return 875


def update_spt(btc: BitTimingConst, sample_point: int, tseg: int) -> tuple[int, int, int]:
    """Split tseg into (tseg1, tseg2) for a sample point.

    Returns ``(real_sample_point, tseg1, tseg2)``.
    """
    tseg2 = tseg + 1 - _tdiv(sample_point * (tseg + 1), 1000)
    tseg2 = max(tseg2, btc.tseg2_min)
    tseg2 = min(tseg2, btc.tseg2_max)
    tseg1 = tseg - tseg2
    if tseg1 > btc.tseg1_max:
        tseg1 = btc.tseg1_max
        tseg2 = tseg - tseg1
    return _tdiv(1000 * (tseg + 1 - tseg2), tseg + 1), tseg1, tseg2


def _calc_bittiming(clock: int, bt: BitTiming, btc: BitTimingConst, user_sjw: bool) -> BitTiming:
    if bt.bitrate <= 0:
        raise ValueError("bitrate must be positive")

    sampl_pt = bt.sample_point or cia_sample_point(bt.bitrate)
    best_error = 1_000_000_000
    best_tseg = best_brp = 0
    spt_error = 1000

    for tseg in range((btc.tseg1_max + btc.tseg2_max) * 2 + 1,
                      (btc.tseg1_min + btc.tseg2_min) * 2 - 1, -1):
        tsegall = 1 + tseg // 2
        brp = clock // (tsegall * bt.bitrate) + tseg % 2
        brp = (brp // btc.brp_inc) * btc.brp_inc
        if brp < btc.brp_min or brp > btc.brp_max:
            continue
        rate = clock // (brp * tsegall)
        error = abs(bt.bitrate - rate)
        if error > best_error:
            continue
        best_error = error
        if error == 0:
            spt, _, _ = update_spt(btc, sampl_pt, tseg // 2)
            error = abs(sampl_pt - spt)
            if error > spt_error:
                continue
            spt_error = error
        best_tseg = tseg // 2
        best_brp = brp
        if error == 0:
            break

    if best_error:
        permille = (best_error * 1000) // bt.bitrate
        if permille > CAN_CALC_MAX_ERROR:
            raise BitrateNotPossible(
                f"bitrate error {permille // 10}.{permille % 10}% too high"
            )

    sample_point, tseg1, tseg2 = update_spt(btc, sampl_pt, best_tseg)
    tq = (best_brp * _NSEC_PER_SEC // clock) & _U32_MASK
    prop_seg = _tdiv(tseg1, 2)

    if not user_sjw:
        sjw = 1
    elif not bt.sjw or not btc.sjw_max:
        sjw = 1
    else:
        sjw = min(bt.sjw, btc.sjw_max)
        if tseg2 < sjw:
            sjw = tseg2

    return replace(
        bt,
        sample_point=sample_point,
        tq=tq,
        prop_seg=prop_seg,
        phase_seg1=tseg1 - prop_seg,
        phase_seg2=tseg2,
        sjw=sjw,
        brp=best_brp,
        bitrate=clock // (best_brp * (tseg1 + tseg2 + 1)),
    )


def calc_bittiming_v2_6_31(clock: int, bt: BitTiming, btc: BitTimingConst) -> BitTiming:
    """Calculate bit timing; the synchronisation jump width is always 1."""
    return _calc_bittiming(clock, bt, btc, user_sjw=False)


def calc_bittiming_v3_18(clock: int, bt: BitTiming, btc: BitTimingConst) -> BitTiming:
    """Calculate bit timing, honouring a requested synchronisation jump width."""
    return _calc_bittiming(clock, bt, btc, user_sjw=True)


def fixup_bittiming(clock: int, bt: BitTiming, btc: BitTimingConst) -> BitTiming:
    """Validate low-level parameters and derive brp, bitrate and sample point."""
    tseg1 = bt.prop_seg + bt.phase_seg1
    sjw = bt.sjw or 1
    if (sjw > btc.sjw_max
            or tseg1 < btc.tseg1_min or tseg1 > btc.tseg1_max
            or bt.phase_seg2 < btc.tseg2_min or bt.phase_seg2 > btc.tseg2_max):
        raise ParameterRangeError("parameters exceed controller's range")

    brp64 = clock * bt.tq
    if btc.brp_inc > 1:
        brp64 //= btc.brp_inc
    brp64 += _NSEC_PER_SEC // 2 - 1
    brp64 //= _NSEC_PER_SEC
    if btc.brp_inc > 1:
        brp64 *= btc.brp_inc
    brp = brp64 & _U32_MASK

    if brp < btc.brp_min or brp > btc.brp_max:
        raise ParameterRangeError("bitrate prescaler exceeds controller's range")

    alltseg = bt.prop_seg + bt.phase_seg1 + bt.phase_seg2 + 1
    return replace(
        bt,
        sjw=sjw,
        brp=brp,
        bitrate=clock // (brp * alltseg),
        sample_point=((tseg1 + 1) * 1000) // alltseg,
    )