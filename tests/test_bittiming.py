import pytest

from canutils.bittiming import (
    BitrateNotPossible,
    BitTiming,
    BitTimingConst,
    BitTimingError,
    ParameterRangeError,
    calc_bittiming_v2_6_31,
    calc_bittiming_v3_18,
    cia_sample_point,
    fixup_bittiming,
    update_spt,
)

SJA1000 = BitTimingConst(
    name="sja1000",
    tseg1_min=1,
    tseg1_max=16,
    tseg2_min=1,
    tseg2_max=8,
    sjw_max=4,
    brp_min=1,
    brp_max=64,
    brp_inc=1,
)
CLOCK = 8000000

ALGORITHMS = [calc_bittiming_v2_6_31, calc_bittiming_v3_18]
BITRATES = [1000000, 800000, 500000, 250000, 125000, 100000, 83333, 50000]


@pytest.mark.parametrize(
    "bitrate,expected",
    [(1000000, 750), (800001, 750), (800000, 800), (500001, 800), (500000, 875), (10000, 875)],
)
def test_cia_sample_point(bitrate, expected):
    assert cia_sample_point(bitrate) == expected


def test_update_spt_hits_nominal_sample_point():
    spt, tseg1, tseg2 = update_spt(SJA1000, 875, 15)
    assert spt == 875
    assert tseg1 + tseg2 == 15
    assert SJA1000.tseg2_min <= tseg2 <= SJA1000.tseg2_max


@pytest.mark.parametrize("calc", ALGORITHMS)
def test_exact_500k(calc):
    bt = calc(CLOCK, BitTiming(bitrate=500000), SJA1000)
    assert bt.bitrate == 500000
    assert bt.sample_point == 875
    assert bt.tq == bt.brp * 1_000_000_000 // CLOCK


@pytest.mark.parametrize("calc", ALGORITHMS)
@pytest.mark.parametrize("bitrate", BITRATES)
def test_result_within_limits(calc, bitrate):
    bt = calc(CLOCK, BitTiming(bitrate=bitrate), SJA1000)
    tseg1 = bt.prop_seg + bt.phase_seg1
    assert SJA1000.tseg1_min <= tseg1 <= SJA1000.tseg1_max
    assert SJA1000.tseg2_min <= bt.phase_seg2 <= SJA1000.tseg2_max
    assert SJA1000.brp_min <= bt.brp <= SJA1000.brp_max
    assert abs(bt.bitrate - bitrate) * 1000 // bitrate <= 50
    assert bt.bitrate == CLOCK // (bt.brp * (tseg1 + bt.phase_seg2 + 1))


@pytest.mark.parametrize("calc", ALGORITHMS)
@pytest.mark.parametrize("bitrate", BITRATES)
def test_fixup_round_trip(calc, bitrate):
    bt = calc(CLOCK, BitTiming(bitrate=bitrate), SJA1000)
    ref = BitTiming(
        tq=bt.tq,
        prop_seg=bt.prop_seg,
        phase_seg1=bt.phase_seg1,
        phase_seg2=bt.phase_seg2,
        sjw=bt.sjw,
    )
    fixed = fixup_bittiming(CLOCK, ref, SJA1000)
    assert fixed.brp == bt.brp
    assert fixed.bitrate == bt.bitrate
    assert fixed.sample_point == bt.sample_point


def test_v2_6_31_ignores_requested_sjw():
    bt = calc_bittiming_v2_6_31(CLOCK, BitTiming(bitrate=500000, sjw=3), SJA1000)
    assert bt.sjw == 1


def test_v3_18_keeps_requested_sjw_within_bounds():
    bt = calc_bittiming_v3_18(CLOCK, BitTiming(bitrate=125000, sjw=10), SJA1000)
    assert bt.sjw <= SJA1000.sjw_max
    assert bt.sjw <= bt.phase_seg2
    assert bt.sjw >= 1


def test_v3_18_defaults_sjw_to_one():
    bt = calc_bittiming_v3_18(CLOCK, BitTiming(bitrate=500000), SJA1000)
    assert bt.sjw == 1


def test_requested_sample_point_is_used():
    bt = calc_bittiming_v3_18(CLOCK, BitTiming(bitrate=500000, sample_point=750), SJA1000)
    assert bt.sample_point <= 875
    assert bt.bitrate == 500000
    assert abs(bt.sample_point - 750) < abs(bt.sample_point - 875) or bt.sample_point == 750


@pytest.mark.parametrize("calc", ALGORITHMS)
def test_bitrate_not_possible(calc):
    with pytest.raises(BitrateNotPossible):
        calc(1000, BitTiming(bitrate=1000000), SJA1000)


def test_bitrate_not_possible_is_bittiming_error():
    with pytest.raises(BitTimingError):
        calc_bittiming_v2_6_31(1000, BitTiming(bitrate=1000000), SJA1000)


def test_zero_bitrate_rejected():
    with pytest.raises(ValueError):
        calc_bittiming_v3_18(CLOCK, BitTiming(bitrate=0), SJA1000)


def test_fixup_sjw_too_large():
    ref = BitTiming(tq=125, prop_seg=6, phase_seg1=7, phase_seg2=2, sjw=5)
    with pytest.raises(ParameterRangeError):
        fixup_bittiming(CLOCK, ref, SJA1000)


def test_fixup_tseg1_out_of_range():
    ref = BitTiming(tq=125, prop_seg=10, phase_seg1=10, phase_seg2=2)
    with pytest.raises(ParameterRangeError):
        fixup_bittiming(CLOCK, ref, SJA1000)


def test_fixup_phase_seg2_out_of_range():
    ref = BitTiming(tq=125, prop_seg=6, phase_seg1=7, phase_seg2=9)
    with pytest.raises(ParameterRangeError):
        fixup_bittiming(CLOCK, ref, SJA1000)


def test_fixup_brp_out_of_range():
    ref = BitTiming(tq=125 * 100, prop_seg=6, phase_seg1=7, phase_seg2=2)
    with pytest.raises(ParameterRangeError):
        fixup_bittiming(CLOCK, ref, SJA1000)


def test_fixup_sets_default_sjw_and_keeps_tq():
    ref = BitTiming(tq=125, prop_seg=6, phase_seg1=7, phase_seg2=2)
    fixed = fixup_bittiming(CLOCK, ref, SJA1000)
    assert fixed.sjw == 1
    assert fixed.tq == 125
    assert fixed.bitrate == 500000
    assert fixed.sample_point == 875