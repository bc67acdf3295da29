import pytest

from canutils.algorithms import (
    ALGORITHMS,
    DEFAULT_ALGORITHM,
    Algorithm,
    calc_bittiming_v4_8,
    calc_bittiming_v5_16,
    calc_bittiming_v5_19,
    find_algorithm,
    update_sample_point,
)
from canutils.bittiming import (
    BitrateNotPossible,
    BitTiming,
    BitTimingConst,
    cia_sample_point,
    fixup_bittiming,
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

MCAN = BitTimingConst(
    name="mcan-v3.1+",
    tseg1_min=2,
    tseg1_max=256,
    tseg2_min=2,
    tseg2_max=128,
    sjw_max=128,
    brp_min=1,
    brp_max=512,
    brp_inc=1,
)

CALCS = [calc_bittiming_v4_8, calc_bittiming_v5_16, calc_bittiming_v5_19]


def _within_limits(bt, btc):
    tseg1 = bt.prop_seg + bt.phase_seg1
    return (
        btc.brp_min <= bt.brp <= btc.brp_max
        and btc.tseg1_min <= tseg1 <= btc.tseg1_max
        and btc.tseg2_min <= bt.phase_seg2 <= btc.tseg2_max
        and 1 <= bt.sjw <= btc.sjw_max
    )


@pytest.mark.parametrize("calc", CALCS)
def test_exact_bitrate_with_cia_sample_point(calc):
    bt = calc(8_000_000, BitTiming(bitrate=500_000), SJA1000)
    assert bt.bitrate == 500_000
    assert bt.sample_point == cia_sample_point(500_000)
    assert _within_limits(bt, SJA1000)


@pytest.mark.parametrize("calc", CALCS)
@pytest.mark.parametrize("bitrate", [1_000_000, 500_000, 250_000, 125_000])
def test_result_invariants(calc, bitrate):
    clock = 40_000_000
    bt = calc(clock, BitTiming(bitrate=bitrate), MCAN)
    assert _within_limits(bt, MCAN)
    assert bt.tq == bt.brp * 1_000_000_000 // clock
    assert bt.sample_point <= cia_sample_point(bitrate)
    alltseg = 1 + bt.prop_seg + bt.phase_seg1 + bt.phase_seg2
    assert bt.bitrate == clock // (bt.brp * alltseg)
    assert bt.prop_seg == (bt.prop_seg + bt.phase_seg1) // 2


@pytest.mark.parametrize("calc", CALCS)
def test_explicit_sample_point_not_exceeded(calc):
    bt = calc(40_000_000, BitTiming(bitrate=500_000, sample_point=700), MCAN)
    assert bt.sample_point <= 700
    assert bt.bitrate == 500_000


@pytest.mark.parametrize("calc", CALCS)
def test_unreachable_bitrate_raises(calc):
    with pytest.raises(BitrateNotPossible):
        calc(1_000_000, BitTiming(bitrate=1_000_000), SJA1000)


@pytest.mark.parametrize("calc", CALCS)
def test_zero_bitrate_rejected(calc):
    with pytest.raises(ValueError):
        calc(8_000_000, BitTiming(bitrate=0), SJA1000)


@pytest.mark.parametrize("calc", CALCS)
def test_sjw_default_is_one(calc):
    bt = calc(8_000_000, BitTiming(bitrate=250_000), SJA1000)
    assert bt.sjw == 1


@pytest.mark.parametrize("calc", CALCS)
def test_sjw_clamped(calc):
    bt = calc(8_000_000, BitTiming(bitrate=250_000, sjw=100), SJA1000)
    assert bt.sjw == min(SJA1000.sjw_max, bt.phase_seg2)


@pytest.mark.parametrize("calc", CALCS)
def test_fixup_round_trip(calc):
    clock = 40_000_000
    bt = calc(clock, BitTiming(bitrate=500_000), MCAN)
    ref = BitTiming(
        tq=bt.tq,
        prop_seg=bt.prop_seg,
        phase_seg1=bt.phase_seg1,
        phase_seg2=bt.phase_seg2,
        sjw=bt.sjw,
    )
    fixed = fixup_bittiming(clock, ref, MCAN)
    assert fixed.brp == bt.brp
    assert fixed.bitrate == bt.bitrate


def test_update_sample_point_split():
    sample_point, tseg1, tseg2, error = update_sample_point(SJA1000, 875, 15)
    assert tseg1 + tseg2 == 15
    assert sample_point <= 875
    assert error == 875 - sample_point
    assert SJA1000.tseg2_min <= tseg2 <= SJA1000.tseg2_max


def test_update_sample_point_unreachable():
    btc = BitTimingConst(
        tseg1_min=1, tseg1_max=16, tseg2_min=1, tseg2_max=2,
        sjw_max=1, brp_min=1, brp_max=1, brp_inc=1,
    )
    sample_point, tseg1, tseg2, error = update_sample_point(btc, 500, 10)
    assert sample_point == 0
    assert tseg1 is None and tseg2 is None
    assert error == 0xFFFFFFFF


def test_algorithm_table_order():
    names = ["v5.19", "v5.16", "v4.8", "v3.18", "v2.6.31"]
    found = [find_algorithm(name) for name in names]
    assert [a.name for a in found] == names
    assert found == list(ALGORITHMS)
    assert find_algorithm(DEFAULT_ALGORITHM.name).name == "v5.19"


def test_find_algorithm():
    algorithm = find_algorithm("v4.8")
    assert isinstance(algorithm, Algorithm)
    assert algorithm.calc is calc_bittiming_v4_8
    assert algorithm.fixup is fixup_bittiming


def test_find_algorithm_unknown():
    with pytest.raises(KeyError):
        find_algorithm("v1.0")


@pytest.mark.parametrize("algorithm", ALGORITHMS, ids=lambda a: a.name)
def test_every_algorithm_reaches_exact_bitrate(algorithm):
    bt = algorithm.calc(8_000_000, BitTiming(bitrate=500_000), SJA1000)
    assert bt.bitrate == 500_000
    assert _within_limits(bt, SJA1000)