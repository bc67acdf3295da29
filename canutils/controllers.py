"""CAN controller bit-timing limits, reference clocks and register formatters.

Each formatter renders the controller specific bit-timing register value for
a :class:`~canutils.bittiming.BitTiming`, or the column header for that value
when ``header`` is true.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

from canutils.bittiming import BitTiming, BitTimingConst

_U32_MASK = 0xFFFFFFFF

BtrFormatter = Callable[[BitTiming, bool], str]


def _u32(value: int) -> int:
    return value & _U32_MASK


@dataclass(frozen=True)
class RefClock:
    """A CAN system clock frequency in Hz with an optional description."""

    clk: int
    name: Optional[str] = None


def format_btr_nop(bt: BitTiming, header: bool) -> str:
    """Formatter for controllers without a known register layout."""
    return ""


def format_btr_rcar_can(bt: BitTiming, header: bool) -> str:
    """Render the R-Car CAN CiBCR register."""
    if header:
        return f"{'CiBCR':>10}"
    bcr = (
        ((_u32(bt.phase_seg1 + bt.prop_seg - 1) & 0x0F) << 20)
        | ((_u32(bt.brp - 1) & 0x3FF) << 8)
        | ((_u32(bt.sjw - 1) & 0x3) << 4)
        | (_u32(bt.phase_seg2 - 1) & 0x07)
    )
    return f"0x{_u32(bcr << 8):08x}"


def format_btr_mcp251x(bt: BitTiming, header: bool) -> str:
    """Render the MCP251x CNF1, CNF2 and CNF3 registers."""
    if header:
        return "CNF1 CNF2 CNF3"
    cnf1 = ((_u32(bt.sjw - 1) << 6) | _u32(bt.brp - 1)) & 0xFF
    cnf2 = (0x80 | (_u32(bt.phase_seg1 - 1) << 3) | _u32(bt.prop_seg - 1)) & 0xFF
    cnf3 = _u32(bt.phase_seg2 - 1) & 0xFF
    return f"0x{cnf1:02x} 0x{cnf2:02x} 0x{cnf3:02x}"


def format_btr_mcp251xfd(bt: BitTiming, header: bool) -> str:
    """Render the MCP251xFD NBTCFG register."""
    if header:
        return f"{'NBTCFG':>10}"
    nbtcfg = _u32(
        _u32(_u32(bt.brp - 1) << 24)
        | _u32(_u32(bt.prop_seg + bt.phase_seg1 - 1) << 16)
        | _u32(_u32(bt.phase_seg2 - 1) << 8)
        | _u32(bt.sjw - 1)
    )
    return f"0x{nbtcfg:08x}"


def format_btr_bxcan(bt: BitTiming, header: bool) -> str:
    """Render the bxCAN CAN_BTR register."""
    if header:
        return f"{'CAN_BTR':>10}"
    btr = (
        (_u32(bt.brp - 1) & 0x3FF)
        | ((_u32(bt.prop_seg + bt.phase_seg1 - 1) & 0xF) << 16)
        | ((_u32(bt.phase_seg2 - 1) & 0x7) << 20)
        | ((_u32(bt.sjw - 1) & 0x3) << 24)
    )
    return f"0x{btr:08x}"


def format_btr_at91(bt: BitTiming, header: bool) -> str:
    """Render the AT91 CAN_BR register."""
    if header:
        return f"{'CAN_BR':>10}"
    br = _u32(
        _u32(bt.phase_seg2 - 1)
        | _u32(_u32(bt.phase_seg1 - 1) << 4)
        | _u32(_u32(bt.prop_seg - 1) << 8)
        | _u32(_u32(bt.sjw - 1) << 12)
        | _u32(_u32(bt.brp - 1) << 16)
    )
    return f"0x{br:08x}"


def format_btr_c_can(bt: BitTiming, header: bool) -> str:
    """Render the C_CAN BTR and BRPEXT registers."""
    if header:
        return f"{'BTR BRPEXT':>13}"
    btr = (
        (_u32(bt.brp - 1) & 0x3F)
        | ((_u32(bt.sjw - 1) & 0x3) << 6)
        | ((_u32(bt.prop_seg + bt.phase_seg1 - 1) & 0xF) << 8)
        | ((_u32(bt.phase_seg2 - 1) & 0x7) << 12)
    )
    brpext = (_u32(bt.brp - 1) >> 6) & 0xF
    return f"0x{btr:04x} 0x{brpext:04x}"


def format_btr_flexcan(bt: BitTiming, header: bool) -> str:
    """Render the FlexCAN CAN_CTRL register."""
    if header:
        return f"{'CAN_CTRL':>10}"
    ctrl = _u32(
        _u32(_u32(bt.brp - 1) << 24)
        | _u32(_u32(bt.sjw - 1) << 22)
        | _u32(_u32(bt.phase_seg1 - 1) << 19)
        | _u32(_u32(bt.phase_seg2 - 1) << 16)
        | _u32(bt.prop_seg - 1)
    )
    return f"0x{ctrl:08x}"


def format_btr_mcan(bt: BitTiming, header: bool) -> str:
    """Render the M_CAN NBTP register."""
    if header:
        return f"{'NBTP':>10}"
    nbtp = _u32(
        ((_u32(bt.brp - 1) & 0x1FF) << 16)
        | ((_u32(bt.sjw - 1) & 0x7F) << 25)
        | ((_u32(bt.prop_seg + bt.phase_seg1 - 1) & 0xFF) << 8)
        | (_u32(bt.phase_seg2 - 1) & 0x7F)
    )
    return f"0x{nbtp:08x}"


def format_btr_sja1000(bt: BitTiming, header: bool) -> str:
    """Render the SJA1000 BTR0 and BTR1 registers."""
    if header:
        return f"{'BTR0 BTR1':>9}"
    btr0 = ((_u32(bt.brp - 1) & 0x3F) | ((_u32(bt.sjw - 1) & 0x3) << 6)) & 0xFF
    btr1 = (
        (_u32(bt.prop_seg + bt.phase_seg1 - 1) & 0xF)
        | ((_u32(bt.phase_seg2 - 1) & 0x7) << 4)
    ) & 0xFF
    return f"0x{btr0:02x} 0x{btr1:02x}"


def format_btr_ti_hecc(bt: BitTiming, header: bool) -> str:
    """Render the TI HECC CANBTC register."""
    if header:
        return f"{'CANBTC':>10}"
    can_btc = _u32(bt.phase_seg2 - 1) & 0x7
    can_btc |= (_u32(bt.phase_seg1 + bt.prop_seg - 1) & 0xF) << 3
    can_btc |= (_u32(bt.sjw - 1) & 0x3) << 8
    can_btc |= (_u32(bt.brp - 1) & 0xFF) << 16
    return f"0x{can_btc:08x}"


@dataclass(frozen=True)
class Controller:
    """A CAN controller: arbitration and data phase limits, clocks, formatters."""

    bittiming_const: BitTimingConst
    data_bittiming_const: Optional[BitTimingConst] = None
    ref_clks: tuple[RefClock, ...] = ()
    format_btr: Optional[BtrFormatter] = None
    format_data_btr: Optional[BtrFormatter] = None

    @property
    def name(self) -> str:
        """The controller's name."""
        return self.bittiming_const.name


def _btc(name: str, tseg1_min: int, tseg1_max: int, tseg2_min: int,
         tseg2_max: int, sjw_max: int, brp_min: int, brp_max: int,
         brp_inc: int = 1) -> BitTimingConst:
    return BitTimingConst(
        name=name,
        tseg1_min=tseg1_min,
        tseg1_max=tseg1_max,
        tseg2_min=tseg2_min,
        tseg2_max=tseg2_max,
        sjw_max=sjw_max,
        brp_min=brp_min,
        brp_max=brp_max,
        brp_inc=brp_inc,
    )


_CIA = "CIA recommendation"
_CIA_CLOCKS = (RefClock(20_000_000, _CIA), RefClock(40_000_000, _CIA))

# PEAK CAN FD register field widths
_PUCAN_TSLOW_BRP_BITS = 10
_PUCAN_TSLOW_TSGEG1_BITS = 8
_PUCAN_TSLOW_TSGEG2_BITS = 7
_PUCAN_TSLOW_SJW_BITS = 7
_PUCAN_TFAST_BRP_BITS = 10
_PUCAN_TFAST_TSGEG1_BITS = 5
_PUCAN_TFAST_TSGEG2_BITS = 4
_PUCAN_TFAST_SJW_BITS = 4


def _pucan(name: str) -> tuple[BitTimingConst, BitTimingConst]:
    slow = _btc(name, 1, 1 << _PUCAN_TSLOW_TSGEG1_BITS, 1,
                1 << _PUCAN_TSLOW_TSGEG2_BITS, 1 << _PUCAN_TSLOW_SJW_BITS,
                1, 1 << _PUCAN_TSLOW_BRP_BITS)
    fast = _btc(name, 1, 1 << _PUCAN_TFAST_TSGEG1_BITS, 1,
                1 << _PUCAN_TFAST_TSGEG2_BITS, 1 << _PUCAN_TFAST_SJW_BITS,
                1, 1 << _PUCAN_TFAST_BRP_BITS)
    return slow, fast


_PCAN_USB_FD = _pucan("pcan_usb_fd")
_PEAK_CANFD = _pucan("peak_canfd")

# GRCAN configuration register limits
_GRCAN_CONF_PS1_MIN = 1
_GRCAN_CONF_PS1_MAX = 15
_GRCAN_CONF_PS2_MIN = 2
_GRCAN_CONF_PS2_MAX = 8
_GRCAN_CONF_RSJ_MAX = 4
_GRCAN_CONF_SCALER_MIN = 0
_GRCAN_CONF_SCALER_MAX = 255
_GRCAN_CONF_SCALER_INC = 1

CONTROLLERS: tuple[Controller, ...] = (
    Controller(
        _btc("rcar_can", 4, 16, 2, 8, 4, 1, 1024),
        ref_clks=(RefClock(65_000_000),),
        format_btr=format_btr_rcar_can,
    ),
    Controller(
        _btc("rcar_canfd", 2, 128, 2, 32, 32, 1, 1024),
        _btc("rcar_canfd", 2, 16, 2, 8, 8, 1, 256),
        ref_clks=_CIA_CLOCKS,
    ),
    Controller(
        _btc("rcar_canfd (CC)", 4, 16, 2, 8, 4, 1, 1024),
    ),
    Controller(
        _btc("hi311x", 2, 16, 2, 8, 4, 1, 64),
        ref_clks=(RefClock(24_000_000),),
    ),
    Controller(
        _btc("mcp251x", 3, 16, 2, 8, 4, 1, 64),
        # the mcp251x uses half of the external oscillator as base clock
        ref_clks=(
            RefClock(8_000_000 // 2, "8 MHz OSC"),
            RefClock(12_000_000 // 2, "12 MHz OSC"),
            RefClock(16_000_000 // 2, "16 MHz OSC"),
            RefClock(20_000_000 // 2, "20 MHz OSC"),
        ),
        format_btr=format_btr_mcp251x,
    ),
    Controller(
        _btc("mcp251xfd", 2, 256, 1, 128, 128, 1, 256),
        _btc("mcp251xfd", 1, 32, 1, 16, 16, 1, 256),
        ref_clks=_CIA_CLOCKS,
        format_btr=format_btr_mcp251xfd,
    ),
    Controller(
        _btc("usb_8dev", 1, 16, 1, 8, 4, 1, 1024),
        ref_clks=(RefClock(32_000_000),),
    ),
    Controller(
        _btc("ems_usb", 1, 16, 1, 8, 4, 1, 64),
        ref_clks=(RefClock(8_000_000),),
    ),
    Controller(
        _btc("esd_usb2", 1, 16, 1, 8, 4, 1, 1024),
        ref_clks=(
            RefClock(60_000_000, "CAN-USB/2"),
            RefClock(36_000_000, "CAN-USB/Micro"),
        ),
    ),
    Controller(
        _btc("bxcan", 1, 16, 1, 8, 4, 1, 1024),
        ref_clks=(RefClock(48_000_000),),
        format_btr=format_btr_bxcan,
    ),
    Controller(
        _btc("CANtact Pro", 1, 16, 1, 8, 4, 1, 1024),
        _btc("CANtact Pro", 1, 16, 1, 8, 4, 1, 1024),
        ref_clks=(
            RefClock(24_000_000, "CANtact Pro (original)"),
            RefClock(40_000_000, _CIA),
        ),
    ),
    Controller(
        _btc("kvaser_usb", 1, 16, 1, 8, 4, 1, 64),
        ref_clks=(RefClock(8_000_000),),
    ),
    Controller(
        _btc("kvaser_usb_kcan", 1, 255, 1, 32, 16, 1, 8192),
        _btc("kvaser_usb_kcan", 1, 255, 1, 32, 16, 1, 8192),
        ref_clks=(RefClock(80_000_000),),
    ),
    Controller(
        _btc("kvaser_usb_flex", 4, 16, 2, 8, 4, 1, 256),
        ref_clks=(RefClock(24_000_000),),
    ),
    Controller(
        _btc("pcan_usb_pro", 1, 16, 1, 8, 4, 1, 1024),
        ref_clks=(RefClock(56_000_000),),
    ),
    Controller(
        _PCAN_USB_FD[0],
        _PCAN_USB_FD[1],
        ref_clks=(RefClock(80_000_000),),
    ),
    Controller(
        _btc("softing", 1, 16, 1, 8, 4, 1, 32),
        ref_clks=(RefClock(8_000_000), RefClock(16_000_000)),
    ),
    Controller(
        _btc("at91", 4, 16, 2, 8, 4, 2, 128),
        ref_clks=(RefClock(99_532_800, "ronetix PM9263"), RefClock(100_000_000)),
        format_btr=format_btr_at91,
    ),
    Controller(
        _btc("cc770", 1, 16, 1, 8, 4, 1, 64),
        ref_clks=(RefClock(8_000_000),),
    ),
    Controller(
        _btc("c_can", 2, 16, 1, 8, 4, 1, 1024),
        ref_clks=(RefClock(24_000_000),),
        format_btr=format_btr_c_can,
    ),
    Controller(
        _btc("flexcan", 4, 16, 2, 8, 4, 1, 256),
        ref_clks=(
            RefClock(24_000_000, "mx28"),
            RefClock(30_000_000, "mx6"),
            RefClock(49_875_000),
            RefClock(66_000_000),
            RefClock(66_500_000, "mx25"),
            RefClock(66_666_666),
            RefClock(83_368_421, "vybrid"),
        ),
        format_btr=format_btr_flexcan,
    ),
    Controller(
        _btc("flexcan-fd", 2, 96, 2, 32, 16, 1, 1024),
        _btc("flexcan-fd", 2, 39, 2, 8, 4, 1, 1024),
        ref_clks=_CIA_CLOCKS,
    ),
    Controller(
        _btc("grcan",
             _GRCAN_CONF_PS1_MIN + 1, _GRCAN_CONF_PS1_MAX + 1,
             _GRCAN_CONF_PS2_MIN, _GRCAN_CONF_PS2_MAX,
             _GRCAN_CONF_RSJ_MAX,
             _GRCAN_CONF_SCALER_MIN + 1, _GRCAN_CONF_SCALER_MAX + 1,
             _GRCAN_CONF_SCALER_INC),
    ),
    Controller(
        _btc("ifi_canfd", 1, 256, 2, 256, 128, 2, 512),
        _btc("ifi_canfd", 1, 256, 2, 256, 128, 2, 512),
        ref_clks=_CIA_CLOCKS,
    ),
    Controller(
        _btc("janz-ican3", 1, 16, 1, 8, 4, 1, 64),
        ref_clks=(RefClock(8_000_000),),
    ),
    Controller(
        _btc("kvaser_pciefd", 1, 512, 1, 32, 16, 1, 8192),
        _btc("kvaser_pciefd", 1, 512, 1, 32, 16, 1, 8192),
        ref_clks=_CIA_CLOCKS,
    ),
    Controller(
        _btc("mscan", 4, 16, 2, 8, 4, 1, 64),
        ref_clks=(
            RefClock(32_000_000),
            RefClock(33_000_000),
            RefClock(33_300_000),
            RefClock(33_333_333),
            RefClock(66_660_000, "mpc5121"),
            RefClock(66_666_666, "mpc5121"),
        ),
    ),
    Controller(
        _btc("mcan-v3.0", 2, 64, 1, 16, 16, 1, 1024),
        _btc("mcan-v3.0", 2, 16, 1, 8, 4, 1, 32),
        ref_clks=_CIA_CLOCKS,
        format_btr=format_btr_mcan,
    ),
    Controller(
        _btc("mcan-v3.1+", 2, 256, 2, 128, 128, 1, 512),
        _btc("mcan-v3.1+", 1, 32, 1, 16, 16, 1, 32),
        ref_clks=_CIA_CLOCKS + (
            RefClock(24_000_000, "stm32mp1 - ck_hse"),
            RefClock(24_573_875, "stm32mp1 - pll3_q"),
            RefClock(29_700_000, "stm32mp1 - pll4_q"),
            RefClock(48_000_000, "stm32mp1 lxatac (new)"),
            RefClock(60_000_000, "stm32mp1 ecu02.5- pll4_r"),
            RefClock(62_500_000, "stm32mp1 lxatac (old) - pll4_r"),
            RefClock(74_250_000, "stm32mp1 - pll4_r"),
        ),
        format_btr=format_btr_mcan,
    ),
    Controller(
        _PEAK_CANFD[0],
        _PEAK_CANFD[1],
        ref_clks=(
            RefClock(20_000_000),
            RefClock(24_000_000),
            RefClock(30_000_000),
            RefClock(40_000_000),
            RefClock(60_000_000),
            RefClock(80_000_000),
        ),
    ),
    Controller(
        _btc("sja1000", 1, 16, 1, 8, 4, 1, 64),
        ref_clks=(RefClock(16_000_000 // 2), RefClock(24_000_000 // 2, "f81601")),
        format_btr=format_btr_sja1000,
    ),
    Controller(
        _btc("sun4i_can", 1, 16, 1, 8, 4, 1, 64),
    ),
    Controller(
        _btc("ti_hecc", 1, 16, 1, 8, 4, 1, 256),
        ref_clks=(RefClock(13_000_000),),
        format_btr=format_btr_ti_hecc,
    ),
    Controller(
        _btc("xilinx_can", 1, 16, 1, 8, 4, 1, 256),
    ),
    Controller(
        _btc("xilinx_can_fd", 1, 64, 1, 16, 16, 1, 256),
        _btc("xilinx_can_fd", 1, 16, 1, 8, 8, 1, 256),
        ref_clks=_CIA_CLOCKS,
    ),
    Controller(
        _btc("xilinx_can_fd2", 1, 256, 1, 128, 128, 2, 256),
        _btc("xilinx_can_fd2", 1, 32, 1, 16, 16, 2, 256),
        ref_clks=_CIA_CLOCKS + (
            RefClock(79_999_999, "Versal ACAP"),
            RefClock(80_000_000, "Versal ACAP"),
        ),
    ),
)

COMMON_BITRATES: tuple[int, ...] = (
    1_000_000, 800_000, 666_666, 500_000, 250_000, 125_000,
    100_000, 83_333, 50_000, 33_333, 20_000, 10_000,
)

COMMON_DATA_BITRATES: tuple[int, ...] = (
    12_000_000, 10_000_000, 8_000_000, 5_000_000, 4_000_000, 2_000_000, 1_000_000,
)


def find_controllers(name: Optional[str]) -> list[Controller]:
    """Return the controllers whose arbitration or data limits carry ``name``.

    With ``name`` of None every controller is returned.
    """
    if name is None:
        return list(CONTROLLERS)
    matches = []
    for controller in CONTROLLERS:
        data_name = (controller.data_bittiming_const.name
                     if controller.data_bittiming_const else "")
        if name in (controller.bittiming_const.name, data_name):
            matches.append(controller)
    return matches


def controller_names() -> list[str]:
    """Return the names of all known controllers in table order."""
    return [controller.bittiming_const.name for controller in CONTROLLERS]