"""CMSIS-DAP command identifiers, protocol flags and probe configuration."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum, IntFlag

FIRMWARE_VERSION = "2.0.0"
FIRMWARE_VERSION_V1 = "1.2.0"

# Status codes carried in the first byte of many responses.
DAP_OK = 0x00
DAP_ERROR = 0xFF

# DAP_Info identifiers.
ID_VENDOR = 1
ID_PRODUCT = 2
ID_SER_NUM = 3
ID_FW_VER = 4
ID_DEVICE_VENDOR = 5
ID_DEVICE_NAME = 6
ID_CAPABILITIES = 0xF0
ID_TIMESTAMP_CLOCK = 0xF1
ID_SWO_BUFFER_SIZE = 0xFD
ID_PACKET_COUNT = 0xFE
ID_PACKET_SIZE = 0xFF

# Host status types.
DEBUGGER_CONNECTED = 0
TARGET_RUNNING = 1

# Debug ports.
PORT_AUTODETECT = 0
PORT_DISABLED = 0
PORT_SWD = 1
PORT_JTAG = 2

# SWJ pin bit positions.
SWJ_SWCLK_TCK = 0
SWJ_SWDIO_TMS = 1
SWJ_TDI = 2
SWJ_TDO = 3
SWJ_NTRST = 5
SWJ_NRESET = 7

# SWO trace modes.
SWO_OFF = 0
SWO_UART = 1
SWO_MANCHESTER = 2

# Debug port register addresses.
DP_IDCODE = 0x00
DP_ABORT = 0x00
DP_CTRL_STAT = 0x04
DP_WCR = 0x04
DP_SELECT = 0x08
DP_RESEND = 0x08
DP_RDBUFF = 0x0C

# JTAG instruction register codes.
JTAG_ABORT = 0x08
JTAG_DPACC = 0x0A
JTAG_APACC = 0x0B
JTAG_IDCODE = 0x0E
JTAG_BYPASS = 0x0F

# Sequence info bit fields.
JTAG_SEQUENCE_TCK = 0x3F
JTAG_SEQUENCE_TMS = 0x40
JTAG_SEQUENCE_TDO = 0x80
SWD_SEQUENCE_CLK = 0x3F
SWD_SEQUENCE_DIN = 0x80

# Clock delay tuning.
DELAY_SLOW_CYCLES = 3
DELAY_FAST_CYCLES = 0


class CommandId(IntEnum):
    """Command identifiers found in the first byte of a DAP request."""

    INFO = 0x00
    HOST_STATUS = 0x01
    CONNECT = 0x02
    DISCONNECT = 0x03
    TRANSFER_CONFIGURE = 0x04
    TRANSFER = 0x05
    TRANSFER_BLOCK = 0x06
    TRANSFER_ABORT = 0x07
    WRITE_ABORT = 0x08
    DELAY = 0x09
    RESET_TARGET = 0x0A
    SWJ_PINS = 0x10
    SWJ_CLOCK = 0x11
    SWJ_SEQUENCE = 0x12
    SWD_CONFIGURE = 0x13
    JTAG_SEQUENCE = 0x14
    JTAG_CONFIGURE = 0x15
    JTAG_IDCODE = 0x16
    SWO_TRANSPORT = 0x17
    SWO_MODE = 0x18
    SWO_BAUDRATE = 0x19
    SWO_CONTROL = 0x1A
    SWO_STATUS = 0x1B
    SWO_DATA = 0x1C
    SWD_SEQUENCE = 0x1D
    SWO_EXTENDED_STATUS = 0x1E
    QUEUE_COMMANDS = 0x7E
    EXECUTE_COMMANDS = 0x7F
    VENDOR0 = 0x80
    VENDOR1 = 0x81
    VENDOR2 = 0x82
    VENDOR3 = 0x83
    VENDOR4 = 0x84
    VENDOR5 = 0x85
    VENDOR6 = 0x86
    VENDOR7 = 0x87
    VENDOR8 = 0x88
    VENDOR9 = 0x89
    VENDOR10 = 0x8A
    VENDOR11 = 0x8B
    VENDOR12 = 0x8C
    VENDOR13 = 0x8D
    VENDOR14 = 0x8E
    VENDOR15 = 0x8F
    VENDOR16 = 0x90
    VENDOR17 = 0x91
    VENDOR18 = 0x92
    VENDOR19 = 0x93
    VENDOR20 = 0x94
    VENDOR21 = 0x95
    VENDOR22 = 0x96
    VENDOR23 = 0x97
    VENDOR24 = 0x98
    VENDOR25 = 0x99
    VENDOR26 = 0x9A
    VENDOR27 = 0x9B
    VENDOR28 = 0x9C
    VENDOR29 = 0x9D
    VENDOR30 = 0x9E
    VENDOR31 = 0x9F
    INVALID = 0xFF


class TransferRequest(IntFlag):
    """Bits of a transfer request byte."""

    APnDP = 1 << 0
    RnW = 1 << 1
    A2 = 1 << 2
    A3 = 1 << 3
    MATCH_VALUE = 1 << 4
    MATCH_MASK = 1 << 5
    TIMESTAMP = 1 << 7


class TransferResponse(IntFlag):
    """Bits of a transfer response byte."""

    OK = 1 << 0
    WAIT = 1 << 1
    FAULT = 1 << 2
    ERROR = 1 << 3
    MISMATCH = 1 << 4


class SwoStatus(IntFlag):
    """SWO trace status bits."""

    CAPTURE_ACTIVE = 1 << 0
    CAPTURE_PAUSED = 1 << 1
    STREAM_ERROR = 1 << 6
    BUFFER_OVERRUN = 1 << 7


class ResetSignal(IntEnum):
    """Signals asking the DAP worker to rebuild or drop its packet buffers."""

    NO_SIGNAL = 0
    RESET_HANDLE = 1
    DELETE_HANDLE = 2


def parity_even_u32(value) -> int:
    """Even-parity bit of a 32-bit word: 1 when it has an odd number of set bits."""
    return bin(value & 0xFFFFFFFF).count("1") & 1


def parity_even_u8(value) -> int:
    """Even-parity bit of a byte: 1 when it has an odd number of set bits."""
    return bin(value & 0xFF).count("1") & 1


@dataclass(frozen=True)
class DapConfig:
    """Build-time options of the probe.

    ``use_winusb`` selects WinUSB (bulk) framing instead of HID, ``use_spi_sio``
    drives SWDIO over a single SPI data line, and ``use_usb_3_0`` selects
    SuperSpeed endpoint sizes.
    """

    use_winusb: bool = True
    use_spi_sio: bool = True
    use_usb_3_0: bool = False

    def endpoint_size(self) -> int:
        """Maximum USB bulk endpoint packet size in bytes."""
        return 1024 if self.use_usb_3_0 else 512

    def packet_size(self) -> int:
        """Maximum size of one DAP command or response packet in bytes."""
        return 512 if self.use_winusb else 255