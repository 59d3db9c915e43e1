#
# Python pcitree library
# Configuration space register layout
#
# (c) 2025 Steven Noonan
# Licensed under the MIT license
#
from __future__ import annotations

import enum

# fmt: off
# Common header (all layouts)
VENDOR_ID            = 0x00
DEVICE_ID            = 0x02
COMMAND              = 0x04
STATUS               = 0x06
REVISION_ID          = 0x08
CLASS_PROG           = 0x09
CLASS_DEVICE         = 0x0A
CACHE_LINE_SIZE      = 0x0C
LATENCY_TIMER        = 0x0D
HEADER_TYPE          = 0x0E
BIST                 = 0x0F
INTERRUPT_LINE       = 0x3C
INTERRUPT_PIN        = 0x3D

HEADER_TYPE_MULTIFUNCTION = 0x80
HEADER_TYPE_LAYOUT_MASK   = 0x7F

# Header type 0 (normal device)
BASE_ADDRESS_0       = 0x10
SUBSYSTEM_VENDOR_ID  = 0x2C
SUBSYSTEM_ID         = 0x2E
ROM_ADDRESS          = 0x30
MIN_GNT              = 0x3E
MAX_LAT              = 0x3F

# Header type 1 (PCI-to-PCI bridge)
PRIMARY_BUS          = 0x18
SECONDARY_BUS        = 0x19
SUBORDINATE_BUS      = 0x1A
SEC_LATENCY_TIMER    = 0x1B
IO_BASE              = 0x1C
IO_LIMIT             = 0x1D
SEC_STATUS           = 0x1E
MEMORY_BASE          = 0x20
MEMORY_LIMIT         = 0x22
PREF_MEMORY_BASE     = 0x24
PREF_MEMORY_LIMIT    = 0x26
PREF_BASE_UPPER32    = 0x28
PREF_LIMIT_UPPER32   = 0x2C
IO_BASE_UPPER16      = 0x30
IO_LIMIT_UPPER16     = 0x32
ROM_ADDRESS1         = 0x38
BRIDGE_CONTROL       = 0x3E

IO_RANGE_TYPE_MASK   = 0x0F
IO_RANGE_TYPE_16     = 0x00
IO_RANGE_TYPE_32     = 0x01
IO_RANGE_MASK        = 0xF0
MEMORY_RANGE_TYPE_MASK = 0x0F
MEMORY_RANGE_MASK    = 0xFFF0
PREF_RANGE_TYPE_MASK = 0x0F
PREF_RANGE_TYPE_32   = 0x00
PREF_RANGE_TYPE_64   = 0x01
PREF_RANGE_MASK      = 0xFFF0

# Header type 2 (CardBus bridge)
CB_SEC_STATUS        = 0x16
CB_PRIMARY_BUS       = 0x18
CB_CARD_BUS          = 0x19
CB_SUBORDINATE_BUS   = 0x1A
CB_LATENCY_TIMER     = 0x1B
CB_MEMORY_BASE_0     = 0x1C
CB_MEMORY_LIMIT_0    = 0x20
CB_IO_BASE_0         = 0x2C
CB_IO_LIMIT_0        = 0x30
CB_BRIDGE_CONTROL    = 0x3E
CB_SUBSYSTEM_VENDOR_ID = 0x40  # beyond the first 64 bytes
CB_SUBSYSTEM_ID      = 0x42
CB_LEGACY_MODE_BASE  = 0x44
CB_IO_RANGE_MASK     = ~0x03 & 0xFFFFFFFF

# Base address registers
BASE_ADDRESS_SPACE_IO     = 0x01
BASE_ADDRESS_MEM_TYPE_MASK = 0x06
BASE_ADDRESS_MEM_PREFETCH = 0x08
BASE_ADDRESS_MEM_MASK     = ~0x0F
BASE_ADDRESS_IO_MASK      = ~0x03
ROM_ADDRESS_ENABLE        = 0x01
ROM_ADDRESS_MASK          = ~0x7FF

# Class codes (upper 16 bits of the 24-bit class)
BASE_CLASS_BRIDGE    = 0x06
CLASS_BRIDGE_PCI     = 0x0604

STATUS_DEVSEL_MASK   = 0x0600
STATUS_DEVSEL_FAST   = 0x0000
STATUS_DEVSEL_MEDIUM = 0x0200
STATUS_DEVSEL_SLOW   = 0x0400

BIST_CODE_MASK       = 0x0F
# fmt: on


class HeaderType(enum.IntEnum):
    NORMAL = 0
    BRIDGE = 1
    CARDBUS = 2


class MemType(enum.IntEnum):
    BITS_32 = 0x00
    LOW_1M = 0x02
    BITS_64 = 0x04
    RESERVED = 0x06


class Command(enum.IntFlag):
    # fmt: off
    IO          = 0x001
    MEMORY      = 0x002
    MASTER      = 0x004
    SPECIAL     = 0x008
    INVALIDATE  = 0x010
    VGA_PALETTE = 0x020
    PARITY      = 0x040
    WAIT        = 0x080
    SERR        = 0x100
    FAST_BACK   = 0x200
    # fmt: on


class Status(enum.IntFlag):
    # fmt: off
    CAP_LIST          = 0x0010
    MHZ_66            = 0x0020
    UDF               = 0x0040
    FAST_BACK         = 0x0080
    PARITY            = 0x0100
    SIG_TARGET_ABORT  = 0x0800
    REC_TARGET_ABORT  = 0x1000
    REC_MASTER_ABORT  = 0x2000
    SIG_SYSTEM_ERROR  = 0x4000
    DETECTED_PARITY   = 0x8000
    # fmt: on


class BridgeControl(enum.IntFlag):
    # fmt: off
    PARITY       = 0x01
    SERR         = 0x02
    NO_ISA       = 0x04
    VGA          = 0x08
    MASTER_ABORT = 0x20
    BUS_RESET    = 0x40
    FAST_BACK    = 0x80
    # fmt: on


class CardbusBridgeControl(enum.IntFlag):
    # fmt: off
    PARITY        = 0x001
    SERR          = 0x002
    ISA           = 0x004
    VGA           = 0x008
    MASTER_ABORT  = 0x020
    CB_RESET      = 0x040
    INT_16BIT     = 0x080
    PREFETCH_MEM0 = 0x100
    PREFETCH_MEM1 = 0x200
    POST_WRITES   = 0x400
    # fmt: on


class Bist(enum.IntFlag):
    START = 0x40
    CAPABLE = 0x80


def flag_char(flags: enum.Flag, bit: enum.Flag) -> str:
    return "+" if flags & bit else "-"
