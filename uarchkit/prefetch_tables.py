"""Table entries, constants and index functions of the hybrid L1D prefetcher.

The prefetcher combines three engines: a next-line engine (NL), a delta
history engine (DHT) made of an address history table (AHT) and a pattern
history table (PHT), and a region prefetcher (RP). The entries below keep
the field widths of the hardware tables: every stored field wraps to its
bit width, as a bit field would.
"""

from __future__ import annotations

from enum import Enum, IntEnum

_U32 = (1 << 32) - 1
_U64 = (1 << 64) - 1

MAX_PQ_SIZE = 8
LOG2_CACHE_LINE_SIZE = 6

DHT_AHT_INDEX_BITS = 9
DHT_AHT_NUM_ENTRIES = 1 << DHT_AHT_INDEX_BITS
DHT_AHT_TAG_INITIAL_SHIFT = DHT_AHT_INDEX_BITS
DHT_AHT_DELTA_HISTORY_SIZE = 3
DHT_PHT_INDEX_BITS = 11
DHT_PHT_NUM_ENTRIES = 1 << DHT_PHT_INDEX_BITS
DHT_PHT_CONFIDENCE_MAX = 3

RP_LINES_PER_REGION_LOG2 = 3
RP_LINES_PER_REGION = 1 << RP_LINES_PER_REGION_LOG2
RP_REGION_MASK = RP_LINES_PER_REGION - 1
RP_INDEX_BITS = 9
RP_NUM_SETS = 1 << RP_INDEX_BITS
RP_NUM_WAYS = 2
RP_ACCESS_DENSITY_THRESHOLD = 3


def _unsigned(value: int, bits: int) -> int:
    return value & ((1 << bits) - 1)


def _signed(value: int, bits: int) -> int:
    value &= (1 << bits) - 1
    if value >= 1 << (bits - 1):
        value -= 1 << bits
    return value


class PrefetchEngine(IntEnum):
    """Engine that issued a prefetch; the value is passed as prefetch metadata."""

    NONE = 0
    NL = 1
    DHT = 2
    RP = 3


class Phase(Enum):
    """Operating phase of the prefetcher."""

    EXPLORE = "explore"
    EXPLOIT = "exploit"


class AddressHistoryEntry:
    """AHT entry: per-PC last block and the three most recent deltas."""

    __slots__ = ("_tag", "_last_accessed_block", "delta_history", "valid")

    def __init__(self) -> None:
        self._tag = 0
        self._last_accessed_block = 0
        self.delta_history = [0] * DHT_AHT_DELTA_HISTORY_SIZE
        self.valid = False

    @property
    def tag(self) -> int:
        """16-bit PC tag."""
        return self._tag

    @tag.setter
    def tag(self, value: int) -> None:
        self._tag = _unsigned(value, 16)

    @property
    def last_accessed_block(self) -> int:
        """48-bit block address of the last access."""
        return self._last_accessed_block

    @last_accessed_block.setter
    def last_accessed_block(self, value: int) -> None:
        self._last_accessed_block = _unsigned(value, 48)

    def record_new_delta(self, delta: int) -> None:
        """Push ``delta`` (as a 16-bit signed value) to the front of the history."""
        self.delta_history = [_signed(delta, 16)] + self.delta_history[:-1]

    def reset(self) -> None:
        """Return the entry to its invalid, zeroed state."""
        self._last_accessed_block = 0
        self._tag = 0
        self.valid = False
        self.delta_history = [0] * DHT_AHT_DELTA_HISTORY_SIZE

    def __repr__(self) -> str:
        return (
            f"AddressHistoryEntry(tag={self._tag}, "
            f"last_accessed_block={self._last_accessed_block}, "
            f"delta_history={self.delta_history}, valid={self.valid})"
        )


class PatternHistoryEntry:
    """PHT entry: a delta history tag and the delta predicted to follow it."""

    __slots__ = ("tag_delta_history", "_predicted_next_delta", "_confidence", "valid")

    def __init__(self) -> None:
        self.tag_delta_history = [0] * DHT_AHT_DELTA_HISTORY_SIZE
        self._predicted_next_delta = 0
        self._confidence = 0
        self.valid = False

    @property
    def predicted_next_delta(self) -> int:
        """10-bit signed predicted delta."""
        return self._predicted_next_delta

    @predicted_next_delta.setter
    def predicted_next_delta(self, value: int) -> None:
        self._predicted_next_delta = _signed(value, 10)

    @property
    def confidence(self) -> int:
        """2-bit confidence."""
        return self._confidence

    @confidence.setter
    def confidence(self, value: int) -> None:
        self._confidence = _unsigned(value, 2)

    def reset(self) -> None:
        """Return the entry to its invalid, zeroed state."""
        self._predicted_next_delta = 0
        self._confidence = 0
        self.valid = False
        self.tag_delta_history = [0] * DHT_AHT_DELTA_HISTORY_SIZE

    def __repr__(self) -> str:
        return (
            f"PatternHistoryEntry(tag_delta_history={self.tag_delta_history}, "
            f"predicted_next_delta={self._predicted_next_delta}, "
            f"confidence={self._confidence}, valid={self.valid})"
        )


class RegionEntry:
    """RP entry: a region tag with bitmaps of accessed and prefetched lines."""

    __slots__ = ("_region_address_tag", "_access_bitmap", "_prefetch_bitmap", "valid")

    def __init__(self) -> None:
        self._region_address_tag = 0
        self._access_bitmap = 0
        self._prefetch_bitmap = 0
        self.valid = False

    @property
    def region_address_tag(self) -> int:
        """40-bit region tag."""
        return self._region_address_tag

    @region_address_tag.setter
    def region_address_tag(self, value: int) -> None:
        self._region_address_tag = _unsigned(value, 40)

    @property
    def access_bitmap(self) -> int:
        """8-bit map of lines demanded in the region."""
        return self._access_bitmap

    @access_bitmap.setter
    def access_bitmap(self, value: int) -> None:
        self._access_bitmap = _unsigned(value, 8)

    @property
    def prefetch_bitmap(self) -> int:
        """8-bit map of lines already prefetched in the region."""
        return self._prefetch_bitmap

    @prefetch_bitmap.setter
    def prefetch_bitmap(self, value: int) -> None:
        self._prefetch_bitmap = _unsigned(value, 8)

    def accessed_lines(self) -> int:
        """Number of lines of the region that have been accessed."""
        return bin(self._access_bitmap).count("1")

    def reset(self) -> None:
        """Return the entry to its invalid, zeroed state."""
        self._region_address_tag = 0
        self._access_bitmap = 0
        self._prefetch_bitmap = 0
        self.valid = False

    def __repr__(self) -> str:
        return (
            f"RegionEntry(region_address_tag={self._region_address_tag}, "
            f"access_bitmap={self._access_bitmap:#010b}, "
            f"prefetch_bitmap={self._prefetch_bitmap:#010b}, valid={self.valid})"
        )


def aht_index(pc: int) -> int:
    """AHT index of a program counter."""
    return (pc & _U64) & (DHT_AHT_NUM_ENTRIES - 1)


def aht_tag(pc: int) -> int:
    """16-bit AHT tag of a program counter."""
    return ((pc & _U64) >> DHT_AHT_TAG_INITIAL_SHIFT) & 0xFFFF


def pht_index(delta_history) -> int:
    """PHT index hashed from the three most recent deltas."""
    first, second, third = (int(d) for d in delta_history)
    hashed = 1984
    hashed ^= ((first & _U32) << 5) & _U32
    hashed ^= ((second & _U32) << 11) & _U32
    hashed ^= ((third & _U32) << 17) & _U32
    hashed ^= hashed >> 16
    hashed = (hashed ^ (hashed << 5)) & _U32
    return hashed & (DHT_PHT_NUM_ENTRIES - 1)


def region_address(block_addr: int) -> int:
    """Region number containing a block address."""
    return (block_addr & _U64) >> RP_LINES_PER_REGION_LOG2


def region_offset(block_addr: int) -> int:
    """Line offset of a block address within its region."""
    return block_addr & RP_REGION_MASK


def region_set_index(region_addr: int) -> int:
    """RP set selected by a region number."""
    return region_addr & (RP_NUM_SETS - 1)


def region_tag(region_addr: int) -> int:
    """RP tag of a region number."""
    return (region_addr & _U64) >> RP_INDEX_BITS