"""TAGE branch predictor with a misprediction pattern cache (MPC).

The predictor has a bimodal base table and seven tagged tables, each indexed
by the branch address folded with a different length of global history. A
small pattern cache tracks branches that keep mispredicting. For those it
can override the TAGE prediction with a simple pattern-based guess.
"""

from __future__ import annotations

from dataclasses import dataclass, field

_ADDRESS_MASK = (1 << 64) - 1


class SaturatingCounter:
    """Unsigned counter of fixed width that saturates at both ends."""

    __slots__ = ("bits", "maximum", "value")

    def __init__(self, bits: int, value: int = 0) -> None:
        if bits <= 0:
            raise ValueError("counter width must be positive")
        self.bits = bits
        self.maximum = (1 << bits) - 1
        self.value = min(max(value, 0), self.maximum)

    def add(self, delta: int) -> SaturatingCounter:
        """Add ``delta`` (which may be negative), clamping to the valid range."""
        self.value = min(max(self.value + delta, 0), self.maximum)
        return self

    def __int__(self) -> int:
        return self.value

    def __eq__(self, other: object) -> bool:
        if isinstance(other, SaturatingCounter):
            return self.bits == other.bits and self.value == other.value
        return NotImplemented

    def __repr__(self) -> str:
        return f"SaturatingCounter(bits={self.bits}, value={self.value})"


def _predicts_taken(counter: SaturatingCounter) -> bool:
    return counter.value >= counter.maximum // 2


@dataclass(slots=True)
class MpcEntry:
    """One entry of the misprediction pattern cache."""

    tag: int = 0
    recent_pattern: int = 0
    miss_count: SaturatingCounter = field(default_factory=lambda: SaturatingCounter(4))
    pattern_confidence: SaturatingCounter = field(
        default_factory=lambda: SaturatingCounter(3)
    )
    last_pred: bool = False


@dataclass(slots=True)
class TagEntry:
    """One entry of a tagged TAGE table."""

    pred_counter: SaturatingCounter = field(default_factory=lambda: SaturatingCounter(3))
    useful_counter: SaturatingCounter = field(default_factory=lambda: SaturatingCounter(2))
    tag: int = 0


class Tage:
    """TAGE predictor extended with a misprediction pattern cache."""

    NUM_TAGGED_TABLES = 7
    BASE_BITS = 15
    TABLE_BITS = 12
    TAG_BITS = 14
    MAX_HISTORY_LENGTH = 400

    BASE_TABLE_SIZE = 1 << BASE_BITS
    TAGGED_TABLE_SIZE = 1 << TABLE_BITS

    COUNTER_BITS_BASE = 2
    COUNTER_BITS_TAGGED = 3
    USEFUL_BITS = 2

    MPC_BITS = 12
    MPC_SIZE = 1 << MPC_BITS
    PATTERN_LEN = 8

    HISTORY_LENGTHS = (8, 19, 40, 85, 160, 270, 380)

    _HISTORY_MASK = (1 << MAX_HISTORY_LENGTH) - 1
    _PATTERN_MASK = (1 << PATTERN_LEN) - 1

    def __init__(self) -> None:
        self.history_lengths = list(self.HISTORY_LENGTHS)
        # Base table starts in the weakly taken state.
        self.base_table = [
            SaturatingCounter(self.COUNTER_BITS_BASE, 1)
            for _ in range(self.BASE_TABLE_SIZE)
        ]
        self.tagged_tables = [
            [TagEntry() for _ in range(self.TAGGED_TABLE_SIZE)]
            for _ in range(self.NUM_TAGGED_TABLES)
        ]
        self.mpc_table = [MpcEntry() for _ in range(self.MPC_SIZE)]
        self.global_history = 0

        self.used_tagged_table = False
        self.has_found_lmb = False
        self.base_index = 0
        self.tag_table_pos = 0
        self.longest_matching_branch = 0
        self.longest_index = 0

        self.mpc_index = 0
        self.mpc_hit = False
        self.used_mpc = False

    # ----- indexing -----

    def get_base_index(self, ip: int) -> int:
        """Index into the base table."""
        return ((ip & _ADDRESS_MASK) >> 2) & (self.BASE_TABLE_SIZE - 1)

    def get_tag_index(self, ip: int, table_idx: int) -> int:
        """Index into tagged table ``table_idx`` using folded history."""
        length = self.history_lengths[table_idx]
        compressed = self.get_compressed_history(length, self.TABLE_BITS)
        pc_part = ((ip & _ADDRESS_MASK) >> 2) & ((1 << self.TABLE_BITS) - 1)
        return (pc_part ^ compressed) & (self.TAGGED_TABLE_SIZE - 1)

    def get_partial_tag(self, ip: int, table_idx: int) -> int:
        """Partial tag stored in tagged table ``table_idx``."""
        tag_mask = (1 << self.TAG_BITS) - 1
        pc_part = ((ip & _ADDRESS_MASK) >> (2 + self.TABLE_BITS)) & tag_mask
        length = self.history_lengths[table_idx]
        hist_part = self.global_history & ((1 << min(self.TAG_BITS, length)) - 1)
        return (pc_part ^ hist_part) & tag_mask

    def get_compressed_history(self, history_length: int, width: int) -> int:
        """Fold the newest ``history_length`` history bits into ``width`` bits."""
        if history_length <= width:
            return 0
        compressed = 0
        limit = min(history_length, self.MAX_HISTORY_LENGTH)
        for start in range(0, limit, width):
            span = min(width, limit - start)
            compressed ^= (self.global_history >> start) & ((1 << span) - 1)
        return compressed & ((1 << width) - 1)

    # ----- misprediction pattern cache -----

    def get_mpc_index(self, ip: int) -> int:
        """Index into the misprediction pattern cache."""
        addr = ip & _ADDRESS_MASK
        hashed = ((addr >> 2) ^ (addr >> 14) ^ (addr >> 25)) & 0xFFFFFFFF
        return hashed & (self.MPC_SIZE - 1)

    def check_mpc_override(self, ip: int, tage_pred: bool) -> bool:
        """Return the MPC prediction for ``ip``, or ``tage_pred`` if it does not apply."""
        entry = self.mpc_table[self.mpc_index]
        if entry.tag != (ip & _ADDRESS_MASK):
            return tage_pred

        self.mpc_hit = True
        if entry.miss_count.value >= 10 and entry.pattern_confidence.value >= 5:
            pattern = entry.recent_pattern
            transitions = sum(
                ((pattern >> i) & 1) != ((pattern >> (i - 1)) & 1)
                for i in range(1, self.PATTERN_LEN)
            )
            if transitions >= 5:
                self.used_mpc = True
                return not entry.last_pred

            taken_count = bin(pattern).count("1")
            if taken_count >= 6 or taken_count <= 2:
                self.used_mpc = True
                return taken_count >= 4

        return tage_pred

    def update_mpc(self, ip: int, taken: bool, was_correct: bool) -> None:
        """Train the MPC entry selected by the last prediction."""
        entry = self.mpc_table[self.mpc_index]
        pc_tag = ip & _ADDRESS_MASK

        if entry.tag == pc_tag:
            entry.recent_pattern = ((entry.recent_pattern << 1) | int(taken)) & self._PATTERN_MASK

            if not was_correct:
                entry.miss_count.add(2)
            elif entry.miss_count.value > 0:
                entry.miss_count.add(-1)

            older_taken = bin(entry.recent_pattern >> 1).count("1")
            expected = older_taken >= 4
            entry.pattern_confidence.add(1 if taken == expected else -1)
            entry.last_pred = taken
        elif not was_correct:
            entry.tag = pc_tag
            entry.recent_pattern = int(taken)
            entry.miss_count = SaturatingCounter(4, 2)
            entry.pattern_confidence = SaturatingCounter(3, 0)
            entry.last_pred = taken

    # ----- predictor interface -----

    def predict_branch(self, ip: int) -> bool:
        """Predict whether the branch at ``ip`` is taken."""
        self.used_tagged_table = False
        self.has_found_lmb = False
        self.mpc_hit = False
        self.used_mpc = False

        self.base_index = self.get_base_index(ip)
        prediction = _predicts_taken(self.base_table[self.base_index])

        for i in reversed(range(self.NUM_TAGGED_TABLES)):
            tag_index = self.get_tag_index(ip, i)
            partial_tag = self.get_partial_tag(ip, i)
            entry = self.tagged_tables[i][tag_index]
            if entry.tag != partial_tag:
                continue
            if not self.has_found_lmb:
                self.longest_matching_branch = i
                self.tag_table_pos = i
                self.longest_index = tag_index
                self.has_found_lmb = True
            newly_allocated = (
                entry.pred_counter.value == entry.pred_counter.maximum // 2
                and entry.useful_counter.value == 0
            )
            if not newly_allocated:
                prediction = _predicts_taken(entry.pred_counter)
                self.used_tagged_table = True
                break

        self.mpc_index = self.get_mpc_index(ip)
        return self.check_mpc_override(ip, prediction)

    def last_branch_result(
        self, ip: int, branch_target: int, taken: bool, branch_type: int
    ) -> None:
        """Train the predictor with the resolved outcome of the last predicted branch."""
        if self.has_found_lmb:
            entry = self.tagged_tables[self.tag_table_pos][self.longest_index]
            tage_pred = _predicts_taken(entry.pred_counter)
            if self.used_mpc:
                was_correct = taken == self.check_mpc_override(ip, tage_pred)
            else:
                was_correct = tage_pred == taken
                entry.useful_counter.add(1 if tage_pred == taken else -1)
            entry.pred_counter.add(1 if taken else -1)
        else:
            counter = self.base_table[self.base_index]
            base_pred = _predicts_taken(counter)
            if self.used_mpc:
                was_correct = taken == self.check_mpc_override(ip, base_pred)
            else:
                was_correct = base_pred == taken
            counter.add(1 if taken else -1)

        self.update_mpc(ip, taken, was_correct)

        if not was_correct and not self.used_mpc:
            self._allocate(ip, taken)

        self.global_history = ((self.global_history << 1) | int(taken)) & self._HISTORY_MASK

    def _allocate(self, ip: int, taken: bool) -> None:
        start = self.tag_table_pos + 1 if self.used_tagged_table else 0
        candidates = range(start, self.NUM_TAGGED_TABLES)

        for i in candidates:
            entry = self.tagged_tables[i][self.get_tag_index(ip, i)]
            if entry.useful_counter.value == 0:
                entry.tag = self.get_partial_tag(ip, i)
                half = entry.pred_counter.maximum // 2
                entry.pred_counter = SaturatingCounter(
                    self.COUNTER_BITS_TAGGED, half + 1 if taken else half - 1
                )
                return

        for i in candidates:
            self.tagged_tables[i][self.get_tag_index(ip, i)].useful_counter.add(-1)