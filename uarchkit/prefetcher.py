"""Hybrid L1D prefetcher that alternates between exploring and exploiting engines.

During the explore phase all three engines (next-line, delta history and
region) issue prefetches, and every demand access that hits a recently
prefetched block rewards the engine that issued it. When the explore phase
ends, the best-scoring engines are chosen and only they prefetch during
the longer exploit phase. After that, the cycle starts again.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum, auto

from uarchkit.prefetch_tables import (
    DHT_AHT_NUM_ENTRIES,
    DHT_PHT_CONFIDENCE_MAX,
    DHT_PHT_NUM_ENTRIES,
    LOG2_CACHE_LINE_SIZE,
    MAX_PQ_SIZE,
    RP_ACCESS_DENSITY_THRESHOLD,
    RP_LINES_PER_REGION,
    RP_LINES_PER_REGION_LOG2,
    RP_NUM_SETS,
    RP_NUM_WAYS,
    AddressHistoryEntry,
    PatternHistoryEntry,
    Phase,
    PrefetchEngine,
    RegionEntry,
    aht_index,
    aht_tag,
    pht_index,
    region_address,
    region_offset,
    region_set_index,
    region_tag,
)

logger = logging.getLogger(__name__)

_U64 = (1 << 64) - 1

MAX_RECENT_PF_TRACKING = 16
SCORE_MAX_PQ_HIT = 2048
SCORE_THRESHOLD_PREFETCHER = 1024
PQ_HIT_REWARD = {
    PrefetchEngine.NL: 1,
    PrefetchEngine.DHT: 1,
    PrefetchEngine.RP: 1,
}
CONFIDENCE_DECAY_INTERVAL = 256000
DEFAULT_EXPLORE_CYCLES = 256000
DEFAULT_EXPLOIT_CYCLES = 256000 * 3

_ENGINES = (PrefetchEngine.NL, PrefetchEngine.DHT, PrefetchEngine.RP)
_ENGINE_LABELS = {
    PrefetchEngine.NL: "NL ",
    PrefetchEngine.DHT: "DHT",
    PrefetchEngine.RP: "RP",
}


class AccessType(Enum):
    """Kind of cache access seen by the prefetcher."""

    LOAD = auto()
    RFO = auto()
    PREFETCH = auto()
    WRITE = auto()
    TRANSLATION = auto()


@dataclass
class CacheInterface:
    """The cache the prefetcher sits in: a bounded prefetch queue and a clock.

    Accepted prefetches are appended to ``prefetch_queue`` as
    ``(address, fill_this_level, metadata)`` tuples.
    """

    queue_capacity: int = 32
    cycle: int = 0
    prefetch_queue: list = field(default_factory=list)

    def pq_occupancy(self) -> int:
        """Number of prefetches currently waiting in the queue."""
        return len(self.prefetch_queue)

    def prefetch_line(self, addr: int, fill_this_level: bool, metadata: int) -> bool:
        """Enqueue a prefetch; return False when the queue is full."""
        if len(self.prefetch_queue) >= self.queue_capacity:
            return False
        self.prefetch_queue.append((addr, fill_this_level, metadata))
        return True

    def current_cycle(self) -> int:
        """Current cycle of the cache clock."""
        return self.cycle


@dataclass
class _EngineState:
    score: int = 0
    issued: int = 0
    useful: int = 0
    pq_hits: int = 0
    recent: deque = field(default_factory=lambda: deque(maxlen=MAX_RECENT_PF_TRACKING))


def _block_of(addr: int) -> int:
    return (addr & _U64) >> LOG2_CACHE_LINE_SIZE


def _address_of(block: int) -> int:
    return (block << LOG2_CACHE_LINE_SIZE) & _U64


def _rate(part: int, whole: int) -> str:
    return f"{100.0 * part / whole:.2f}%"


class HybridPrefetcher:
    """Next-line, delta history and region prefetchers under explore/exploit control."""

    def __init__(self, cache: CacheInterface) -> None:
        self.cache = cache
        self.aht_table = [AddressHistoryEntry() for _ in range(DHT_AHT_NUM_ENTRIES)]
        self.pht_table = [PatternHistoryEntry() for _ in range(DHT_PHT_NUM_ENTRIES)]
        self.rp_table = [
            [RegionEntry() for _ in range(RP_NUM_WAYS)] for _ in range(RP_NUM_SETS)
        ]
        self.rp_lru = [False] * RP_NUM_SETS

        self.engines = {engine: _EngineState() for engine in _ENGINES}
        self.useful_total = 0

        self.phase = Phase.EXPLORE
        self.phase_cycle_counter = 0
        self.explore_duration_cycles = DEFAULT_EXPLORE_CYCLES
        self.exploit_duration_cycles = DEFAULT_EXPLOIT_CYCLES
        self.allowed = dict.fromkeys(_ENGINES, False)
        self.nl_prefetch_degree = 1

        self._reset_scores()
        logger.debug(
            "AHT entries %d, PHT entries %d, RP %d sets x %d ways, NL degree %d, "
            "explore %d cycles, exploit %d cycles, max score %d",
            DHT_AHT_NUM_ENTRIES,
            DHT_PHT_NUM_ENTRIES,
            RP_NUM_SETS,
            RP_NUM_WAYS,
            self.nl_prefetch_degree,
            self.explore_duration_cycles,
            self.exploit_duration_cycles,
            SCORE_MAX_PQ_HIT,
        )

    # ----- scoring -----

    def _reset_scores(self) -> None:
        for state in self.engines.values():
            state.score = 0
            state.recent.clear()

    def _check_pq_hits(self, block: int) -> None:
        for engine in _ENGINES:
            state = self.engines[engine]
            if block in state.recent:
                state.score = min(SCORE_MAX_PQ_HIT, state.score + PQ_HIT_REWARD[engine])
                state.pq_hits += 1
                state.recent.remove(block)
                return

    def _issue(self, address: int, engine: PrefetchEngine) -> bool:
        if self.cache.pq_occupancy() >= MAX_PQ_SIZE:
            return False
        if not self.cache.prefetch_line(address, True, int(engine)):
            return False
        state = self.engines[engine]
        state.recent.appendleft(_block_of(address))
        state.issued += 1
        return True

    def _determine_best_engines(self) -> None:
        # On a tie the order of preference is DHT, then RP, then NL.
        nl = self.engines[PrefetchEngine.NL].score
        dht = self.engines[PrefetchEngine.DHT].score
        rp = self.engines[PrefetchEngine.RP].score
        allowed = dict.fromkeys(_ENGINES, False)
        max_score = -1

        if dht >= max_score:
            max_score = dht
            allowed[PrefetchEngine.DHT] = True

        if rp > max_score or rp > SCORE_THRESHOLD_PREFETCHER:
            max_score = rp
            if dht < SCORE_THRESHOLD_PREFETCHER:
                allowed[PrefetchEngine.DHT] = False
            allowed[PrefetchEngine.RP] = True

        if nl > max_score or nl > SCORE_THRESHOLD_PREFETCHER:
            if dht < SCORE_THRESHOLD_PREFETCHER:
                allowed[PrefetchEngine.DHT] = False
            if rp < SCORE_THRESHOLD_PREFETCHER:
                allowed[PrefetchEngine.RP] = False
            allowed[PrefetchEngine.NL] = True

        self.allowed = allowed
        logger.info(
            "[%d] EXPLORE phase ended. PQ Hit Scores: NL=%d, DHT=%d, RP=%d. "
            "Selected for EXPLOIT: Engines %d%d%d.",
            self.cache.current_cycle(),
            nl,
            dht,
            rp,
            allowed[PrefetchEngine.NL],
            allowed[PrefetchEngine.DHT],
            allowed[PrefetchEngine.RP],
        )

    def _manage_phase_transitions(self) -> None:
        self.phase_cycle_counter += 1
        if self.phase is Phase.EXPLORE:
            if self.phase_cycle_counter >= self.explore_duration_cycles:
                self._determine_best_engines()
                self.phase = Phase.EXPLOIT
                self.phase_cycle_counter = 0
        elif self.phase_cycle_counter >= self.exploit_duration_cycles:
            self.phase = Phase.EXPLORE
            self.phase_cycle_counter = 0
            self._reset_scores()
            self.allowed = dict.fromkeys(_ENGINES, False)

    # ----- training -----

    def _train_delta_history(self, pc: int, block: int) -> AddressHistoryEntry:
        entry = self.aht_table[aht_index(pc)]
        tag = aht_tag(pc)
        if not (entry.valid and entry.tag == tag):
            entry.reset()
            entry.valid = True
            entry.tag = tag
            entry.last_accessed_block = block
            return entry

        if entry.last_accessed_block != 0:
            delta = ((block - entry.last_accessed_block) & 0xFFFF)
            if delta >= 0x8000:
                delta -= 0x10000
            if delta != 0:
                pattern = self.pht_table[pht_index(entry.delta_history)]
                if pattern.valid and pattern.tag_delta_history == entry.delta_history:
                    if pattern.predicted_next_delta == delta:
                        if pattern.confidence < DHT_PHT_CONFIDENCE_MAX:
                            pattern.confidence += 1
                    elif pattern.confidence > 0:
                        pattern.confidence -= 1
                    else:
                        pattern.predicted_next_delta = delta
                        pattern.confidence = 0
                else:
                    pattern.reset()
                    pattern.valid = True
                    pattern.tag_delta_history = list(entry.delta_history)
                    pattern.predicted_next_delta = delta
                    pattern.confidence = 1
                entry.record_new_delta(delta)
        entry.last_accessed_block = block
        return entry

    def _train_region(self, block: int) -> RegionEntry | None:
        """Record the access; return the entry only when the region was already tracked."""
        region = region_address(block)
        set_idx = region_set_index(region)
        tag = region_tag(region)
        bit = 1 << region_offset(block)
        ways = self.rp_table[set_idx]

        for way, entry in enumerate(ways):
            if entry.valid and entry.region_address_tag == tag:
                entry.access_bitmap |= bit
                self.rp_lru[set_idx] = not bool(way)
                return entry

        victim_way = int(self.rp_lru[set_idx])
        victim = ways[victim_way]
        victim.reset()
        victim.valid = True
        victim.region_address_tag = tag
        victim.access_bitmap |= bit
        self.rp_lru[set_idx] = not bool(victim_way)
        return None

    # ----- prefetching -----

    def _prefetch_next_lines(self, block: int) -> None:
        for distance in range(1, self.nl_prefetch_degree + 1):
            if not self._issue(_address_of(block + distance), PrefetchEngine.NL):
                break

    def _prefetch_delta(self, entry: AddressHistoryEntry, tag: int, block: int) -> None:
        if not (entry.valid and entry.tag == tag):
            return
        pattern = self.pht_table[pht_index(entry.delta_history)]
        if (
            pattern.valid
            and pattern.tag_delta_history == entry.delta_history
            and pattern.confidence >= 2
            and pattern.predicted_next_delta != 0
        ):
            target = (block + pattern.predicted_next_delta) & _U64
            self._issue(_address_of(target), PrefetchEngine.DHT)

    def _prefetch_region(self, entry: RegionEntry | None, block: int) -> None:
        if entry is None or entry.accessed_lines() < RP_ACCESS_DENSITY_THRESHOLD:
            return
        base = region_address(block) << RP_LINES_PER_REGION_LOG2
        for line in range(RP_LINES_PER_REGION):
            bit = 1 << line
            if entry.access_bitmap & bit or entry.prefetch_bitmap & bit:
                continue
            if not self._issue(_address_of(base + line), PrefetchEngine.RP):
                break
            entry.prefetch_bitmap |= bit

    # ----- cache interface -----

    def cache_operate(
        self,
        addr: int,
        ip: int,
        cache_hit: bool,
        useful_prefetch: bool,
        access_type: AccessType,
        metadata_in: int,
    ) -> int:
        """Train on a cache access and issue prefetches; return the metadata to keep."""
        result = metadata_in if useful_prefetch else 0
        is_demand = access_type is AccessType.LOAD
        block = _block_of(addr)

        if is_demand:
            self._check_pq_hits(block)
        pc = ip & _U64
        if not is_demand or pc == 0:
            return result

        aht_entry = self._train_delta_history(pc, block)
        region_entry = self._train_region(block)
        tag = aht_tag(pc)

        exploring = self.phase is Phase.EXPLORE
        if exploring or self.allowed[PrefetchEngine.NL]:
            self._prefetch_next_lines(block)
        if exploring or self.allowed[PrefetchEngine.DHT]:
            self._prefetch_delta(aht_entry, tag, block)
        if exploring or self.allowed[PrefetchEngine.RP]:
            self._prefetch_region(region_entry, block)
        return result

    def cache_fill(
        self,
        addr: int,
        set_index: int,
        way: int,
        prefetch: bool,
        evicted_address: int,
        metadata_in: int,
    ) -> int:
        """Handle a cache fill; the metadata passes through unchanged."""
        return metadata_in

    def cycle_operate(self) -> None:
        """Advance one cycle: update the phase and periodically decay learned state."""
        self._manage_phase_transitions()
        cycle = self.cache.current_cycle()
        if cycle > 0 and cycle % CONFIDENCE_DECAY_INTERVAL == 0:
            for pattern in self.pht_table:
                if pattern.confidence > 0:
                    pattern.confidence -= 1
            for ways in self.rp_table:
                for entry in ways:
                    entry.prefetch_bitmap = 0

    def final_stats(self) -> str:
        """Return the end-of-run statistics report."""
        separator = "------------------------------------"
        lines = [
            "Hybrid Prefetcher Final Statistics "
            "(Phased Explore/Exploit v7.2 - NL, DHT, RP):",
            separator,
        ]
        for engine in _ENGINES:
            state = self.engines[engine]
            lines.append(f"{_ENGINE_LABELS[engine]} Engine:")
            lines.append(f"  Prefetches Issued: {state.issued}")
            lines.append(f"  PQ Hits (Used for Score): {state.pq_hits}")
            hit_rate = _rate(state.pq_hits, state.issued) if state.issued > 0 else "N/A"
            lines.append(f"  PQ Hit Rate: {hit_rate}")
            lines.append(f"  Useful by ChampSim (metadata match): {state.useful}")
            accuracy = (
                _rate(state.useful, state.issued)
                if state.issued > 0 and state.useful > 0
                else "N/A"
            )
            lines.append(f"  Accuracy (ChampSim useful / Issued): {accuracy}")

        total_issued = sum(state.issued for state in self.engines.values())
        total_hits = sum(state.pq_hits for state in self.engines.values())
        total_useful = sum(state.useful for state in self.engines.values())
        lines.append("Overall:")
        lines.append(f"  Total Prefetches Issued: {total_issued}")
        lines.append(f"  Total PQ Hits (all engines): {total_hits}")
        overall_rate = _rate(total_hits, total_issued) if total_issued > 0 else "N/A"
        lines.append(f"  Overall PQ Hit Rate: {overall_rate}")
        lines.append(f"  Total Useful by ChampSim (any metadata): {self.useful_total}")
        overall_accuracy = (
            _rate(total_useful, total_issued) if total_issued > 0 else "N/A"
        )
        lines.append(
            "  Overall Accuracy (ChampSim useful from our engines / Issued): "
            f"{overall_accuracy}"
        )
        lines.append(separator)
        return "\n".join(lines) + "\n"