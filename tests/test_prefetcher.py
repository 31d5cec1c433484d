import pytest

from uarchkit.prefetch_tables import MAX_PQ_SIZE, Phase, PrefetchEngine
from uarchkit.prefetcher import (
    AccessType,
    CacheInterface,
    HybridPrefetcher,
)

IP = 0x401A30


def addr_of(block):
    return block << 6


@pytest.fixture
def cache():
    return CacheInterface()


@pytest.fixture
def pref(cache):
    return HybridPrefetcher(cache)


def load(pref, block, ip=IP, useful=False, metadata=0):
    return pref.cache_operate(addr_of(block), ip, False, useful, AccessType.LOAD, metadata)


def test_cache_interface_respects_capacity():
    cache = CacheInterface(queue_capacity=2)
    assert cache.prefetch_line(0x40, True, 1)
    assert cache.prefetch_line(0x80, True, 1)
    assert not cache.prefetch_line(0xC0, True, 1)
    assert cache.pq_occupancy() == 2


def test_non_demand_access_issues_nothing(pref, cache):
    result = pref.cache_operate(addr_of(0x100), IP, False, True, AccessType.RFO, 7)
    assert result == 7
    assert cache.prefetch_queue == []


def test_metadata_dropped_when_not_useful(pref):
    assert load(pref, 0x100, useful=False, metadata=5) == 0
    assert load(pref, 0x200, useful=True, metadata=5) == 5


def test_zero_ip_skips_training(pref, cache):
    load(pref, 0x100, ip=0)
    assert cache.prefetch_queue == []
    assert not any(entry.valid for entry in pref.aht_table)


def test_explore_issues_next_line(pref, cache):
    load(pref, 0x100)
    assert cache.prefetch_queue == [
        (addr_of(0x101), True, int(PrefetchEngine.NL))
    ]
    assert pref.engines[PrefetchEngine.NL].issued == 1


def test_full_prefetch_queue_blocks_prefetches(pref, cache):
    cache.prefetch_queue.extend((0, True, 0) for _ in range(MAX_PQ_SIZE))
    load(pref, 0x100)
    assert cache.pq_occupancy() == MAX_PQ_SIZE
    assert pref.engines[PrefetchEngine.NL].issued == 0


def test_demand_hit_on_prefetched_block_rewards_engine(pref, cache):
    load(pref, 0x100)
    cache.prefetch_queue.clear()
    load(pref, 0x101)
    state = pref.engines[PrefetchEngine.NL]
    assert state.score == 1
    assert state.pq_hits == 1
    assert 0x101 not in state.recent


def test_delta_engine_learns_stride(pref, cache):
    base = 0x100
    for step in range(6):
        cache.prefetch_queue.clear()
        load(pref, base + 2 * step)
    dht = [item for item in cache.prefetch_queue if item[2] == int(PrefetchEngine.DHT)]
    assert dht == [(addr_of(base + 12), True, int(PrefetchEngine.DHT))]


def test_region_engine_fills_dense_region(pref, cache):
    base = 0x200
    load(pref, base, ip=0x1000)
    load(pref, base + 1, ip=0x2000)
    cache.prefetch_queue.clear()
    load(pref, base + 2, ip=0x3000)
    rp = {item[0] for item in cache.prefetch_queue if item[2] == int(PrefetchEngine.RP)}
    assert rp == {addr_of(base + line) for line in range(3, 8)}

    cache.prefetch_queue.clear()
    load(pref, base + 3, ip=0x4000)
    assert all(item[2] != int(PrefetchEngine.RP) for item in cache.prefetch_queue)


def test_phase_cycle_with_no_hits_keeps_only_delta(pref, cache):
    pref.explore_duration_cycles = 3
    pref.exploit_duration_cycles = 2
    for _ in range(3):
        pref.cycle_operate()
    assert pref.phase is Phase.EXPLOIT
    assert pref.allowed == {
        PrefetchEngine.NL: False,
        PrefetchEngine.DHT: True,
        PrefetchEngine.RP: False,
    }

    load(pref, 0x100)
    assert cache.prefetch_queue == []

    for _ in range(2):
        pref.cycle_operate()
    assert pref.phase is Phase.EXPLORE
    assert not any(pref.allowed.values())


def test_next_line_selected_after_hits(pref, cache):
    pref.explore_duration_cycles = 1
    load(pref, 0x100)
    load(pref, 0x101)
    pref.cycle_operate()
    assert pref.phase is Phase.EXPLOIT
    assert pref.allowed[PrefetchEngine.NL]
    assert not pref.allowed[PrefetchEngine.DHT]
    assert not pref.allowed[PrefetchEngine.RP]


def test_scores_reset_when_exploration_restarts(pref):
    pref.explore_duration_cycles = 1
    pref.exploit_duration_cycles = 1
    load(pref, 0x100)
    load(pref, 0x101)
    pref.cycle_operate()
    pref.cycle_operate()
    assert pref.phase is Phase.EXPLORE
    assert all(state.score == 0 for state in pref.engines.values())
    assert all(len(state.recent) == 0 for state in pref.engines.values())


def test_periodic_decay_lowers_confidence(pref, cache):
    for step in range(6):
        cache.prefetch_queue.clear()
        load(pref, 0x100 + 2 * step)
    before = sum(entry.confidence for entry in pref.pht_table)
    cache.cycle = 256000
    pref.cycle_operate()
    after = sum(entry.confidence for entry in pref.pht_table)
    assert after < before
    assert all(e.prefetch_bitmap == 0 for ways in pref.rp_table for e in ways)


def test_cache_fill_passes_metadata(pref):
    assert pref.cache_fill(0x1000, 3, 1, True, 0x2000, 42) == 42


def test_final_stats_report(pref, cache):
    load(pref, 0x100)
    report = pref.final_stats()
    assert "  Prefetches Issued: 1" in report
    assert "  Total Prefetches Issued: 1" in report
    assert "  PQ Hit Rate: N/A" in report
    assert "  Overall PQ Hit Rate: 0.00%" in report