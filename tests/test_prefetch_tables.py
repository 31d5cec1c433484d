import pytest

from uarchkit import prefetch_tables as pt


def test_engine_metadata_values():
    assert [int(e) for e in pt.PrefetchEngine] == [0, 1, 2, 3]
    assert pt.PrefetchEngine(2) is pt.PrefetchEngine.DHT


def test_phase_round_trips_by_value():
    for phase in pt.Phase:
        assert pt.Phase(phase.value) is phase
    assert [p.name for p in pt.Phase] == ["EXPLORE", "EXPLOIT"]


def test_record_new_delta_shifts_history():
    entry = pt.AddressHistoryEntry()
    entry.record_new_delta(3)
    entry.record_new_delta(-4)
    entry.record_new_delta(7)
    assert entry.delta_history == [7, -4, 3]
    entry.record_new_delta(9)
    assert entry.delta_history == [9, 7, -4]


def test_record_new_delta_wraps_to_int16():
    entry = pt.AddressHistoryEntry()
    entry.record_new_delta(1 << 16)
    assert entry.delta_history[0] == 0
    entry.record_new_delta((1 << 16) - 1)
    assert entry.delta_history[0] == -1


def test_aht_entry_reset():
    entry = pt.AddressHistoryEntry()
    entry.valid = True
    entry.tag = 42
    entry.last_accessed_block = 1000
    entry.record_new_delta(5)
    entry.reset()
    assert entry.valid is False
    assert entry.tag == 0
    assert entry.last_accessed_block == 0
    assert entry.delta_history == [0, 0, 0]


def test_aht_field_widths():
    entry = pt.AddressHistoryEntry()
    entry.tag = (1 << 16) + 5
    assert entry.tag == 5
    entry.last_accessed_block = (1 << 48) + 17
    assert entry.last_accessed_block == 17


def test_pht_predicted_delta_is_ten_bit_signed():
    entry = pt.PatternHistoryEntry()
    entry.predicted_next_delta = 511
    assert entry.predicted_next_delta == 511
    entry.predicted_next_delta = 512
    assert entry.predicted_next_delta == -512
    entry.predicted_next_delta = -1
    assert entry.predicted_next_delta == -1


def test_pht_confidence_is_two_bits():
    entry = pt.PatternHistoryEntry()
    entry.confidence = pt.DHT_PHT_CONFIDENCE_MAX
    assert entry.confidence == pt.DHT_PHT_CONFIDENCE_MAX
    entry.confidence = pt.DHT_PHT_CONFIDENCE_MAX + 1
    assert entry.confidence == 0


def test_pht_entry_reset():
    entry = pt.PatternHistoryEntry()
    entry.valid = True
    entry.confidence = 2
    entry.predicted_next_delta = 8
    entry.tag_delta_history = [1, 2, 3]
    entry.reset()
    assert (entry.valid, entry.confidence, entry.predicted_next_delta) == (False, 0, 0)
    assert entry.tag_delta_history == [0, 0, 0]


def test_region_entry_bitmaps_and_count():
    entry = pt.RegionEntry()
    entry.access_bitmap |= 1 << 0
    entry.access_bitmap |= 1 << 3
    entry.access_bitmap |= 1 << 7
    assert entry.accessed_lines() == 3
    entry.access_bitmap |= 1 << 8
    assert entry.accessed_lines() == 3
    entry.prefetch_bitmap = 0x1FF
    assert entry.prefetch_bitmap == 0xFF


def test_region_entry_reset():
    entry = pt.RegionEntry()
    entry.valid = True
    entry.region_address_tag = 99
    entry.access_bitmap = 0xF
    entry.prefetch_bitmap = 0xF0
    entry.reset()
    assert entry.accessed_lines() == 0
    assert (entry.valid, entry.region_address_tag, entry.prefetch_bitmap) == (False, 0, 0)


def test_region_tag_width():
    entry = pt.RegionEntry()
    entry.region_address_tag = (1 << 40) + 6
    assert entry.region_address_tag == 6


@pytest.mark.parametrize("pc", [0, 1, 511, 0x401A2C, 0xFFFF_FFFF_FFFF_FFFF])
def test_aht_index_and_tag_ranges(pc):
    assert 0 <= pt.aht_index(pc) < pt.DHT_AHT_NUM_ENTRIES
    assert 0 <= pt.aht_tag(pc) <= 0xFFFF
    assert pt.aht_index(pc + pt.DHT_AHT_NUM_ENTRIES) == pt.aht_index(pc)


def test_aht_tag_ignores_index_bits():
    pc = 0x7F3A00
    assert pt.aht_tag(pc) == pt.aht_tag(pc | (pt.DHT_AHT_NUM_ENTRIES - 1))
    assert pt.aht_tag(pc) != pt.aht_tag(pc + pt.DHT_AHT_NUM_ENTRIES)


def test_pht_index_of_empty_history():
    assert pt.pht_index([0, 0, 0]) == 1984


@pytest.mark.parametrize(
    "history", [[1, 2, 3], [-1, -1, -1], [32767, -32768, 0], (5, 0, -5)]
)
def test_pht_index_range_and_determinism(history):
    first = pt.pht_index(history)
    assert 0 <= first < pt.DHT_PHT_NUM_ENTRIES
    assert pt.pht_index(list(history)) == first


def test_pht_index_accepts_entry_history():
    entry = pt.AddressHistoryEntry()
    entry.record_new_delta(2)
    entry.record_new_delta(2)
    assert pt.pht_index(entry.delta_history) == pt.pht_index([2, 2, 0])


@pytest.mark.parametrize("block", [0, 7, 8, 12345, 0xABCDEF012])
def test_region_split_round_trip(block):
    region = pt.region_address(block)
    offset = pt.region_offset(block)
    assert 0 <= offset < pt.RP_LINES_PER_REGION
    assert (region << pt.RP_LINES_PER_REGION_LOG2) + offset == block
    set_index = pt.region_set_index(region)
    assert 0 <= set_index < pt.RP_NUM_SETS
    assert (pt.region_tag(region) << pt.RP_INDEX_BITS) + set_index == region


def test_blocks_in_same_region_share_address():
    base = 0x1000
    regions = {pt.region_address(base + i) for i in range(pt.RP_LINES_PER_REGION)}
    assert regions == {pt.region_address(base)}
    assert pt.region_address(base + pt.RP_LINES_PER_REGION) == pt.region_address(base) + 1