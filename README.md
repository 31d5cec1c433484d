# uarchkit

Behavioural models of two microarchitecture components. They are meant to be
driven from a trace-driven or cycle-level simulator written in Python.

- **`uarchkit.tage.Tage`** is a TAGE branch predictor. It has a 32K-entry
  bimodal base table and seven 4K-entry tagged tables with history lengths of
  8, 19, 40, 85, 160, 270 and 380 branches. On top of these sits a 4K-entry
  misprediction pattern cache (MPC). The MPC overrides TAGE for a branch whose
  miss count and pattern confidence are both high, provided its last eight
  outcomes either alternate often or lean strongly one way.
- **`uarchkit.prefetcher.HybridPrefetcher`** is an L1D prefetcher with three
  engines: next-line (NL), delta history (DHT) and region (RP). The engines'
  tables and index functions live in `uarchkit.prefetch_tables`. The
  prefetcher alternates between two phases:
  - an *explore* phase (256,000 cycles by default), in which every engine
    prefetches and earns a point each time a demand load hits one of its
    16 most recent prefetches;
  - an *exploit* phase (768,000 cycles by default), in which only the engines
    chosen from those scores prefetch.

The package needs nothing outside the standard library.

## Installation

```
pip install .
```

## Branch prediction

```python
from uarchkit.tage import Tage

predictor = Tage()
for ip, target, taken in trace:
    guess = predictor.predict_branch(ip)
    predictor.last_branch_result(ip, target, taken, 0)
```

Call `predict_branch` before each call to `last_branch_result`. The update
uses the table positions that the prediction recorded. `branch_target` and
`branch_type` are accepted but not used.

The building blocks are public as well:

- `SaturatingCounter(bits, value)` is a clamped unsigned counter with `add(delta)`.
- `TagEntry` and `MpcEntry` are the table entries.
- `get_base_index`, `get_tag_index`, `get_partial_tag`,
  `get_compressed_history`, `get_mpc_index`, `check_mpc_override` and
  `update_mpc` are the predictor's methods for indexing and for the MPC.

## Prefetching

The prefetcher talks to its cache through a `CacheInterface`. The default
implementation keeps accepted prefetches in a list, `prefetch_queue`, which
holds up to `queue_capacity` entries (32 by default). Each accepted prefetch
is stored as an `(address, fill_this_level, metadata)` tuple, and the metadata
is the issuing `PrefetchEngine` value. The cache clock is the `cycle` field.
You can subclass `CacheInterface` and override `pq_occupancy()`,
`prefetch_line(addr, fill_this_level, metadata)` and `current_cycle()` to
connect the prefetcher to your own cache model.

```python
from uarchkit.prefetcher import AccessType, CacheInterface, HybridPrefetcher

cache = CacheInterface()
prefetcher = HybridPrefetcher(cache)

prefetcher.cache_operate(0x1000, 0x400123, False, False, AccessType.LOAD, 0)
print(cache.prefetch_queue)   # [(4160, True, 1)]: next line 0x1040, from the NL engine

cache.prefetch_queue.clear()  # the simulator drains the queue
cache.cycle += 1
prefetcher.cycle_operate()

print(prefetcher.final_stats())
```

Some rules about what the prefetcher does:

- Only `LOAD` accesses with a non-zero instruction pointer train the tables
  and trigger prefetches. Every `LOAD` is still checked against the engines'
  recent prefetches for scoring.
- `cache_operate` returns `metadata_in` when `useful_prefetch` is true and 0
  otherwise.
- No prefetch is issued while `pq_occupancy()` is 8 or more, or when
  `prefetch_line` refuses it.
- Call `cycle_operate` once per cycle. It advances the phase. Every 256,000
  cycles of the cache clock it also lowers each PHT confidence by one and
  clears the region prefetch bitmaps.
- The current phase is `prefetcher.phase`, a `Phase`. The engines chosen for
  exploitation are `prefetcher.allowed`. The phase lengths can be changed
  through `explore_duration_cycles` and `exploit_duration_cycles`.
- The choice of engines at the end of an explore phase is logged at INFO level
  through the `uarchkit.prefetcher` logger.
- `final_stats()` returns the end-of-run report as a string.

## What the package does not do

- It has no command-line program.
- It does not read trace files.
- It models no caches or memory beyond the simple prefetch queue of
  `CacheInterface`.
- The prefetcher has no way to be told that a prefetch proved useful. Because
  of this, the "Useful by ChampSim" counts in the report stay at zero and the
  accuracy lines read N/A or 0.00%. The PQ-hit counts and rates do reflect
  the run.

## Tests

```
pip install .[test]
pytest
```