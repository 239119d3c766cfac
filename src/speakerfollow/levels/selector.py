"""
CONTRACT: inline (source: src/speakerfollow/levels/selector.md)
ROLE: Rank candidate channels by loudness.

INPUTS:
  - Topic: n/a  Type: LevelTracker state
OUTPUTS:
  - Topic: n/a  Type: list[(channel, level)]

CONFIG KEYS:
  - autoswitch.silence_threshold: levels at or below are dropped

PERF / TIMING:
  - pure; O(n log n) in candidates

FAILURE MODES:
  - n/a (stale channels read as silent)

LOG EVENTS:
  - n/a

TESTS:
  - tests/test_level_tracker.py covers ordering, tie-break and staleness
"""

from __future__ import annotations

from typing import Iterable, List, Mapping, Optional, Tuple

from speakerfollow.levels.tracker import LevelReading, LevelTracker


DEFAULT_SILENCE_THRESHOLD = -5000.0


def rank(
    tracker: LevelTracker,
    candidates: Iterable[int],
    now: Optional[float] = None,
    use_smoothed: bool = True,
    include_all: bool = False,
    silence_threshold: float = DEFAULT_SILENCE_THRESHOLD,
) -> List[Tuple[int, float]]:
    """Return (channel, level) loudest first; ties go to the lower channel."""
    channels = list(dict.fromkeys(candidates))
    readings = tracker.snapshot(channels, now, fresh_only=True)
    return rank_readings(readings, use_smoothed=use_smoothed, include_all=include_all, silence_threshold=silence_threshold)


def rank_readings(
    readings: Mapping[int, LevelReading],
    use_smoothed: bool = True,
    include_all: bool = False,
    silence_threshold: float = DEFAULT_SILENCE_THRESHOLD,
) -> List[Tuple[int, float]]:
    """Rank an already-taken snapshot."""
    results: List[Tuple[int, float]] = []
    for channel, reading in readings.items():
        level = reading.smoothed if use_smoothed else reading.instantaneous
        if not include_all and level <= silence_threshold:
            continue
        results.append((channel, level))
    results.sort(key=lambda item: (-item[1], item[0]))
    return results
