"""
CONTRACT: inline (source: src/speakerfollow/core/clock.md)
ROLE: Monotonic timestamps shared by ingestion, polling and status.

INPUTS:
  - Topic: n/a  Type: n/a
OUTPUTS:
  - Topic: n/a  Type: n/a

CONFIG KEYS:
  - n/a

PERF / TIMING:
  - monotonic now_ns() / now_ms() for all modules

FAILURE MODES:
  - n/a

LOG EVENTS:
  - n/a

TESTS:
  - tests/test_level_tracker.py injects explicit timestamps instead

CONTRACT DETAILS (inline from src/speakerfollow/core/clock.md):
# Clock and timestamps

- t_ns is monotonic per process.
- Level staleness, hold and cooldown are all measured on this clock.
- Wall time is never used for switching decisions.
"""

from __future__ import annotations

import time


def now_ns() -> int:
    return time.monotonic_ns()


def now_ms() -> float:
    return time.monotonic_ns() / 1_000_000.0
