"""
CONTRACT: inline (source: src/speakerfollow/fusion/gallery.md)
ROLE: Pick the most active guests for a host + guests 2x2 gallery layout.

INPUTS:
  - Topic: n/a  Type: LevelTracker state
OUTPUTS:
  - Topic: n/a  Type: GalleryPlan

CONFIG KEYS:
  - gallery.guest_slots: number of guest boxes (default 3)
  - autoswitch.silence_threshold: guests at or below are not "active"
  - autoswitch.composite_source: source id cut to program after layout

PERF / TIMING:
  - one-shot; O(n log n) in candidates

FAILURE MODES:
  - no level data -> fall back to list order (never an error)

LOG EVENTS:
  - n/a

TESTS:
  - tests/test_tools_and_gallery.py

CONTRACT DETAILS (inline from src/speakerfollow/fusion/gallery.md):
# Gallery selection

- Host always takes box 0 (top-left).
- Guests fill the remaining boxes loudest first by smoothed level; when
  fewer guests are active than slots, the remaining slots take unused
  candidates in list order.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from speakerfollow.levels.selector import rank
from speakerfollow.levels.tracker import LevelTracker


# 16:9 output: x/y in -1600..1600 / -900..900, size 1000 = full frame.
GRID_2X2: Tuple[Dict[str, Any], ...] = (
    {"enabled": True, "x": -800, "y": 450, "size": 500, "cropped": False},
    {"enabled": True, "x": 800, "y": 450, "size": 500, "cropped": False},
    {"enabled": True, "x": -800, "y": -450, "size": 500, "cropped": False},
    {"enabled": True, "x": 800, "y": -450, "size": 500, "cropped": False},
)


@dataclass(frozen=True)
class GalleryPlan:
    host: int
    guests: Tuple[int, ...]
    method: str

    @property
    def sources(self) -> Tuple[int, ...]:
        return (self.host,) + self.guests

    def boxes(self) -> List[Dict[str, Any]]:
        out = []
        for index, layout in enumerate(GRID_2X2):
            settings = dict(layout)
            if index < len(self.sources):
                settings["source"] = self.sources[index]
            out.append(settings)
        return out


def pick_gallery(
    tracker: Optional[LevelTracker],
    host: int,
    guests: Sequence[int],
    slots: int = 3,
    silence_threshold: float = -5000.0,
    now: Optional[float] = None,
) -> GalleryPlan:
    candidates = [int(g) for g in dict.fromkeys(guests) if int(g) != host]
    if tracker is None:
        return GalleryPlan(host, tuple(candidates[:slots]), f"audio tracking not active, using first {slots} guests")

    active = [ch for ch, _level in rank(tracker, candidates, now, silence_threshold=silence_threshold)]
    if len(active) >= slots:
        return GalleryPlan(host, tuple(active[:slots]), "by audio activity (loudest first)")
    if not active:
        return GalleryPlan(host, tuple(candidates[:slots]), f"no recent audio detected, using first {slots} guests")
    selected = list(active)
    for ch in candidates:
        if len(selected) >= slots:
            break
        if ch not in selected:
            selected.append(ch)
    return GalleryPlan(host, tuple(selected), f"{len(active)} by audio, {len(selected) - len(active)} fallback")
