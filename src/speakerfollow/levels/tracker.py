"""
CONTRACT: inline (source: src/speakerfollow/levels/tracker.md)
ROLE: Per-channel loudness state (instantaneous + EMA smoothed) with staleness expiry.

INPUTS:
  - Topic: device.levels (via levels.monitor)  Type: LevelSample
OUTPUTS:
  - Topic: n/a  Type: n/a

CONFIG KEYS:
  - levels.ema_alpha: weight of each new sample in the smoothed level
  - levels.stale_ms: age after which a channel reads as silent
  - levels.window_size: recent raw samples kept per channel (diagnostics)

PERF / TIMING:
  - O(1) per sample; one lock acquisition per sample and per snapshot

FAILURE MODES:
  - absent or stale channel -> silent reading (never an error)

LOG EVENTS:
  - n/a

TESTS:
  - tests/test_level_tracker.py must cover EMA determinism and staleness

CONTRACT DETAILS (inline from src/speakerfollow/levels/tracker.md):
# Level tracker

- Levels are hundredths of a dB: -10000 is silence, -2000 normal speech.
- smoothed = alpha * sample + (1 - alpha) * smoothed, seeded to the first sample.
- Records are created on first sample and only cleared when the device
  connection drops; staleness is logical, records are kept.
- Per-channel ordering is last-write-wins.
"""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Iterable, Optional

from speakerfollow.core.clock import now_ms


SILENT_LEVEL = -10000.0


@dataclass(frozen=True)
class LevelReading:
    instantaneous: float
    smoothed: float


SILENT_READING = LevelReading(SILENT_LEVEL, SILENT_LEVEL)


@dataclass
class ChannelLevel:
    instantaneous: float
    smoothed: float
    last_update_ms: float
    count: int = 1
    samples: Deque[float] = field(default_factory=deque)


class LevelTracker:
    """Thread-safe map of channel index -> ChannelLevel."""

    def __init__(self, ema_alpha: float = 0.3, stale_ms: float = 5000.0, window_size: int = 12) -> None:
        if not 0.0 < ema_alpha <= 1.0:
            raise ValueError(f"ema_alpha must be in (0, 1], got {ema_alpha}")
        self._alpha = float(ema_alpha)
        self._stale_ms = float(stale_ms)
        self._window = max(1, int(window_size))
        self._lock = threading.Lock()
        self._channels: Dict[int, ChannelLevel] = {}

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "LevelTracker":
        levels_cfg = config.get("levels", {})
        return cls(
            ema_alpha=float(levels_cfg.get("ema_alpha", 0.3)),
            stale_ms=float(levels_cfg.get("stale_ms", 5000)),
            window_size=int(levels_cfg.get("window_size", 12)),
        )

    def record_sample(self, channel: int, raw_level: float, now: Optional[float] = None) -> None:
        t_ms = now_ms() if now is None else float(now)
        level = float(raw_level)
        with self._lock:
            record = self._channels.get(channel)
            if record is None:
                record = ChannelLevel(
                    instantaneous=level,
                    smoothed=level,
                    last_update_ms=t_ms,
                    samples=deque([level], maxlen=self._window),
                )
                self._channels[channel] = record
                return
            record.smoothed = self._alpha * level + (1.0 - self._alpha) * record.smoothed
            record.instantaneous = level
            record.last_update_ms = t_ms
            record.count += 1
            record.samples.append(level)

    def read(self, channel: int, now: Optional[float] = None) -> LevelReading:
        t_ms = now_ms() if now is None else float(now)
        with self._lock:
            return self._read_locked(channel, t_ms)

    def snapshot(
        self,
        channels: Iterable[int],
        now: Optional[float] = None,
        fresh_only: bool = False,
    ) -> Dict[int, LevelReading]:
        """Read several channels under one lock so a poll tick sees a consistent view.

        With fresh_only, absent and stale channels are omitted instead of
        reading as silent.
        """
        t_ms = now_ms() if now is None else float(now)
        with self._lock:
            if not fresh_only:
                return {channel: self._read_locked(channel, t_ms) for channel in channels}
            out: Dict[int, LevelReading] = {}
            for channel in channels:
                record = self._channels.get(channel)
                if record is None or (t_ms - record.last_update_ms) > self._stale_ms:
                    continue
                out[channel] = LevelReading(record.instantaneous, record.smoothed)
            return out

    def channels(self) -> list[int]:
        with self._lock:
            return sorted(self._channels)

    def clear(self) -> None:
        with self._lock:
            self._channels.clear()

    def describe(self, now: Optional[float] = None) -> Dict[int, Dict[str, Any]]:
        t_ms = now_ms() if now is None else float(now)
        with self._lock:
            out: Dict[int, Dict[str, Any]] = {}
            for channel in sorted(self._channels):
                record = self._channels[channel]
                age_ms = t_ms - record.last_update_ms
                out[channel] = {
                    "instantaneous": record.instantaneous,
                    "smoothed": round(record.smoothed, 1),
                    "age_ms": round(age_ms, 1),
                    "stale": age_ms > self._stale_ms,
                    "count": record.count,
                    "recent": list(record.samples),
                }
            return out

    def _read_locked(self, channel: int, t_ms: float) -> LevelReading:
        record = self._channels.get(channel)
        if record is None or (t_ms - record.last_update_ms) > self._stale_ms:
            return SILENT_READING
        return LevelReading(record.instantaneous, record.smoothed)
