"""
CONTRACT: inline (source: src/speakerfollow/levels/monitor.md)
ROLE: Level ingestion path: start the device level stream and feed samples into the tracker.

INPUTS:
  - Topic: device.levels  Type: LevelSample
OUTPUTS:
  - Topic: n/a  Type: LevelTracker updates

CONFIG KEYS:
  - levels.queue_depth: bounded ingestion queue depth (drop-oldest)

PERF / TIMING:
  - single writer thread; O(1) per sample

FAILURE MODES:
  - level stream cannot start -> stay inactive -> log level_stream_failed
  - malformed sample -> skip -> log bad_sample (throttled)

LOG EVENTS:
  - module=levels.monitor, event=level_tracking_started, payload keys=queue_depth
  - module=levels.monitor, event=level_stream_failed, payload keys=error
  - module=levels.monitor, event=level_tracking_stopped, payload keys=samples
  - module=levels.monitor, event=bad_sample, payload keys=sample, error

TESTS:
  - tests/test_lifecycle.py covers ingestion through the bus

CONTRACT DETAILS (inline from src/speakerfollow/levels/monitor.md):
# Level monitor

- Started automatically when the device connects; safe to call start() twice.
- A sample's level is the louder of its left/right outputs when both are given.
- Samples are stamped with their own t_ns (monotonic, same clock as
  core.clock) so a queue backlog cannot make old samples look fresh;
  samples without t_ns are stamped on ingestion.
- reset() stops ingestion and clears the tracker: levels from a previous
  connection are meaningless for the next one.
"""

from __future__ import annotations

import queue
import threading
import time
from typing import Any, Dict, Optional

from speakerfollow.core.clock import now_ms
from speakerfollow.levels.tracker import LevelTracker


class LevelMonitor:
    """Owns the device.levels subscription and the worker that writes the tracker."""

    def __init__(self, bus: Any, tracker: LevelTracker, logger: Any, queue_depth: int = 256) -> None:
        self._bus = bus
        self._tracker = tracker
        self._logger = logger
        self._queue_depth = max(1, int(queue_depth))
        self._lock = threading.Lock()
        self._queue: Optional[queue.Queue[Any]] = None
        self._stop_event: Optional[threading.Event] = None
        self._thread: Optional[threading.Thread] = None
        self._active = False
        self._samples = 0
        self._last_bad_log = 0.0

    @classmethod
    def from_config(cls, bus: Any, tracker: LevelTracker, logger: Any, config: Dict[str, Any]) -> "LevelMonitor":
        return cls(bus, tracker, logger, queue_depth=int(config.get("levels", {}).get("queue_depth", 256)))

    @property
    def tracker(self) -> LevelTracker:
        return self._tracker

    @property
    def active(self) -> bool:
        with self._lock:
            return self._active

    @property
    def samples(self) -> int:
        with self._lock:
            return self._samples

    def start(self, link: Any) -> bool:
        """Start the device level stream and the ingestion worker. Returns active state."""
        with self._lock:
            if self._active:
                return True
        q = self._bus.subscribe("device.levels", max_depth=self._queue_depth)
        try:
            link.start_level_stream()
        except Exception as exc:  # noqa: BLE001
            self._bus.unsubscribe("device.levels", q)
            self._logger.emit("error", "levels.monitor", "level_stream_failed", {"error": str(exc)})
            return False
        stop_event = threading.Event()
        thread = threading.Thread(target=self._run, args=(q, stop_event), name="level-ingest", daemon=True)
        with self._lock:
            self._queue = q
            self._stop_event = stop_event
            self._thread = thread
            self._active = True
        thread.start()
        self._logger.emit("info", "levels.monitor", "level_tracking_started", {"queue_depth": self._queue_depth})
        return True

    def stop(self) -> None:
        with self._lock:
            q, stop_event, thread = self._queue, self._stop_event, self._thread
            was_active = self._active
            self._queue = None
            self._stop_event = None
            self._thread = None
            self._active = False
        if stop_event is not None:
            stop_event.set()
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=1.0)
        if q is not None:
            self._bus.unsubscribe("device.levels", q)
        if was_active:
            self._logger.emit("info", "levels.monitor", "level_tracking_stopped", {"samples": self.samples})

    def reset(self) -> None:
        self.stop()
        self._tracker.clear()

    def ingest(self, msg: Dict[str, Any], now: Optional[float] = None) -> None:
        channel = int(msg["channel"])
        if "level" in msg:
            level = float(msg["level"])
        else:
            level = max(float(msg["left"]), float(msg["right"]))
        if now is None:
            now = float(msg["t_ns"]) / 1_000_000.0 if msg.get("t_ns") is not None else now_ms()
        self._tracker.record_sample(channel, level, now)
        with self._lock:
            self._samples += 1

    def _run(self, q: queue.Queue[Any], stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            try:
                msg = q.get(timeout=0.1)
            except queue.Empty:
                continue
            try:
                self.ingest(msg)
            except (KeyError, TypeError, ValueError) as exc:
                now_s = time.time()
                if now_s - self._last_bad_log >= 1.0:
                    self._last_bad_log = now_s
                    self._logger.emit("warning", "levels.monitor", "bad_sample", {"sample": repr(msg), "error": str(exc)})
