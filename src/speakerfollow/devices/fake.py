"""
CONTRACT: inline (source: src/speakerfollow/devices/fake.md)
ROLE: In-process fake switcher and synthetic talkers for tests and simulation runs.

INPUTS:
  - Topic: n/a  Type: n/a
OUTPUTS:
  - Topic: device.levels  Type: LevelSample
  - Topic: device.connection  Type: ConnectionStatus

CONFIG KEYS:
  - simulation.sample_hz: synthetic level rate per channel
  - simulation.talkers: channels that take turns speaking
  - simulation.turn_s: seconds per speaking turn
  - simulation.seed: RNG seed

PERF / TIMING:
  - commands are recorded in order under a lock

FAILURE MODES:
  - injected failures raise SwitcherCommandError

LOG EVENTS:
  - module=devices.fake, event=synthetic_levels_started, payload keys=talkers, sample_hz

TESTS:
  - used by tests/test_lifecycle.py and tests/test_mode_executor.py
"""

from __future__ import annotations

import threading
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

import numpy as np

from speakerfollow.devices.base import SwitcherCommandError, SwitcherLink


Command = Tuple[Any, ...]


class FakeSwitcherLink(SwitcherLink):
    """Switcher stand-in that records every command it receives."""

    def __init__(
        self,
        bus: Optional[Any] = None,
        names: Optional[Dict[int, str]] = None,
    ) -> None:
        super().__init__(bus)
        self._lock = threading.Lock()
        self._connected = False
        self._streaming = False
        self._names = dict(names or {})
        self._fail_kinds: Set[str] = set()
        self.level_stream_error: Optional[str] = None
        self.commands: List[Command] = []
        self.program: Optional[int] = None
        self.preview: Optional[int] = None
        self.boxes: Dict[Tuple[int, int], Dict[str, Any]] = {}

    def connect(self) -> None:
        with self._lock:
            self._connected = True
        self.publish_connection(True)

    def disconnect(self) -> None:
        self.drop_connection()

    def drop_connection(self) -> None:
        """Simulate the device going away (cable pulled, power loss)."""
        with self._lock:
            self._connected = False
            self._streaming = False
        self.publish_connection(False)

    def is_connected(self) -> bool:
        with self._lock:
            return self._connected

    def is_streaming(self) -> bool:
        with self._lock:
            return self._streaming

    def start_level_stream(self) -> None:
        with self._lock:
            if not self._connected:
                raise SwitcherCommandError("not connected")
            if self.level_stream_error:
                raise SwitcherCommandError(self.level_stream_error)
            self._streaming = True

    def emit_level(self, channel: int, level: float) -> None:
        """Deliver a level sample the way the device would, if streaming."""
        if self.is_streaming():
            self.publish_level(channel, level)

    def fail(self, kind: str) -> None:
        """Make every later command of this kind raise."""
        with self._lock:
            self._fail_kinds.add(kind)

    def recover(self, kind: str) -> None:
        with self._lock:
            self._fail_kinds.discard(kind)

    def change_program_input(self, source: int, me: int = 0) -> None:
        self._record(("program", source, me))
        with self._lock:
            self.program = source

    def change_preview_input(self, source: int, me: int = 0) -> None:
        self._record(("preview", source, me))
        with self._lock:
            self.preview = source

    def auto_transition(self, me: int = 0) -> None:
        self._record(("auto", me))
        with self._lock:
            self.program, self.preview = self.preview, self.program

    def set_composite_box(self, box: int, settings: Dict[str, Any], composite_id: int = 0) -> None:
        self._record(("box", box, dict(settings), composite_id))
        with self._lock:
            self.boxes.setdefault((composite_id, box), {}).update(settings)

    def input_name(self, source: int) -> str:
        return self._names.get(source, f"Input {source}")

    def _record(self, command: Command) -> None:
        with self._lock:
            if not self._connected:
                raise SwitcherCommandError(f"{command[0]}: not connected")
            if command[0] in self._fail_kinds:
                raise SwitcherCommandError(f"{command[0]}: injected failure")
            self.commands.append(command)


class SyntheticTalkers:
    """Bursty speech levels for a rotating set of talkers, silence-ish noise elsewhere."""

    def __init__(
        self,
        inputs: Sequence[int],
        talkers: Sequence[int],
        turn_s: float = 4.0,
        seed: int = 7,
    ) -> None:
        self._inputs = tuple(inputs)
        self._talkers = tuple(talkers)
        self._turn_s = max(0.1, float(turn_s))
        self._rng = np.random.default_rng(seed)

    def active_talker(self, elapsed_s: float) -> Optional[int]:
        if not self._talkers:
            return None
        return self._talkers[int(elapsed_s // self._turn_s) % len(self._talkers)]

    def levels(self, elapsed_s: float) -> Dict[int, float]:
        talker = self.active_talker(elapsed_s)
        noise = self._rng.normal(-7500.0, 400.0, size=len(self._inputs))
        out = {ch: float(np.clip(level, -10000.0, 0.0)) for ch, level in zip(self._inputs, noise)}
        if talker is not None and talker in out:
            # Speech swings hard between words; ~20% of samples are gaps.
            if self._rng.random() < 0.2:
                out[talker] = float(self._rng.uniform(-8000.0, -5500.0))
            else:
                out[talker] = float(np.clip(self._rng.normal(-2000.0, 600.0), -10000.0, 0.0))
        return out


def start_synthetic_levels(
    link: FakeSwitcherLink,
    config: Dict[str, Any],
    logger: Any,
    stop_event: threading.Event,
) -> threading.Thread:
    sim_cfg = config.get("simulation", {})
    sample_hz = max(1.0, float(sim_cfg.get("sample_hz", 20.0)))
    inputs = [int(c) for c in config.get("switcher", {}).get("inputs", [1, 2, 3, 4, 5, 6, 7, 8])]
    talkers = [int(c) for c in sim_cfg.get("talkers", [2, 3])]
    generator = SyntheticTalkers(
        inputs,
        talkers,
        turn_s=float(sim_cfg.get("turn_s", 4.0)),
        seed=int(sim_cfg.get("seed", 7)),
    )
    period = 1.0 / sample_hz

    def _run() -> None:
        elapsed = 0.0
        while not stop_event.wait(period):
            elapsed += period
            for channel, level in generator.levels(elapsed).items():
                link.emit_level(channel, level)

    thread = threading.Thread(target=_run, name="synthetic-levels", daemon=True)
    thread.start()
    logger.emit("info", "devices.fake", "synthetic_levels_started", {"talkers": talkers, "sample_hz": sample_hz})
    return thread
