"""
CONTRACT: inline (source: src/speakerfollow/core/lifecycle.md)
ROLE: Start/stop the auto-switch poll loop and reset state on device disconnect.

INPUTS:
  - Topic: device.connection  Type: ConnectionStatus
OUTPUTS:
  - Topic: autoswitch.speaker_changed  Type: SwitchDecision
  - Topic: autoswitch.status  Type: RunSummary (on stop)

CONFIG KEYS:
  - autoswitch.*: defaults for every start() option

PERF / TIMING:
  - one poll thread per run, waiting on an Event between ticks (no busy wait)
  - each tick evaluates one tracker snapshot under the run's tick lock

FAILURE MODES:
  - already running / not connected / level tracking inactive / bad options
    -> raise AutoSwitchError, nothing mutated
  - tick error -> log tick_failed, keep polling
  - device disconnect -> force stop, clear levels -> log disconnected

LOG EVENTS:
  - module=core.lifecycle, event=autoswitch_started, payload keys=mode, candidates, hold_ms, cooldown_ms, poll_interval_ms
  - module=core.lifecycle, event=speaker_switched, payload keys=speaker, name, previous, switch_count, commands
  - module=core.lifecycle, event=autoswitch_stopped, payload keys=reason, duration_s, switch_count
  - module=core.lifecycle, event=tick_failed, payload keys=error
  - module=core.lifecycle, event=disconnected, payload keys=stopped_run
  - module=core.lifecycle, event=connection_watch_started, payload keys=n/a

TESTS:
  - tests/test_lifecycle.py must cover start guards, stop semantics and disconnect

CONTRACT DETAILS (inline from src/speakerfollow/core/lifecycle.md):
# Lifecycle contract

- One manager per device link; at most one run per manager.
- start() returns the run handle; the handle's stop()/status() and the
  manager's stop()/status() act on the same run.
- stop() returns only after the poll thread has stopped ticking and the
  run's dispatcher will send nothing more.
- Confirmed/pending speaker state is discarded on stop.
"""

from __future__ import annotations

import queue
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from speakerfollow.core.clock import now_ms, now_ns
from speakerfollow.devices.base import SwitcherLink
from speakerfollow.fusion.mode_executor import CommandDispatcher, ModeExecutor
from speakerfollow.fusion.switch_state_machine import AutoSwitchConfig, SwitchDecision, SwitchStateMachine
from speakerfollow.levels.monitor import LevelMonitor
from speakerfollow.levels.tracker import LevelTracker


Clock = Callable[[], float]


class AutoSwitchError(RuntimeError):
    """Auto-switch could not be started or stopped as requested."""


@dataclass(frozen=True)
class RunSummary:
    duration_s: int
    switch_count: int
    reason: str = "stopped"


class AutoSwitchRun:
    """One auto-switch run: state machine, executor, dispatcher and poll thread."""

    def __init__(
        self,
        config: AutoSwitchConfig,
        tracker: LevelTracker,
        link: SwitcherLink,
        bus: Optional[Any],
        logger: Any,
        clock: Clock = now_ms,
        on_stopped: Optional[Callable[["AutoSwitchRun"], None]] = None,
    ) -> None:
        self.config = config
        self._tracker = tracker
        self._link = link
        self._bus = bus
        self._logger = logger
        self._clock = clock
        self._on_stopped = on_stopped
        self._machine = SwitchStateMachine(config)
        self._executor = ModeExecutor(config)
        self._dispatcher = CommandDispatcher(link, bus, logger)
        self._tick_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._stopped = False
        self._summary: Optional[RunSummary] = None
        self.started_ms = clock()
        self.last_decision: Optional[SwitchDecision] = None

    @property
    def running(self) -> bool:
        with self._tick_lock:
            return not self._stopped

    @property
    def dispatcher(self) -> CommandDispatcher:
        return self._dispatcher

    def start_polling(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name="autoswitch-poll", daemon=True)
        self._thread.start()

    def tick(self, now: Optional[float] = None) -> Optional[SwitchDecision]:
        """Evaluate one poll tick. Returns None once the run is stopped."""
        with self._tick_lock:
            if self._stopped:
                return None
            if not self._link.is_connected():
                return None
            t_ms = self._clock() if now is None else float(now)
            readings = self._tracker.snapshot(self.config.candidates, t_ms)
            decision = self._machine.evaluate(readings, t_ms)
            self.last_decision = decision
            if decision.switched and decision.speaker is not None:
                self._on_switch(decision)
            return decision

    def stop(self, reason: str = "stopped") -> RunSummary:
        self._stop_event.set()
        with self._tick_lock:
            if self._summary is not None:
                return self._summary
            self._stopped = True
            self._dispatcher.cancel()
            duration_s = int(round((self._clock() - self.started_ms) / 1000.0))
            self._summary = RunSummary(duration_s, self._machine.state.switch_count, reason)
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=max(1.0, self.config.poll_interval_ms / 1000.0 * 4))
        self._logger.emit(
            "info",
            "core.lifecycle",
            "autoswitch_stopped",
            {"reason": reason, "duration_s": self._summary.duration_s, "switch_count": self._summary.switch_count},
        )
        if self._bus is not None:
            self._bus.publish(
                "autoswitch.status",
                {"t_ns": now_ns(), "running": False, "reason": reason, "switch_count": self._summary.switch_count},
            )
        if self._on_stopped is not None:
            self._on_stopped(self)
        return self._summary

    def status(self, now: Optional[float] = None) -> Dict[str, Any]:
        cfg = self.config
        with self._tick_lock:
            if self._stopped:
                return {"running": False}
            state = self._machine.state
            t_ms = self._clock() if now is None else float(now)
            snapshot: Dict[str, Any] = {
                "running": True,
                "mode": cfg.mode,
                "candidates": list(cfg.candidates),
                "host_channel": cfg.host_channel,
                "hold_ms": cfg.hold_ms,
                "cooldown_ms": cfg.cooldown_ms,
                "poll_interval_ms": cfg.poll_interval_ms,
                "transition": cfg.transition,
                "silence_threshold": cfg.silence_threshold,
                "stickiness_margin": cfg.stickiness_margin,
                "confirmed_speaker": state.confirmed_speaker,
                "pending_speaker": state.pending_speaker,
                "switch_count": state.switch_count,
                "running_for_seconds": int(round((t_ms - self.started_ms) / 1000.0)),
                "commands_failed": self._dispatcher.stats.failed,
            }
        if cfg.mode in ("composite_box", "host_hybrid"):
            snapshot["composite_box"] = cfg.composite_box
        return snapshot

    def _on_switch(self, decision: SwitchDecision) -> None:
        speaker = int(decision.speaker)
        group = self._executor.commands_for(speaker)
        self._logger.emit(
            "info",
            "core.lifecycle",
            "speaker_switched",
            {
                "speaker": speaker,
                "name": self._input_name(speaker),
                "previous": decision.previous,
                "switch_count": decision.switch_count,
                "mode": self.config.mode,
                "commands": [c.describe() for c in group.commands],
            },
        )
        if self._bus is not None:
            msg = decision.to_msg()
            msg["t_ns"] = now_ns()
            msg["mode"] = self.config.mode
            self._bus.publish("autoswitch.speaker_changed", msg)
        self._dispatcher.submit(group)

    def _input_name(self, source: int) -> str:
        try:
            return self._link.input_name(source)
        except Exception:  # noqa: BLE001
            return f"Input {source}"

    def _run(self) -> None:
        interval_s = self.config.poll_interval_ms / 1000.0
        while not self._stop_event.wait(interval_s):
            try:
                self.tick()
            except Exception as exc:  # noqa: BLE001
                self._logger.emit("error", "core.lifecycle", "tick_failed", {"error": str(exc)})


class AutoSwitchManager:
    """Owns the auto-switch run for one switcher link."""

    def __init__(
        self,
        link: SwitcherLink,
        bus: Any,
        logger: Any,
        config: Dict[str, Any],
        monitor: Optional[LevelMonitor] = None,
        clock: Clock = now_ms,
    ) -> None:
        self._link = link
        self._bus = bus
        self._logger = logger
        self._config = config
        if monitor is None:
            monitor = LevelMonitor.from_config(bus, LevelTracker.from_config(config), logger, config)
        self._monitor = monitor
        self._clock = clock
        self._lock = threading.Lock()
        self._run: Optional[AutoSwitchRun] = None

    @property
    def link(self) -> SwitcherLink:
        return self._link

    @property
    def logger(self) -> Any:
        return self._logger

    @property
    def monitor(self) -> LevelMonitor:
        return self._monitor

    @property
    def tracker(self) -> LevelTracker:
        return self._monitor.tracker

    @property
    def config(self) -> Dict[str, Any]:
        return self._config

    @property
    def active_run(self) -> Optional[AutoSwitchRun]:
        with self._lock:
            return self._run

    def start(self, options: Optional[Dict[str, Any]] = None, poll: bool = True) -> AutoSwitchRun:
        with self._lock:
            if self._run is not None:
                raise AutoSwitchError("Auto-switch is already running. Stop it first.")
            if not self._link.is_connected():
                raise AutoSwitchError("Not connected to the switcher.")
            if not self._monitor.active:
                raise AutoSwitchError("Audio level tracking is not active. Cannot auto-switch.")
            try:
                cfg = AutoSwitchConfig.from_options(self._config, options)
            except (TypeError, ValueError) as exc:
                raise AutoSwitchError(str(exc)) from exc
            run = AutoSwitchRun(
                cfg,
                self._monitor.tracker,
                self._link,
                self._bus,
                self._logger,
                clock=self._clock,
                on_stopped=self._release,
            )
            self._run = run
        if poll:
            run.start_polling()
        self._logger.emit(
            "info",
            "core.lifecycle",
            "autoswitch_started",
            {
                "mode": cfg.mode,
                "candidates": list(cfg.candidates),
                "host_channel": cfg.host_channel,
                "hold_ms": cfg.hold_ms,
                "cooldown_ms": cfg.cooldown_ms,
                "poll_interval_ms": cfg.poll_interval_ms,
                "transition": cfg.transition,
            },
        )
        return run

    def stop(self) -> RunSummary:
        run = self.active_run
        if run is None:
            raise AutoSwitchError("Auto-switch is not running.")
        return run.stop()

    def status(self) -> Dict[str, Any]:
        run = self.active_run
        if run is None:
            return {"running": False}
        return run.status()

    def handle_connection(self, connected: bool) -> None:
        if connected:
            self._monitor.start(self._link)
            return
        run = self.active_run
        if run is not None:
            run.stop(reason="disconnected")
        self._monitor.reset()
        self._logger.emit("warning", "core.lifecycle", "disconnected", {"stopped_run": run is not None})

    def _release(self, run: AutoSwitchRun) -> None:
        with self._lock:
            if self._run is run:
                self._run = None


def start_connection_watch(
    bus: Any,
    manager: AutoSwitchManager,
    logger: Any,
    stop_event: threading.Event,
) -> threading.Thread:
    q = bus.subscribe("device.connection")

    def _run() -> None:
        while not stop_event.is_set():
            try:
                msg = q.get(timeout=0.1)
            except queue.Empty:
                continue
            manager.handle_connection(bool(msg.get("connected")))
        bus.unsubscribe("device.connection", q)

    thread = threading.Thread(target=_run, name="connection-watch", daemon=True)
    thread.start()
    logger.emit("debug", "core.lifecycle", "connection_watch_started", {})
    return thread
