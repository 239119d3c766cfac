"""
CONTRACT: inline (source: src/speakerfollow/fusion/mode_executor.md)
ROLE: Turn confirmed speaker changes into switcher commands and dispatch them fire-and-forget.

INPUTS:
  - Topic: n/a  Type: SwitchDecision (switched=True)
OUTPUTS:
  - Topic: autoswitch.command_failed  Type: CommandFailure

CONFIG KEYS:
  - autoswitch.mode: program | composite_box | host_hybrid
  - autoswitch.transition: cut | dissolve (program mode)
  - autoswitch.composite_box / composite_id / composite_source / me

PERF / TIMING:
  - planning is pure; device I/O runs on the per-run dispatcher thread,
    so a slow device never delays the next poll tick

FAILURE MODES:
  - command error -> log command_failed, skip the rest of a chained group,
    keep running (a stale switch is never retried)

LOG EVENTS:
  - module=fusion.mode_executor, event=command_failed, payload keys=command, error
  - module=fusion.mode_executor, event=commands_discarded, payload keys=count

TESTS:
  - tests/test_mode_executor.py must cover every mode, ordering and failure isolation

CONTRACT DETAILS (inline from src/speakerfollow/fusion/mode_executor.md):
# Mode executor

- program + cut: program <- speaker.
- program + dissolve: preview <- speaker, then auto transition (only if
  staging succeeded).
- composite_box: box[composite_box].source <- speaker; program untouched.
- host_hybrid: host speaking -> program <- host; guest speaking ->
  box[composite_box].source <- guest, then program <- composite_source.
"""

from __future__ import annotations

import queue
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from speakerfollow.core.clock import now_ns
from speakerfollow.devices.base import SwitcherLink
from speakerfollow.fusion.switch_state_machine import AutoSwitchConfig


@dataclass(frozen=True)
class SwitchCommand:
    kind: str
    args: Tuple[Any, ...] = ()

    def describe(self) -> str:
        return f"{self.kind}({', '.join(str(a) for a in self.args)})"


@dataclass(frozen=True)
class CommandGroup:
    speaker: int
    commands: Tuple[SwitchCommand, ...]
    # Chained groups stop at the first failure.
    chained: bool = False
    label: str = ""


class ModeExecutor:
    """Plan device commands for a confirmed speaker according to the run's mode."""

    def __init__(self, config: AutoSwitchConfig) -> None:
        self._cfg = config

    def commands_for(self, speaker: int) -> CommandGroup:
        cfg = self._cfg
        if cfg.mode == "host_hybrid":
            if speaker == cfg.host_channel:
                return CommandGroup(
                    speaker,
                    (SwitchCommand("program", (speaker, cfg.me)),),
                    label="host_fullscreen",
                )
            return CommandGroup(
                speaker,
                (
                    SwitchCommand("box", (cfg.composite_box, {"source": speaker}, cfg.composite_id)),
                    SwitchCommand("program", (cfg.composite_source, cfg.me)),
                ),
                label="guest_composite",
            )
        if cfg.mode == "composite_box":
            return CommandGroup(
                speaker,
                (SwitchCommand("box", (cfg.composite_box, {"source": speaker}, cfg.composite_id)),),
                label="composite_box",
            )
        if cfg.transition == "dissolve":
            return CommandGroup(
                speaker,
                (SwitchCommand("preview", (speaker, cfg.me)), SwitchCommand("auto", (cfg.me,))),
                chained=True,
                label="dissolve",
            )
        return CommandGroup(speaker, (SwitchCommand("program", (speaker, cfg.me)),), label="cut")


def execute_command(link: SwitcherLink, command: SwitchCommand) -> None:
    if command.kind == "program":
        source, me = command.args
        link.change_program_input(source, me)
    elif command.kind == "preview":
        source, me = command.args
        link.change_preview_input(source, me)
    elif command.kind == "auto":
        (me,) = command.args
        link.auto_transition(me)
    elif command.kind == "box":
        box, settings, composite_id = command.args
        link.set_composite_box(box, settings, composite_id)
    else:
        raise ValueError(f"Unknown switch command: {command.kind}")


@dataclass
class DispatchStats:
    dispatched: int = 0
    failed: int = 0
    discarded: int = 0
    failures: List[Dict[str, Any]] = field(default_factory=list)


class CommandDispatcher:
    """FIFO worker that sends command groups to the link without blocking the poll loop.

    After cancel() returns, no further command is sent to the link.
    """

    def __init__(self, link: SwitcherLink, bus: Optional[Any], logger: Any, name: str = "autoswitch-dispatch") -> None:
        self._link = link
        self._bus = bus
        self._logger = logger
        self._queue: "queue.Queue[Optional[CommandGroup]]" = queue.Queue()
        # _state_lock guards bookkeeping; _send_lock is held for each device call.
        self._state_lock = threading.Lock()
        self._send_lock = threading.Lock()
        self._cancelled = False
        self._pending = 0
        self._idle = threading.Event()
        self._idle.set()
        self.stats = DispatchStats()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self._thread.start()

    def submit(self, group: CommandGroup) -> bool:
        with self._state_lock:
            if self._cancelled:
                return False
            self._pending += 1
            self._idle.clear()
        self._queue.put(group)
        return True

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until every submitted group has been handled."""
        return self._idle.wait(timeout)

    def cancel(self, join_timeout: float = 1.0) -> None:
        with self._state_lock:
            self._cancelled = True
        # Wait out a device call already in flight.
        with self._send_lock:
            pass
        self._queue.put(None)
        if threading.current_thread() is not self._thread:
            self._thread.join(timeout=join_timeout)

    def _is_cancelled(self) -> bool:
        with self._state_lock:
            return self._cancelled

    def _run(self) -> None:
        while True:
            group = self._queue.get()
            if group is None:
                break
            self._handle(group)
        self._drain_discarded()

    def _handle(self, group: CommandGroup) -> None:
        for index, command in enumerate(group.commands):
            with self._send_lock:
                if self._is_cancelled():
                    with self._state_lock:
                        self.stats.discarded += len(group.commands) - index
                    break
                try:
                    execute_command(self._link, command)
                except Exception as exc:  # noqa: BLE001
                    self._report_failure(group, command, exc)
                    if group.chained:
                        break
                    continue
            with self._state_lock:
                self.stats.dispatched += 1
        self._mark_done()

    def _report_failure(self, group: CommandGroup, command: SwitchCommand, exc: Exception) -> None:
        failure = {
            "t_ns": now_ns(),
            "speaker": group.speaker,
            "group": group.label,
            "command": command.describe(),
            "error": str(exc),
        }
        with self._state_lock:
            self.stats.failed += 1
            self.stats.failures.append(failure)
        self._logger.emit("error", "fusion.mode_executor", "command_failed", failure)
        if self._bus is not None:
            self._bus.publish("autoswitch.command_failed", failure)

    def _mark_done(self) -> None:
        with self._state_lock:
            self._pending -= 1
            if self._pending <= 0:
                self._pending = 0
                self._idle.set()

    def _drain_discarded(self) -> None:
        count = 0
        try:
            while True:
                group = self._queue.get_nowait()
                if group is not None:
                    count += len(group.commands)
        except queue.Empty:
            pass
        with self._state_lock:
            self.stats.discarded += count
            self._pending = 0
            self._idle.set()
        if count:
            self._logger.emit("debug", "fusion.mode_executor", "commands_discarded", {"count": count})
