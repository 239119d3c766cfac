"""
CONTRACT: inline (source: src/speakerfollow/tools/autoswitch.md)
ROLE: Caller-facing auto-switch operations returning human-readable text or JSON-able dicts.

INPUTS:
  - Topic: n/a  Type: keyword options from the calling surface
OUTPUTS:
  - Topic: n/a  Type: str | dict

CONFIG KEYS:
  - gallery.guest_slots: guest boxes filled by go_gallery
  - autoswitch.composite_id / composite_source / silence_threshold

PERF / TIMING:
  - returns immediately; switching happens on the run's own threads

FAILURE MODES:
  - AutoSwitchError -> returned as a message, never raised to the caller
  - gallery command failure -> SwitcherCommandError propagates to the caller

LOG EVENTS:
  - module=tools.autoswitch, event=gallery_applied, payload keys=host, guests, method

TESTS:
  - tests/test_tools_and_gallery.py

CONTRACT DETAILS (inline from src/speakerfollow/tools/autoswitch.md):
# Tool surface

- start_auto_switch / stop_auto_switch return status text including the
  effective configuration and run statistics.
- get_auto_switch_status returns {"running": False} when idle, which is
  distinct from a running run whose confirmed_speaker is None.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from speakerfollow.core.lifecycle import AutoSwitchError, AutoSwitchManager
from speakerfollow.fusion.gallery import pick_gallery
from speakerfollow.fusion.switch_state_machine import AutoSwitchConfig
from speakerfollow.levels.selector import rank


def start_auto_switch(
    manager: AutoSwitchManager,
    candidates: Optional[Sequence[int]] = None,
    host_channel: Optional[int] = None,
    mode: Optional[str] = None,
    transition: Optional[str] = None,
    composite_box: Optional[int] = None,
    composite_id: Optional[int] = None,
    me: Optional[int] = None,
    poll_interval_ms: Optional[float] = None,
    hold_ms: Optional[float] = None,
    cooldown_ms: Optional[float] = None,
    silence_threshold: Optional[float] = None,
    stickiness_margin: Optional[float] = None,
) -> str:
    options = {
        "candidates": list(candidates) if candidates is not None else None,
        "host_channel": host_channel,
        "mode": mode,
        "transition": transition,
        "composite_box": composite_box,
        "composite_id": composite_id,
        "me": me,
        "poll_interval_ms": poll_interval_ms,
        "hold_ms": hold_ms,
        "cooldown_ms": cooldown_ms,
        "silence_threshold": silence_threshold,
        "stickiness_margin": stickiness_margin,
    }
    try:
        run = manager.start(options)
    except AutoSwitchError as exc:
        return str(exc)
    return describe_start(run.config)


def describe_start(cfg: AutoSwitchConfig) -> str:
    monitored = ", ".join(str(c) for c in cfg.candidates)
    timing = f"Hold: {_seconds(cfg.hold_ms)}s, cooldown: {_seconds(cfg.cooldown_ms)}s."
    if cfg.mode == "host_hybrid":
        return (
            f"Auto-switch started in host + composite mode. Host (input {cfg.host_channel}) talking -> full-screen. "
            f"Guest talking -> composite layout with the guest in box {cfg.composite_box + 1}. "
            f"Monitoring inputs [{monitored}]. {timing}"
        )
    if cfg.mode == "composite_box":
        return (
            f"Auto-switch started in composite box mode. Box {cfg.composite_box + 1} will follow the active speaker. "
            f"Monitoring inputs [{monitored}]. {timing}"
        )
    return f"Auto-switch started. Monitoring inputs [{monitored}]. {timing} Transition: {cfg.transition}."


def stop_auto_switch(manager: AutoSwitchManager) -> str:
    try:
        summary = manager.stop()
    except AutoSwitchError as exc:
        return str(exc)
    return f"Auto-switch stopped. Ran for {summary.duration_s}s with {summary.switch_count} switches."


def get_auto_switch_status(manager: AutoSwitchManager) -> Dict[str, Any]:
    return manager.status()


def get_audio_levels(
    manager: AutoSwitchManager,
    candidates: Optional[Sequence[int]] = None,
    include_all: bool = False,
) -> Dict[str, Any]:
    """Loudest-first smoothed levels plus per-channel diagnostics."""
    tracker = manager.tracker
    channels: List[int] = list(candidates) if candidates is not None else tracker.channels()
    threshold = float(manager.config.get("autoswitch", {}).get("silence_threshold", -5000))
    ranked = rank(tracker, channels, include_all=include_all, silence_threshold=threshold)
    return {
        "tracking_active": manager.monitor.active,
        "active": [{"input": ch, "level": round(level, 1)} for ch, level in ranked],
        "channels": {str(ch): info for ch, info in tracker.describe().items() if ch in channels},
    }


def go_gallery(
    manager: AutoSwitchManager,
    host: int = 7,
    guests: Optional[Sequence[int]] = None,
    cut_to_program: bool = True,
) -> str:
    link = manager.link
    if not link.is_connected():
        return "Not connected to the switcher."
    cfg = manager.config
    auto_cfg = cfg.get("autoswitch", {})
    inputs = [int(c) for c in cfg.get("switcher", {}).get("inputs", [1, 2, 3, 4, 5, 6, 7, 8])]
    pool = list(guests) if guests is not None else [c for c in inputs if c != host]
    plan = pick_gallery(
        manager.tracker if manager.monitor.active else None,
        host,
        pool,
        slots=max(1, min(3, int(cfg.get("gallery", {}).get("guest_slots", 3)))),
        silence_threshold=float(auto_cfg.get("silence_threshold", -5000)),
    )
    composite_id = int(auto_cfg.get("composite_id", 0))
    for box, settings in enumerate(plan.boxes()):
        link.set_composite_box(box, settings, composite_id)
    if cut_to_program:
        link.change_program_input(int(auto_cfg.get("composite_source", 6000)), int(auto_cfg.get("me", 0)))
    manager.logger.emit("info", "tools.autoswitch", "gallery_applied", {"host": host, "guests": list(plan.guests), "method": plan.method})

    labels = ["top-left", "top-right", "bottom-left", "bottom-right"]
    lines = ["Gallery view live! 2x2 grid:", f"  Box 1 ({labels[0]}): {link.input_name(host)} ({host}) [HOST]"]
    for index in range(1, 4):
        if index - 1 < len(plan.guests):
            guest = plan.guests[index - 1]
            lines.append(f"  Box {index + 1} ({labels[index]}): {link.input_name(guest)} ({guest})")
        else:
            lines.append(f"  Box {index + 1} ({labels[index]}): none")
    lines.append(f"Guest selection: {plan.method}")
    return "\n".join(lines)


def _seconds(ms: float) -> str:
    value = ms / 1000.0
    return f"{value:g}"
