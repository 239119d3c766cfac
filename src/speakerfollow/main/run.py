"""
CONTRACT: inline (source: src/speakerfollow/main/run.md)
ROLE: Simulation entrypoint: fake switcher + synthetic talkers driving one auto-switch run.

INPUTS:
  - Topic: n/a  Type: n/a
OUTPUTS:
  - Topic: log.events  Type: LogEvent

CONFIG KEYS:
  - runtime.run_id: stamped on every log record
  - simulation.duration_s: seconds to run before stopping auto-switch
  - switcher.driver: only "fake" is runnable from this entrypoint

PERF / TIMING:
  - start modules in defined order; stop in reverse order

FAILURE MODES:
  - missing config file -> fall back to built-in defaults -> log config_defaults
  - auto-switch refused to start -> log start_refused, exit 1

LOG EVENTS:
  - module=main.run, event=started, payload keys=mode, duration_s
  - module=main.run, event=config_defaults, payload keys=path
  - module=main.run, event=start_refused, payload keys=message
  - module=main.run, event=shutdown, payload keys=n/a

TESTS:
  - exercised end to end by tests/test_lifecycle.py building blocks
"""

from __future__ import annotations

import argparse
import json
import os
import sys
import threading
import time
from typing import Any, Dict, List, Optional

from speakerfollow.core.bus import Bus
from speakerfollow.core.clock import now_ns
from speakerfollow.core.config import default_config, load_config
from speakerfollow.core.lifecycle import AutoSwitchManager, start_connection_watch
from speakerfollow.core.log_sink import start_log_sink
from speakerfollow.core.logging import LogEmitter
from speakerfollow.devices.fake import FakeSwitcherLink, start_synthetic_levels
from speakerfollow.tools.autoswitch import get_auto_switch_status, start_auto_switch, stop_auto_switch


def _load(path: str) -> tuple[Dict[str, Any], bool]:
    if os.path.exists(path):
        return load_config(path), True
    return default_config(), False


def _parse_inputs(raw: Optional[str]) -> Optional[List[int]]:
    if not raw:
        return None
    return [int(part) for part in raw.split(",") if part.strip()]


def main() -> None:
    parser = argparse.ArgumentParser(description="SpeakerFollow auto-switch simulation")
    parser.add_argument("--config", default="configs/default.yaml", help="Path to YAML config")
    parser.add_argument("--mode", default=None, help="Override autoswitch.mode")
    parser.add_argument("--candidates", default=None, help="Comma separated input numbers")
    parser.add_argument("--duration", type=float, default=None, help="Override simulation.duration_s")
    args = parser.parse_args()

    config, from_file = _load(args.config)
    bus = Bus(max_queue_depth=int(config.get("bus", {}).get("max_queue_depth", 8)))
    logger = LogEmitter(bus, min_level=config.get("logging", {}).get("level", "info"), run_id=str(config.get("runtime", {}).get("run_id", "")))
    stop_event = threading.Event()

    drop_throttle: Dict[str, float] = {}

    def _on_drop(topic: str, depth: int) -> None:
        now_s = time.time()
        last = drop_throttle.get(topic, 0.0)
        if now_s - last < 0.25:
            return
        drop_throttle[topic] = now_s
        if topic == "log.events":
            print(json.dumps({"t_ns": now_ns(), "level": "warning", "module": "core.bus", "event": "queue_full", "topic": topic, "depth": depth}), file=sys.stderr)
            return
        logger.emit("warning", "core.bus", "queue_full", {"topic": topic, "depth": depth})

    bus.set_drop_handler(_on_drop)
    if not from_file:
        logger.emit("warning", "main.run", "config_defaults", {"path": args.config})

    driver = str(config.get("switcher", {}).get("driver", "fake"))
    if driver != "fake":
        raise SystemExit(f"Unsupported switcher driver: {driver}")

    threads: List[threading.Thread] = []
    log_thread = start_log_sink(bus, config, logger, stop_event)
    if log_thread is not None:
        threads.append(log_thread)

    link = FakeSwitcherLink(bus)
    manager = AutoSwitchManager(link, bus, logger, config)
    threads.append(start_connection_watch(bus, manager, logger, stop_event))
    link.connect()
    # Connection events are handled asynchronously; level tracking must be up before start.
    deadline = time.time() + 2.0
    while not manager.monitor.active and time.time() < deadline:
        time.sleep(0.02)
    threads.append(start_synthetic_levels(link, config, logger, stop_event))

    duration_s = float(args.duration if args.duration is not None else config.get("simulation", {}).get("duration_s", 20.0))
    message = start_auto_switch(manager, candidates=_parse_inputs(args.candidates), mode=args.mode)
    print(message)
    if manager.active_run is None:
        logger.emit("error", "main.run", "start_refused", {"message": message})
        stop_event.set()
        raise SystemExit(1)

    logger.emit("info", "main.run", "started", {"mode": manager.status().get("mode"), "duration_s": duration_s})
    try:
        deadline = time.time() + duration_s
        while time.time() < deadline and not stop_event.is_set():
            time.sleep(0.2)
    except KeyboardInterrupt:
        logger.emit("info", "main.run", "shutdown", {})

    status = get_auto_switch_status(manager)
    print(stop_auto_switch(manager))
    print(json.dumps({"final_status": status, "program": link.program, "commands": len(link.commands)}, default=str))
    link.disconnect()
    stop_event.set()
    for thread in reversed(threads):
        thread.join(timeout=1.0)


if __name__ == "__main__":
    main()
