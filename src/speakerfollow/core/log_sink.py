"""
CONTRACT: inline (source: src/speakerfollow/core/log_sink.md)
ROLE: Persist LogEvents to a JSONL file.

INPUTS:
  - Topic: log.events  Type: LogEvent
OUTPUTS:
  - Topic: n/a  Type: n/a

CONFIG KEYS:
  - logging.file.enabled: enable file sink (bool)
  - logging.file.path: JSONL destination
  - logging.file.flush_interval_ms: flush cadence
  - logging.file.rotate_mb: rotate size (0 disables)

PERF / TIMING:
  - buffered writes, periodic flush

FAILURE MODES:
  - write failure -> stop sink -> log log_write_failed

LOG EVENTS:
  - module=core.log_sink, event=log_write_failed, payload keys=path, error

TESTS:
  - tests/test_config_and_logging.py covers JSONL output
"""

from __future__ import annotations

import json
import queue
import threading
import time
from pathlib import Path
from typing import Any, Dict, Optional


def start_log_sink(
    bus: Any,
    config: Dict[str, Any],
    logger: Any,
    stop_event: threading.Event,
) -> Optional[threading.Thread]:
    file_cfg = config.get("logging", {}).get("file", {})
    if not isinstance(file_cfg, dict):
        file_cfg = {}
    if not bool(file_cfg.get("enabled", False)):
        return None
    raw_path = str(file_cfg.get("path", "") or "")
    if not raw_path:
        return None

    flush_interval_ms = float(file_cfg.get("flush_interval_ms", 200.0))
    rotate_mb = float(file_cfg.get("rotate_mb", 0.0))
    path = Path(raw_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    q = bus.subscribe("log.events", max_depth=256)

    def _run() -> None:
        fh = open(path, "a", encoding="utf-8")
        next_flush = time.time() + (flush_interval_ms / 1000.0)
        file_index = 0
        try:
            while True:
                try:
                    event = q.get(timeout=0.1)
                except queue.Empty:
                    event = None
                    if stop_event.is_set():
                        break
                if event is not None:
                    fh.write(json.dumps(event, sort_keys=True) + "\n")
                now = time.time()
                if now >= next_flush:
                    fh.flush()
                    next_flush = now + (flush_interval_ms / 1000.0)
                    if rotate_mb > 0 and fh.tell() >= int(rotate_mb * 1024 * 1024):
                        fh.close()
                        file_index += 1
                        rotated = path.with_name(f"{path.stem}.{file_index:03d}{path.suffix}")
                        try:
                            path.rename(rotated)
                        except OSError:
                            pass
                        fh = open(path, "a", encoding="utf-8")
        except Exception as exc:  # noqa: BLE001
            logger.emit("warning", "core.log_sink", "log_write_failed", {"path": str(path), "error": str(exc)})
        finally:
            try:
                fh.flush()
                fh.close()
            except Exception:  # noqa: BLE001
                pass
            bus.unsubscribe("log.events", q)

    thread = threading.Thread(target=_run, name="log-sink", daemon=True)
    thread.start()
    return thread
