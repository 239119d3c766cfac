"""
CONTRACT: inline (source: src/speakerfollow/core/logging.md)
ROLE: Structured logging to the bus + console.

INPUTS:
  - Topic: n/a  Type: n/a
OUTPUTS:
  - Topic: log.events  Type: LogEvent

CONFIG KEYS:
  - logging.level: minimum console level

PERF / TIMING:
  - emit never blocks on file I/O (file writes happen in core.log_sink)

FAILURE MODES:
  - n/a

LOG EVENTS:
  - n/a

TESTS:
  - tests/test_config_and_logging.py

CONTRACT DETAILS (inline from src/speakerfollow/core/logging.md):
# Logging contract

- Structured LogEvent with module, severity, and context.
- Every event is published on log.events regardless of level so a host
  application can subscribe to command failures.
- Console output is one JSON object per line, filtered by logging.level.
"""

from __future__ import annotations

import json
import sys
from typing import Any, Dict, Optional, TextIO

from speakerfollow.core.clock import now_ns


LEVELS = {"debug": 10, "info": 20, "warning": 30, "error": 40}


class LogEmitter:
    """Emit structured LogEvents to the bus and the console."""

    def __init__(
        self,
        bus: Optional[Any],
        min_level: str = "info",
        run_id: str = "",
        stream: Optional[TextIO] = None,
    ) -> None:
        self._bus = bus
        self._min_level = LEVELS.get(min_level, 20)
        self._run_id = run_id
        self._stream = stream

    def emit(self, level: str, module: str, event: str, payload: Optional[Dict[str, Any]] = None) -> None:
        record = {
            "t_ns": now_ns(),
            "level": level,
            "message": event,
            "context": {
                "module": module,
                "event": event,
                "details": payload or {},
            },
        }
        if self._run_id:
            record["run_id"] = self._run_id
        if self._bus is not None:
            self._bus.publish("log.events", record)
        if LEVELS.get(level, 0) >= self._min_level:
            # stdout may carry a caller's protocol stream; default to stderr.
            print(json.dumps(record, sort_keys=True), file=self._stream or sys.stderr)
