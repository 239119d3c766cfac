"""
CONTRACT: inline (source: src/speakerfollow/devices/base.md)
ROLE: Boundary interface to the switcher device link.

INPUTS:
  - Topic: n/a  Type: n/a
OUTPUTS:
  - Topic: device.levels  Type: LevelSample
  - Topic: device.connection  Type: ConnectionStatus

CONFIG KEYS:
  - switcher.driver: device link implementation (fake)
  - switcher.host / switcher.port: device address

PERF / TIMING:
  - level and connection messages are published from the link's own thread

FAILURE MODES:
  - command failure -> raise SwitcherCommandError (callers decide to log or propagate)

LOG EVENTS:
  - n/a

TESTS:
  - exercised through devices.fake in every engine test

CONTRACT DETAILS (inline from src/speakerfollow/devices/base.md):
# Device link

- The link owns protocol state, connection and timeouts; this package only
  maps intents onto its command methods.
- Level samples carry a channel index and a level in hundredths of a dB, or a
  left/right pair from which the louder side is used.
- Command methods block until the device accepts or rejects the command.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from speakerfollow.core.clock import now_ns


class SwitcherCommandError(RuntimeError):
    """A command could not be delivered to the switcher."""


class SwitcherLink(ABC):
    """Abstract base class for switcher device links."""

    def __init__(self, bus: Optional[Any] = None) -> None:
        self._bus = bus

    @abstractmethod
    def connect(self) -> None:
        """Establish the connection; publishes device.connection on success."""

    @abstractmethod
    def disconnect(self) -> None:
        """Close the connection; publishes device.connection."""

    @abstractmethod
    def is_connected(self) -> bool:
        """Check if the connection is established."""

    @abstractmethod
    def start_level_stream(self) -> None:
        """Ask the mixer to start sending per-input loudness levels."""

    @abstractmethod
    def change_program_input(self, source: int, me: int = 0) -> None:
        """Put a source on the primary (program) output immediately."""

    @abstractmethod
    def change_preview_input(self, source: int, me: int = 0) -> None:
        """Stage a source as the next (preview) source."""

    @abstractmethod
    def auto_transition(self, me: int = 0) -> None:
        """Run the configured timed transition from program to preview."""

    @abstractmethod
    def set_composite_box(self, box: int, settings: Dict[str, Any], composite_id: int = 0) -> None:
        """Update one slot of a composite layout (e.g. {"source": 3})."""

    def input_name(self, source: int) -> str:
        return f"Input {source}"

    def publish_level(self, channel: int, level: float) -> None:
        if self._bus is not None:
            self._bus.publish("device.levels", {"t_ns": now_ns(), "channel": int(channel), "level": float(level)})

    def publish_connection(self, connected: bool) -> None:
        if self._bus is not None:
            self._bus.publish("device.connection", {"t_ns": now_ns(), "connected": bool(connected)})
