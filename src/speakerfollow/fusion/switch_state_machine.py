"""
CONTRACT: inline (source: src/speakerfollow/fusion/switch_state_machine.md)
ROLE: Active-speaker switch decision with hold, cooldown and stickiness hysteresis.

INPUTS:
  - Topic: n/a  Type: Dict[channel, LevelReading] snapshot per poll tick
OUTPUTS:
  - Topic: autoswitch.speaker_changed (published by core.lifecycle)  Type: SwitchDecision

CONFIG KEYS:
  - autoswitch.candidates: monitored channels (default 1..8, host excluded unless host_hybrid)
  - autoswitch.host_channel: host camera/mic channel
  - autoswitch.mode: program | composite_box | host_hybrid
  - autoswitch.transition: cut | dissolve
  - autoswitch.composite_box: 0-based slot written in box modes
  - autoswitch.composite_id: composite layout index
  - autoswitch.composite_source: source id of the composite layout itself
  - autoswitch.me: mix-effect bus
  - autoswitch.poll_interval_ms: tick period
  - autoswitch.hold_ms: time a challenger must stay loudest
  - autoswitch.cooldown_ms: minimum time between confirmed switches
  - autoswitch.silence_threshold: level at or below which nobody is speaking
  - autoswitch.stickiness_margin: lead a challenger needs over the current speaker's smoothed level

PERF / TIMING:
  - one evaluation per tick; O(candidates)
  - defaults bound visible switches to one per ~1.25-3.25 s

FAILURE MODES:
  - n/a (silence and stale data are normal inputs)

LOG EVENTS:
  - n/a (decisions are logged by core.lifecycle)

TESTS:
  - tests/test_switch_state_machine.py must cover cooldown, stickiness boundary,
    hold reset and the three-candidate scenario

CONTRACT DETAILS (inline from src/speakerfollow/fusion/switch_state_machine.md):
# Switch decision

Per tick, in order:
1. cooldown: a switch within cooldown_ms -> nothing.
2. loudest candidate by instantaneous level above silence_threshold;
   none -> clear pending.
3. loudest == confirmed -> clear pending.
4. stickiness: confirmed still above threshold on its smoothed level and
   loudest.instantaneous - confirmed.smoothed < stickiness_margin -> clear pending.
5. loudest != pending -> pending = loudest, pending_since = now.
6. pending held >= hold_ms -> confirm, clear pending, start cooldown.

Instantaneous levels catch a new speaker as soon as they start; the smoothed
level keeps the current speaker through pauses between words.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

from speakerfollow.core.config import MODES, TRANSITIONS
from speakerfollow.levels.selector import rank_readings
from speakerfollow.levels.tracker import SILENT_READING, LevelReading


DEFAULT_INPUTS = (1, 2, 3, 4, 5, 6, 7, 8)


@dataclass(frozen=True)
class AutoSwitchConfig:
    candidates: Tuple[int, ...]
    host_channel: Optional[int] = 7
    mode: str = "program"
    transition: str = "cut"
    composite_box: int = 1
    composite_id: int = 0
    composite_source: int = 6000
    me: int = 0
    poll_interval_ms: float = 250.0
    hold_ms: float = 1000.0
    cooldown_ms: float = 2000.0
    silence_threshold: float = -5000.0
    stickiness_margin: float = 200.0

    @classmethod
    def from_options(cls, config: Dict[str, Any], options: Optional[Dict[str, Any]] = None) -> "AutoSwitchConfig":
        """Resolve caller options over the autoswitch.* config defaults.

        Raises ValueError on inconsistent options.
        """
        merged: Dict[str, Any] = dict(config.get("autoswitch", {}))
        for key, value in (options or {}).items():
            if value is not None:
                merged[key] = value
        mode = str(merged.get("mode", "program"))
        if mode not in MODES:
            raise ValueError(f"Unknown auto-switch mode '{mode}' (expected one of {', '.join(MODES)})")
        transition = str(merged.get("transition", "cut"))
        if transition not in TRANSITIONS:
            raise ValueError(f"Unknown transition '{transition}' (expected one of {', '.join(TRANSITIONS)})")
        host_raw = merged.get("host_channel")
        host = int(host_raw) if host_raw is not None else None
        if mode == "host_hybrid" and host is None:
            raise ValueError("host_hybrid mode needs a host channel")

        candidates_raw = merged.get("candidates")
        if candidates_raw is not None:
            candidates = tuple(dict.fromkeys(int(c) for c in candidates_raw))
            if mode == "host_hybrid" and host not in candidates:
                raise ValueError(f"host_hybrid mode needs host channel {host} among the candidates")
        else:
            inputs = config.get("switcher", {}).get("inputs") or DEFAULT_INPUTS
            pool = tuple(int(c) for c in inputs)
            # host_hybrid monitors the host too, so it can tell host from guests.
            candidates = pool if mode == "host_hybrid" else tuple(c for c in pool if c != host)
        if not candidates:
            raise ValueError("Auto-switch needs at least one candidate channel")

        poll_interval_ms = float(merged.get("poll_interval_ms", 250))
        if poll_interval_ms <= 0:
            raise ValueError("poll_interval_ms must be > 0")
        hold_ms = float(merged.get("hold_ms", 1000))
        cooldown_ms = float(merged.get("cooldown_ms", 2000))
        margin = float(merged.get("stickiness_margin", 200))
        if hold_ms < 0 or cooldown_ms < 0 or margin < 0:
            raise ValueError("hold_ms, cooldown_ms and stickiness_margin must be >= 0")
        box = int(merged.get("composite_box", 1))
        if box < 0:
            raise ValueError("composite_box must be >= 0")
        return cls(
            candidates=candidates,
            host_channel=host,
            mode=mode,
            transition=transition,
            composite_box=box,
            composite_id=int(merged.get("composite_id", 0)),
            composite_source=int(merged.get("composite_source", 6000)),
            me=int(merged.get("me", 0)),
            poll_interval_ms=poll_interval_ms,
            hold_ms=hold_ms,
            cooldown_ms=cooldown_ms,
            silence_threshold=float(merged.get("silence_threshold", -5000)),
            stickiness_margin=margin,
        )


@dataclass
class SwitchState:
    confirmed_speaker: Optional[int] = None
    pending_speaker: Optional[int] = None
    pending_since_ms: float = 0.0
    last_switch_ms: Optional[float] = None
    switch_count: int = 0


@dataclass(frozen=True)
class SwitchDecision:
    t_ms: float
    reason: str
    speaker: Optional[int]
    previous: Optional[int] = None
    candidate: Optional[int] = None
    candidate_level: Optional[float] = None
    switched: bool = False
    switch_count: int = 0

    def to_msg(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SwitchStateMachine:
    """Hysteresis core; one instance per auto-switch run."""

    config: AutoSwitchConfig
    state: SwitchState = field(default_factory=SwitchState)

    def evaluate(self, readings: Mapping[int, LevelReading], now: float) -> SwitchDecision:
        cfg = self.config
        st = self.state

        if st.last_switch_ms is not None and (now - st.last_switch_ms) < cfg.cooldown_ms:
            return self._decision(now, "cooldown")

        candidate_readings = {ch: readings.get(ch, SILENT_READING) for ch in cfg.candidates}
        ranked = rank_readings(candidate_readings, use_smoothed=False, silence_threshold=cfg.silence_threshold)
        if not ranked:
            st.pending_speaker = None
            return self._decision(now, "silence")
        loudest, loudest_level = ranked[0]

        if loudest == st.confirmed_speaker:
            st.pending_speaker = None
            return self._decision(now, "maintain", loudest, loudest_level)

        if st.confirmed_speaker is not None:
            current = readings.get(st.confirmed_speaker, SILENT_READING)
            if current.smoothed > cfg.silence_threshold:
                if loudest_level - current.smoothed < cfg.stickiness_margin:
                    st.pending_speaker = None
                    return self._decision(now, "sticky", loudest, loudest_level)

        if loudest != st.pending_speaker:
            st.pending_speaker = loudest
            st.pending_since_ms = now
            return self._decision(now, "pending_start", loudest, loudest_level)

        if (now - st.pending_since_ms) < cfg.hold_ms:
            return self._decision(now, "pending_wait", loudest, loudest_level)

        previous = st.confirmed_speaker
        st.confirmed_speaker = loudest
        st.pending_speaker = None
        st.pending_since_ms = 0.0
        st.last_switch_ms = now
        st.switch_count += 1
        return SwitchDecision(
            t_ms=now,
            reason="switch",
            speaker=loudest,
            previous=previous,
            candidate=loudest,
            candidate_level=loudest_level,
            switched=True,
            switch_count=st.switch_count,
        )

    def _decision(
        self,
        now: float,
        reason: str,
        candidate: Optional[int] = None,
        candidate_level: Optional[float] = None,
    ) -> SwitchDecision:
        return SwitchDecision(
            t_ms=now,
            reason=reason,
            speaker=self.state.confirmed_speaker,
            candidate=candidate,
            candidate_level=candidate_level,
            switch_count=self.state.switch_count,
        )
