"""
CONTRACT: inline (source: src/speakerfollow/core/config.md)
ROLE: Load YAML config, validate, and expose typed accessors.

INPUTS:
  - Topic: n/a  Type: n/a
OUTPUTS:
  - Topic: n/a  Type: n/a

CONFIG KEYS:
  - config_path: path to YAML file
  - runtime.enable_validation: enable validation (bool)
  - autoswitch.tuning_preset: name of a preset in tuning_presets.yaml

PERF / TIMING:
  - load once at startup

FAILURE MODES:
  - missing/invalid key -> raise error -> log validation_failed

LOG EVENTS:
  - module=core.config, event=validation_failed, payload keys=path, errors

TESTS:
  - tests/test_config_and_logging.py must cover defaults, presets and validation

CONTRACT DETAILS (inline from src/speakerfollow/core/config.md):
# Config contract

- Config files define the switcher connection, level tracking and auto-switch tuning.
- Every auto-switch constant (hold, cooldown, silence threshold, stickiness
  margin) is a config default, overridable per deployment and per start call.
- Precedence: built-in defaults < tuning preset < config file < start options.
- Validation must reject missing or inconsistent fields.
"""

from __future__ import annotations

import copy
import os
from typing import Any, Dict, List

import yaml


MODES = ("program", "composite_box", "host_hybrid")
TRANSITIONS = ("cut", "dissolve")


def load_config(path: str) -> Dict[str, Any]:
    """Load YAML config and apply defaults."""
    with open(path, "r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    defaults = _default_config()
    preset = _load_tuning_preset(_merge_dicts(defaults, data), path)
    # Preset sits between built-in defaults and the file: explicit file keys win.
    merged = _merge_dicts(_merge_dicts(defaults, {"autoswitch": preset}), data)
    if bool(get_path(merged, "runtime.enable_validation", False)):
        errors = validate_config(merged)
        if errors:
            joined = "\n".join(f"- {e}" for e in errors)
            raise ValueError(f"Config validation failed for {path}:\n{joined}")
    return merged


def default_config() -> Dict[str, Any]:
    """Return a fresh copy of the built-in defaults."""
    return _default_config()


def get_path(config: Dict[str, Any], dotted_path: str, default: Any = None) -> Any:
    """Get a nested config value by dotted path."""
    node: Any = config
    for key in dotted_path.split("."):
        if not isinstance(node, dict) or key not in node:
            return default
        node = node[key]
    return node


def _default_config() -> Dict[str, Any]:
    return {
        "runtime": {
            "run_id": "",
            "enable_validation": False,
        },
        "switcher": {
            "driver": "fake",
            "host": "127.0.0.1",
            "port": 9910,
            "inputs": [1, 2, 3, 4, 5, 6, 7, 8],
        },
        "levels": {
            # Hundredths of a dB: -10000 is silence, -2000 is normal speech.
            "ema_alpha": 0.3,
            "stale_ms": 5000,
            "window_size": 12,
            "queue_depth": 256,
        },
        "autoswitch": {
            "tuning_preset": "",
            "mode": "program",
            "transition": "cut",
            "host_channel": 7,
            "composite_box": 1,
            "composite_id": 0,
            "composite_source": 6000,
            "me": 0,
            "poll_interval_ms": 250,
            "hold_ms": 1000,
            "cooldown_ms": 2000,
            "silence_threshold": -5000,
            "stickiness_margin": 200,
        },
        "gallery": {
            "guest_slots": 3,
        },
        "bus": {
            "max_queue_depth": 8,
        },
        "logging": {
            "level": "info",
            "file": {
                "enabled": False,
                "path": "logs/events.jsonl",
                "flush_interval_ms": 200,
                "rotate_mb": 0,
            },
        },
        "simulation": {
            "duration_s": 20.0,
            "sample_hz": 20.0,
            "talkers": [2, 3],
            "turn_s": 4.0,
            "seed": 7,
        },
    }


def _merge_dicts(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    result = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _merge_dicts(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def _load_tuning_preset(config: Dict[str, Any], config_path: str) -> Dict[str, Any]:
    preset = get_path(config, "autoswitch.tuning_preset")
    if not preset:
        return {}
    preset_path = os.path.join(os.path.dirname(config_path), "tuning_presets.yaml")
    if not os.path.exists(preset_path):
        return {}
    with open(preset_path, "r", encoding="utf-8") as handle:
        presets = yaml.safe_load(handle) or {}
    preset_values = presets.get(preset)
    if not isinstance(preset_values, dict):
        return {}
    return preset_values


def validate_config(config: Dict[str, Any]) -> List[str]:
    """Return a list of validation errors for the merged config.

    Catches the common "it runs but never switches" mistakes early.
    """
    errors: List[str] = []

    levels_cfg = config.get("levels", {})
    if not isinstance(levels_cfg, dict):
        levels_cfg = {}
    alpha = float(levels_cfg.get("ema_alpha", 0.3))
    if not 0.0 < alpha <= 1.0:
        errors.append("levels.ema_alpha must be in (0, 1]")
    if float(levels_cfg.get("stale_ms", 0) or 0) <= 0:
        errors.append("levels.stale_ms must be > 0")
    if int(levels_cfg.get("window_size", 1) or 0) < 1:
        errors.append("levels.window_size must be >= 1")

    auto_cfg = config.get("autoswitch", {})
    if not isinstance(auto_cfg, dict):
        auto_cfg = {}
    mode = str(auto_cfg.get("mode", "") or "")
    if mode not in MODES:
        errors.append(f"autoswitch.mode '{mode}' must be one of {', '.join(MODES)}")
    transition = str(auto_cfg.get("transition", "") or "")
    if transition not in TRANSITIONS:
        errors.append(f"autoswitch.transition '{transition}' must be one of {', '.join(TRANSITIONS)}")
    if float(auto_cfg.get("poll_interval_ms", 0) or 0) <= 0:
        errors.append("autoswitch.poll_interval_ms must be > 0")
    for key in ("hold_ms", "cooldown_ms", "stickiness_margin"):
        if float(auto_cfg.get(key, 0) or 0) < 0:
            errors.append(f"autoswitch.{key} must be >= 0")
    if int(auto_cfg.get("composite_box", 0) or 0) < 0:
        errors.append("autoswitch.composite_box must be >= 0")
    candidates = auto_cfg.get("candidates")
    if candidates is not None:
        if not isinstance(candidates, list) or not candidates:
            errors.append("autoswitch.candidates must be a non-empty list when set")
    if mode == "host_hybrid" and auto_cfg.get("host_channel") is None:
        errors.append("autoswitch.mode is host_hybrid but autoswitch.host_channel is missing")
    if mode == "host_hybrid" and isinstance(candidates, list) and candidates:
        host = auto_cfg.get("host_channel")
        if host is not None and int(host) not in [int(c) for c in candidates]:
            errors.append(f"autoswitch.candidates must include host_channel {host} in host_hybrid mode")

    return errors
