import copy
import json
from pathlib import Path
from typing import Any, Dict, Optional

import constants
from constants import SETTINGS_PATH

DEFAULT_SETTINGS: Dict[str, Dict[str, Any]] = {
    "obs": {
        "host": constants.DEFAULT_OBS_HOST,
        "port": constants.DEFAULT_OBS_PORT,
        "password": constants.DEFAULT_OBS_PASSWORD,
        "timeout": 3,
    },
    "detection": {
        "cycle_delay": constants.DEFAULT_CYCLE_DELAY,
        "primary_cooldown": constants.DEFAULT_PRIMARY_COOLDOWN,
        "secondary_cooldown": constants.DEFAULT_SECONDARY_COOLDOWN,
        "capture_timeout": constants.DEFAULT_CAPTURE_TIMEOUT,
        "ocr_timeout": constants.DEFAULT_OCR_TIMEOUT,
        "reconnect_interval": constants.DEFAULT_RECONNECT_INTERVAL,
    },
    "resolver": {
        "settle_delay": constants.DEFAULT_SETTLE_DELAY,
        "backoff": constants.DEFAULT_RESOLVE_BACKOFF,
        "max_attempts": constants.DEFAULT_RESOLVE_ATTEMPTS,
    },
    "replay_buffer": {
        "length_seconds": 30,
        "auto_start": True,
    },
    "retention": {
        "auto_delete_clips": False,
        "delete_after_days": 3,
    },
    "validation": {
        "validate_on_stop": True,
        "model_name": "gemini-2.0-flash",
        "proximity_window": 60,
    },
}


def load_settings(path: Optional[Path] = None) -> Dict[str, Any]:
    """Read persisted settings, filling any missing keys from the defaults."""
    settings_path = Path(path or SETTINGS_PATH)
    if not settings_path.exists():
        return copy.deepcopy(DEFAULT_SETTINGS)
    try:
        data = json.loads(settings_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return copy.deepcopy(DEFAULT_SETTINGS)
    if not isinstance(data, dict):
        return copy.deepcopy(DEFAULT_SETTINGS)
    return deep_merge(DEFAULT_SETTINGS, data)


def save_settings(patch: Dict[str, Any], path: Optional[Path] = None) -> Dict[str, Any]:
    """Merge ``patch`` into the stored settings and persist the result."""
    settings_path = Path(path or SETTINGS_PATH)
    merged = deep_merge(load_settings(settings_path), patch)
    settings_path.parent.mkdir(parents=True, exist_ok=True)
    settings_path.write_text(json.dumps(merged, indent=2), encoding="utf-8")
    return merged


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        elif value is not None:
            merged[key] = copy.deepcopy(value)
    return merged
