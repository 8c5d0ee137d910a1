import os
from pathlib import Path

# Everything lives under one home directory unless a specific path is overridden.
CLIPWATCH_HOME = Path(os.environ.get("CLIPWATCH_HOME", str(Path.home() / ".clipwatch")))

CLIP_DIR = Path(os.environ.get("CLIPWATCH_CLIP_DIR", str(CLIPWATCH_HOME / "clips")))
EVIDENCE_DIR = Path(os.environ.get("CLIPWATCH_EVIDENCE_DIR", str(CLIPWATCH_HOME / "evidence")))
MAPPING_PATH = CLIPWATCH_HOME / "evidence_map.json"
SESSION_LOG_PATH = CLIPWATCH_HOME / "sessions.json"
SETTINGS_PATH = CLIPWATCH_HOME / "settings.json"

VIDEO_EXTENSIONS = (".mp4", ".mkv")
EVIDENCE_PREFIX = "evidence"
EVIDENCE_EXTENSION = ".png"

# Microsecond resolution keeps names unique inside one detection cycle.
FILENAME_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S_%f"

DEFAULT_OBS_HOST = os.environ.get("OBS_HOST", "localhost")
DEFAULT_OBS_PORT = int(os.environ.get("OBS_PORT", "4455"))
DEFAULT_OBS_PASSWORD = os.environ.get("OBS_PASSWORD", "")

DEFAULT_CYCLE_DELAY = 1.0
DEFAULT_PRIMARY_COOLDOWN = 7.0
DEFAULT_SECONDARY_COOLDOWN = 7.0
DEFAULT_CAPTURE_TIMEOUT = 3.0
DEFAULT_OCR_TIMEOUT = 5.0
DEFAULT_RECONNECT_INTERVAL = 10.0

DEFAULT_SETTLE_DELAY = 1.5
DEFAULT_RESOLVE_BACKOFF = 0.5
DEFAULT_RESOLVE_ATTEMPTS = 6
