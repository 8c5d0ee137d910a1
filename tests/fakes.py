import sys
from pathlib import Path
from typing import List, Optional

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from errors import ConnectionLost, SaveRequestFailure  # noqa: E402
from recorder import RecordingController  # noqa: E402


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRecorder(RecordingController):
    """Writes a dummy clip into ``clip_dir`` for every save request, like OBS would."""

    def __init__(self, clip_dir: Path, *, connected: bool = True, write_clip: bool = True) -> None:
        super().__init__()
        self.clip_dir = Path(clip_dir)
        self.write_clip = write_clip
        self.fail_next: Optional[Exception] = None
        self.saves: List[Path] = []
        self.closed = False
        self.buffer_started = False
        self.connect_calls = 0
        self.length_seconds: Optional[int] = None
        if connected:
            self._mark_connected()

    def connect(self) -> None:
        self.connect_calls += 1
        self.closed = False
        self._mark_connected()

    def request_save(self) -> None:
        if not self.connected:
            raise ConnectionLost("offline")
        if self.fail_next is not None:
            exc, self.fail_next = self.fail_next, None
            if isinstance(exc, ConnectionLost):
                self._mark_lost(str(exc))
            raise exc
        if not self.write_clip:
            return
        self.clip_dir.mkdir(parents=True, exist_ok=True)
        index = len(self.saves) + 1
        path = self.clip_dir / f"Replay {index:03d}.mp4"
        path.write_bytes(b"\x00" * 16)
        self.saves.append(path)

    def start_buffer(self) -> None:
        self.buffer_started = True

    def buffer_length(self) -> Optional[int]:
        return self.length_seconds

    def set_buffer_length(self, seconds: int) -> None:
        self.length_seconds = seconds

    def close(self) -> None:
        self.closed = True
        with self._state_lock:
            self._connected = False

    def drop(self, reason: str = "socket closed") -> None:
        self._mark_lost(reason)


class FakeVisionModel:
    """Stands in for the Gemini wrapper: returns canned text per evidence file name."""

    def __init__(self, texts, default: str = "") -> None:
        self.texts = dict(texts)
        self.default = default
        self.calls: List[str] = []

    def call_model(self, user_prompt, system_prompt=None, image_paths=None):
        name = Path(image_paths[0]).name
        self.calls.append(name)
        for key, value in self.texts.items():
            if key in name:
                if isinstance(value, Exception):
                    raise value
                return value
        return self.default


__all__ = ["FakeClock", "FakeRecorder", "FakeVisionModel", "SaveRequestFailure", "ConnectionLost"]
