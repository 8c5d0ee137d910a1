from __future__ import annotations

import itertools
import threading
from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass
class Session:
    id: str
    start_time: str
    end_time: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.end_time is None

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "startTime": self.start_time, "endTime": self.end_time}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        return cls(
            id=str(data.get("id", "")),
            start_time=str(data.get("startTime", "")),
            end_time=data.get("endTime"),
        )


class SessionCounter:
    """Process-local sequence used to keep evidence and clip names orderable."""

    def __init__(self, start: int = 1) -> None:
        self._lock = threading.Lock()
        self._counter = itertools.count(start)

    def next(self) -> int:
        with self._lock:
            return next(self._counter)
