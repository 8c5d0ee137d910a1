import json
import logging
import threading
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from constants import SESSION_LOG_PATH
from session import Session

logger = logging.getLogger(__name__)

SESSION_TIME_FORMAT = "%Y-%m-%d_%H-%M-%S"


class SessionLog:
    """
    Append-only log of detection sessions persisted as a JSON list.

    At most one entry is open (``endTime`` is null) at a time; opening a new
    session closes any entry left open by a previous process.
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = Path(path or SESSION_LOG_PATH)
        self._lock = threading.Lock()

    def open_session(self) -> Session:
        with self._lock:
            entries = self._read()
            now = _timestamp()
            for entry in entries:
                if entry.get("endTime") is None:
                    entry["endTime"] = now
                    logger.warning("Closing stale session %s left open by a previous run.", entry.get("id"))
            session = Session(id=uuid.uuid4().hex[:8], start_time=now)
            entries.append(session.to_dict())
            self._write(entries)
        logger.info("Opened session %s", session.id)
        return session

    def close_session(self, session_id: Optional[str] = None) -> Optional[Session]:
        with self._lock:
            entries = self._read()
            closed = None
            for entry in entries:
                if entry.get("endTime") is not None:
                    continue
                if session_id and entry.get("id") != session_id:
                    continue
                entry["endTime"] = _timestamp()
                closed = Session.from_dict(entry)
            if closed:
                self._write(entries)
        if closed:
            logger.info("Closed session %s", closed.id)
        return closed

    def current_session(self) -> Optional[Session]:
        with self._lock:
            for entry in reversed(self._read()):
                if entry.get("endTime") is None:
                    return Session.from_dict(entry)
        return None

    def get_session(self, session_id: str) -> Optional[Session]:
        with self._lock:
            for entry in self._read():
                if entry.get("id") == session_id:
                    return Session.from_dict(entry)
        return None

    def list_sessions(self) -> List[Session]:
        with self._lock:
            return [Session.from_dict(entry) for entry in self._read()]

    def _read(self) -> List[Dict[str, Any]]:
        if not self.path.exists():
            return []
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning("Session log %s unreadable, starting empty: %s", self.path, exc)
            return []
        if not isinstance(data, list):
            return []
        return [item for item in data if isinstance(item, dict) and item.get("id")]

    def _write(self, entries: List[Dict[str, Any]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(entries, indent=2), encoding="utf-8")


def _timestamp() -> str:
    return datetime.now().strftime(SESSION_TIME_FORMAT)
