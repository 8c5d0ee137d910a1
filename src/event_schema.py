from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class DetectionPhase(str, Enum):
    PRIMARY = "PRIMARY"
    SECONDARY = "SECONDARY"


class TriggerState(str, Enum):
    IDLE = "IDLE"
    PRIMARY_ARMED = "PRIMARY_ARMED"
    SECONDARY_ARMED = "SECONDARY_ARMED"


class DetectionOutcome(str, Enum):
    SAVED = "saved"
    PROMOTED = "promoted"
    SAVED_WITHOUT_CLIP = "saved_without_clip"
    SAVE_FAILED = "save_failed"
    SAVE_SUSPENDED = "save_suspended"
    EVIDENCE_FAILED = "evidence_failed"
    MAPPING_FAILED = "mapping_failed"
    IGNORED = "ignored"
    FINALIZED = "finalized"
    CONNECTION_LOST = "connection_lost"
    RECONNECTED = "reconnected"


@dataclass
class TriggerEvent:
    """A phrase match produced by one detection cycle; never persisted."""

    phrase: str
    phase: DetectionPhase
    detected_text: str
    timestamp: datetime
    region_y: float = 0.0


@dataclass
class DetectionEvent:
    """
    Outcome report handed to the caller's ``on_event`` hook.

    Every branch of the trigger pipeline emits exactly one of these so a UI or
    log sink can follow what happened without inspecting the filesystem.
    """

    outcome: DetectionOutcome
    phrase: Optional[str] = None
    phase: Optional[DetectionPhase] = None
    session_id: Optional[str] = None
    evidence_path: Optional[str] = None
    clip_path: Optional[str] = None
    detail: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "outcome": self.outcome.value,
            "phrase": self.phrase,
            "phase": self.phase.value if self.phase else None,
            "session_id": self.session_id,
            "evidence_path": self.evidence_path,
            "clip_path": self.clip_path,
            "detail": self.detail,
            "timestamp": self.timestamp.isoformat(),
        }
        return {k: v for k, v in payload.items() if v is not None}
