import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from api_models import Model, create_model
from clip_library import find_clip_by_proximity
from constants import CLIP_DIR
from errors import MappingIOFailure, OcrFailure
from evidence_store import EvidenceStore
from ocr import normalize_text
from prompts import DOCUMENT_OCR_PROMPT, DOCUMENT_OCR_REQUEST

logger = logging.getLogger(__name__)

# Text that confirms the player scored the event.
ALLOW_PHRASES: Tuple[str, ...] = (
    "YOU KNOCKED OUT",
    "YOU FINALLY KILLED",
    "YOU KILLED",
    "KNOCKED OUT",
)

# Text showing the opposite happened. Checked before the allow list since
# "KNOCKED YOU OUT" and "YOU KNOCKED OUT" share every token.
DENY_PHRASES: Tuple[str, ...] = (
    "KNOCKED YOU OUT",
    "KNOCKED YOU",
    "YOU OUT",
)


class Verdict(str, Enum):
    VALID = "valid"
    DENIED = "denied"
    UNRECOGNIZED = "unrecognized"


@dataclass
class EvidenceVerdict:
    evidence_path: Path
    verdict: Optional[Verdict] = None
    text: str = ""
    matched_phrase: Optional[str] = None
    clip_path: Optional[Path] = None
    clip_source: Optional[str] = None
    deleted: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.evidence_path.name,
            "path": str(self.evidence_path),
            "verdict": self.verdict.value if self.verdict else None,
            "text": self.text,
            "matchedPhrase": self.matched_phrase,
            "clipPath": str(self.clip_path) if self.clip_path else None,
            "clipSource": self.clip_source,
            "deleted": self.deleted,
            "error": self.error,
        }


@dataclass
class ValidationReport:
    session_id: str
    valid: List[EvidenceVerdict] = field(default_factory=list)
    rejected: List[EvidenceVerdict] = field(default_factory=list)
    errors: List[EvidenceVerdict] = field(default_factory=list)

    @property
    def requires_confirmation(self) -> bool:
        return any(not item.deleted for item in self.rejected)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "valid": [item.to_dict() for item in self.valid],
            "rejected": [item.to_dict() for item in self.rejected],
            "errors": [item.to_dict() for item in self.errors],
            "requiresConfirmation": self.requires_confirmation,
        }


class BatchValidator:
    """
    Re-reads a finished session's evidence with a stronger OCR model and
    removes clip + evidence pairs whose text does not confirm the event.

    Anything that matches neither phrase list is rejected. Evidence whose OCR
    call fails is reported under ``errors`` and left on disk.
    """

    def __init__(
        self,
        evidence_store: EvidenceStore,
        *,
        clip_dir: Optional[Path] = None,
        model: Optional[Model] = None,
        model_name: str = "gemini-2.0-flash",
        allow_phrases: Iterable[str] = ALLOW_PHRASES,
        deny_phrases: Iterable[str] = DENY_PHRASES,
        proximity_window: float = 60.0,
    ) -> None:
        self.evidence_store = evidence_store
        self.clip_dir = Path(clip_dir or CLIP_DIR)
        self._model = model
        self.model_name = model_name
        self.allow_phrases = tuple(normalize_text(p) for p in allow_phrases)
        self.deny_phrases = tuple(normalize_text(p) for p in deny_phrases)
        self.proximity_window = proximity_window

    @property
    def model(self) -> Model:
        if self._model is None:
            self._model = create_model(self.model_name)
        return self._model

    # ------------------------------------------------------------------ Public API
    def classify(self, text: str) -> Tuple[Verdict, Optional[str]]:
        normalized = normalize_text(text)
        for phrase in self.deny_phrases:
            if phrase in normalized:
                return Verdict.DENIED, phrase
        for phrase in self.allow_phrases:
            if phrase in normalized:
                return Verdict.VALID, phrase
        return Verdict.UNRECOGNIZED, None

    def validate_session(
        self,
        session_id: str,
        *,
        confirm: Optional[Callable[[List[EvidenceVerdict]], bool]] = None,
    ) -> ValidationReport:
        """
        Classify every evidence file of ``session_id`` and delete the rejects.

        When ``confirm`` is given it sees the rejected verdicts first and
        deletion only happens if it returns True.
        """
        report = ValidationReport(session_id=session_id)
        evidence_files = self.evidence_store.list_session_evidence(session_id)
        if not evidence_files:
            logger.info("No evidence found for session %s.", session_id)
            return report

        for path in evidence_files:
            verdict = self._judge(path, session_id)
            if verdict.error:
                report.errors.append(verdict)
            elif verdict.verdict is Verdict.VALID:
                report.valid.append(verdict)
            else:
                report.rejected.append(verdict)

        if report.rejected and (confirm is None or confirm(list(report.rejected))):
            for verdict in report.rejected:
                self._delete(verdict)

        logger.info(
            "Session %s validated: %s valid, %s rejected, %s errors.",
            session_id,
            len(report.valid),
            len(report.rejected),
            len(report.errors),
        )
        return report

    def invalidate(self, evidence_path: Path) -> EvidenceVerdict:
        """Manually reject one evidence file and delete it with its clip."""
        evidence_path = Path(evidence_path)
        session_id = self._session_from_name(evidence_path.name)
        verdict = EvidenceVerdict(evidence_path=evidence_path, verdict=Verdict.DENIED)
        verdict.clip_path, verdict.clip_source = self._resolve_clip(evidence_path, session_id)
        self._delete(verdict)
        return verdict

    # ----------------------------------------------------------------- Internals
    def _judge(self, path: Path, session_id: str) -> EvidenceVerdict:
        verdict = EvidenceVerdict(evidence_path=path)
        try:
            raw = self.model.call_model(
                user_prompt=DOCUMENT_OCR_REQUEST,
                system_prompt=DOCUMENT_OCR_PROMPT,
                image_paths=[str(path)],
            )
        except (OcrFailure, OSError) as exc:
            logger.warning("Re-OCR failed for %s: %s", path.name, exc)
            verdict.error = str(exc)
            return verdict

        verdict.text = normalize_text(raw)
        verdict.verdict, verdict.matched_phrase = self.classify(verdict.text)
        if verdict.verdict is not Verdict.VALID:
            verdict.clip_path, verdict.clip_source = self._resolve_clip(path, session_id)
            logger.warning(
                "Rejected %s (%s): %r",
                path.name,
                verdict.verdict.value,
                verdict.text[:120],
            )
        return verdict

    def _resolve_clip(self, evidence_path: Path, session_id: Optional[str]) -> Tuple[Optional[Path], Optional[str]]:
        mapped = self.evidence_store.clip_for(evidence_path)
        if mapped is not None:
            return mapped, "mapping"
        if not session_id:
            return None, None
        guess = find_clip_by_proximity(
            evidence_path,
            session_id,
            self.clip_dir,
            window_seconds=self.proximity_window,
            exclude=[str(p) for p in self.evidence_store.mapped_clips()],
        )
        if guess is not None:
            logger.info("No mapping for %s; matched %s by timestamp.", evidence_path.name, guess.name)
            return guess, "proximity"
        return None, None

    def _delete(self, verdict: EvidenceVerdict) -> None:
        try:
            self.evidence_store.discard(verdict.evidence_path, verdict.clip_path)
        except MappingIOFailure as exc:
            logger.error("Could not delete %s: %s", verdict.evidence_path.name, exc)
            verdict.error = str(exc)
            return
        verdict.deleted = True

    def _session_from_name(self, name: str) -> Optional[str]:
        prefix = f"{self.evidence_store.prefix}_"
        if not name.startswith(prefix):
            return None
        return name[len(prefix):].split("_")[0] or None


__all__ = ["BatchValidator", "ValidationReport", "EvidenceVerdict", "Verdict", "ALLOW_PHRASES", "DENY_PHRASES"]
