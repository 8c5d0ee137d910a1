import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Optional, Tuple, Union

from PIL import Image

from clip_library import rename_clip
from clip_resolver import ClipResolver
from constants import DEFAULT_PRIMARY_COOLDOWN, DEFAULT_SECONDARY_COOLDOWN
from errors import ConnectionLost, MappingIOFailure, SaveRequestFailure
from event_schema import DetectionEvent, DetectionOutcome, DetectionPhase, TriggerEvent, TriggerState
from evidence_store import EvidenceStore
from recorder import RecordingController
from session import SessionCounter

logger = logging.getLogger(__name__)


@dataclass
class SavedPair:
    evidence_path: Path
    clip_path: Optional[Path] = None


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class PrimaryArmed:
    """A primary save happened; its pair stays provisional until ``deadline``."""

    deadline: float
    provisional: SavedPair


@dataclass(frozen=True)
class SecondaryArmed:
    deadline: float
    confirmed: SavedPair


MachineState = Union[Idle, PrimaryArmed, SecondaryArmed]


class TriggerStateMachine:
    """
    Two-stage trigger logic.

    IDLE accepts primary matches only. A primary match saves evidence and a
    clip and arms a cooldown during which only a secondary match is accepted;
    that match replaces the provisional pair (promotion) and arms a second
    cooldown that accepts nothing. Expiry of either cooldown makes the last
    pair final and returns to IDLE.
    """

    def __init__(
        self,
        *,
        evidence_store: EvidenceStore,
        resolver: ClipResolver,
        recorder: Optional[RecordingController] = None,
        counter: Optional[SessionCounter] = None,
        primary_cooldown: float = DEFAULT_PRIMARY_COOLDOWN,
        secondary_cooldown: float = DEFAULT_SECONDARY_COOLDOWN,
        rename_clips: bool = True,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
        on_event: Optional[Callable[[DetectionEvent], None]] = None,
    ) -> None:
        self.evidence_store = evidence_store
        self.resolver = resolver
        self.recorder = recorder
        self.counter = counter or SessionCounter()
        self.primary_cooldown = primary_cooldown
        self.secondary_cooldown = secondary_cooldown
        self.rename_clips = rename_clips
        self.on_event = on_event
        self.session_id: Optional[str] = None
        self._clock = clock
        self._wall_clock = wall_clock
        self._state: MachineState = Idle()
        self._lock = threading.RLock()

    # Introspection ---------------------------------------------------------

    @property
    def state(self) -> TriggerState:
        current = self._state
        if isinstance(current, PrimaryArmed):
            return TriggerState.PRIMARY_ARMED
        if isinstance(current, SecondaryArmed):
            return TriggerState.SECONDARY_ARMED
        return TriggerState.IDLE

    @property
    def phase(self) -> DetectionPhase:
        """Region/phrase set the detector should examine next."""
        return DetectionPhase.PRIMARY if isinstance(self._state, Idle) else DetectionPhase.SECONDARY

    @property
    def accepting(self) -> Optional[DetectionPhase]:
        current = self._state
        if isinstance(current, Idle):
            return DetectionPhase.PRIMARY
        if isinstance(current, PrimaryArmed):
            return DetectionPhase.SECONDARY
        return None

    @property
    def provisional(self) -> Optional[SavedPair]:
        current = self._state
        return current.provisional if isinstance(current, PrimaryArmed) else None

    def cooldown_remaining(self) -> float:
        current = self._state
        if isinstance(current, Idle):
            return 0.0
        return max(current.deadline - self._clock(), 0.0)

    # Session ---------------------------------------------------------------

    def begin_session(self, session_id: str) -> None:
        with self._lock:
            self.session_id = session_id
            self._state = Idle()

    def end_session(self) -> None:
        with self._lock:
            self._finalize("session ended")
            self.session_id = None

    # Transitions -------------------------------------------------------------

    def tick(self) -> TriggerState:
        """Expire a running cooldown; call once per detection cycle."""
        with self._lock:
            current = self._state
            if not isinstance(current, Idle) and self._clock() >= current.deadline:
                self._finalize("cooldown expired")
            return self.state

    def handle(self, event: TriggerEvent, image: Image.Image) -> DetectionOutcome:
        with self._lock:
            self.tick()
            if self.session_id is None:
                raise RuntimeError("No open session; call begin_session() first.")

            accepting = self.accepting
            if event.phase != accepting:
                logger.debug(
                    "Ignoring %s match %r in state %s", event.phase.value, event.phrase, self.state.value
                )
                return DetectionOutcome.IGNORED

            current = self._state
            if isinstance(current, PrimaryArmed):
                return self._on_secondary(current, event, image)
            return self._on_primary(event, image)

    def _on_primary(self, event: TriggerEvent, image: Image.Image) -> DetectionOutcome:
        pair, outcome, detail = self._save_pair(event, image)
        if pair is None:
            self._emit(outcome, event, detail=detail)
            return outcome

        self._state = PrimaryArmed(deadline=self._clock() + self.primary_cooldown, provisional=pair)
        logger.info(
            "Primary trigger %r -> %s (clip=%s)",
            event.phrase,
            outcome.value,
            pair.clip_path.name if pair.clip_path else None,
        )
        self._emit(outcome, event, pair=pair, detail=detail)
        return outcome

    def _on_secondary(self, current: PrimaryArmed, event: TriggerEvent, image: Image.Image) -> DetectionOutcome:
        held = [current.provisional.clip_path] if current.provisional.clip_path else []
        pair, outcome, detail = self._save_pair(event, image, exclude=held)
        if pair is None:
            self._emit(outcome, event, detail=detail)
            return outcome

        retracted = current.provisional
        self._state = SecondaryArmed(deadline=self._clock() + self.secondary_cooldown, confirmed=pair)
        try:
            self.evidence_store.discard(retracted.evidence_path, retracted.clip_path)
        except MappingIOFailure as exc:
            logger.error("Could not retract %s: %s", retracted.evidence_path.name, exc)
            self._emit(DetectionOutcome.MAPPING_FAILED, event, pair=pair, detail=f"retraction failed: {exc}")
            return DetectionOutcome.MAPPING_FAILED
        logger.info(
            "Promoted %r: retracted %s%s",
            event.phrase,
            retracted.evidence_path.name,
            f" and {retracted.clip_path.name}" if retracted.clip_path else "",
        )

        if outcome is not DetectionOutcome.SAVED:
            detail = f"promotion; {outcome.value}" + (f": {detail}" if detail else "")
        self._emit(DetectionOutcome.PROMOTED, event, pair=pair, detail=detail)
        return DetectionOutcome.PROMOTED

    def _finalize(self, reason: str) -> None:
        current = self._state
        if isinstance(current, Idle):
            return
        pair = current.provisional if isinstance(current, PrimaryArmed) else current.confirmed
        self._state = Idle()
        logger.info("Finalised %s (%s)", pair.evidence_path.name, reason)
        self._emit(DetectionOutcome.FINALIZED, None, pair=pair, detail=reason)

    # Saving ----------------------------------------------------------------

    def _save_pair(
        self, event: TriggerEvent, image: Image.Image, exclude: Iterable[Path] = ()
    ) -> Tuple[Optional[SavedPair], DetectionOutcome, Optional[str]]:
        """
        Write evidence, then request and resolve a clip.

        Returns ``(None, EVIDENCE_FAILED, ...)`` when the evidence could not be
        written; every other branch yields a pair, with or without a clip.
        """
        counter = self.counter.next()
        try:
            evidence = self.evidence_store.save(image, self.session_id, counter, event.timestamp)
        except MappingIOFailure as exc:
            logger.error("Evidence save failed for %r: %s", event.phrase, exc)
            return None, DetectionOutcome.EVIDENCE_FAILED, str(exc)

        pair = SavedPair(evidence_path=evidence)
        if self.recorder is None or not self.recorder.connected:
            logger.warning("Recorder offline; kept evidence %s without a clip.", evidence.name)
            return pair, DetectionOutcome.SAVE_SUSPENDED, "recorder not connected"

        requested_at = self._wall_clock()
        try:
            self.recorder.request_save()
        except SaveRequestFailure as exc:
            logger.error("Save request failed: %s", exc)
            return pair, DetectionOutcome.SAVE_FAILED, str(exc)
        except ConnectionLost as exc:
            logger.warning("Recorder dropped during save request: %s", exc)
            return pair, DetectionOutcome.SAVE_SUSPENDED, str(exc)

        # The provisional clip and every mapped clip already belong to evidence.
        try:
            owned = list(exclude) + self.evidence_store.mapped_clips()
        except MappingIOFailure as exc:
            logger.error("Cannot read evidence mapping before resolving: %s", exc)
            return pair, DetectionOutcome.MAPPING_FAILED, str(exc)
        clip = self.resolver.resolve(requested_at, exclude=owned)
        if clip is None:
            return pair, DetectionOutcome.SAVED_WITHOUT_CLIP, "no clip appeared within the resolver budget"

        if self.rename_clips:
            clip = rename_clip(clip, self.session_id, counter, event.timestamp)
        pair.clip_path = clip
        try:
            self.evidence_store.map_evidence_to_clip(evidence, clip)
        except MappingIOFailure as exc:
            logger.error("Mapping %s -> %s failed: %s", evidence.name, clip.name, exc)
            return pair, DetectionOutcome.MAPPING_FAILED, str(exc)
        return pair, DetectionOutcome.SAVED, None

    def _emit(
        self,
        outcome: DetectionOutcome,
        event: Optional[TriggerEvent],
        *,
        pair: Optional[SavedPair] = None,
        detail: Optional[str] = None,
    ) -> None:
        if not self.on_event:
            return
        report = DetectionEvent(
            outcome=outcome,
            phrase=event.phrase if event else None,
            phase=event.phase if event else None,
            session_id=self.session_id,
            evidence_path=str(pair.evidence_path) if pair else None,
            clip_path=str(pair.clip_path) if pair and pair.clip_path else None,
            detail=detail,
        )
        try:
            self.on_event(report)
        except Exception as exc:
            logger.exception("on_event callback failed: %s", exc)
