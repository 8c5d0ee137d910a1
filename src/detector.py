import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from batch_validator import BatchValidator, ValidationReport
from clip_library import purge_expired
from constants import (
    DEFAULT_CAPTURE_TIMEOUT,
    DEFAULT_CYCLE_DELAY,
    DEFAULT_RECONNECT_INTERVAL,
)
from errors import CaptureFailure, ConnectionLost, MappingIOFailure, OcrFailure, SaveRequestFailure
from event_schema import DetectionEvent, DetectionOutcome, DetectionPhase, TriggerEvent
from frame_source import FrameSource
from ocr import FrameOcr
from phrase_matcher import PhraseMatcher
from recorder import RecordingController
from session import Session
from session_store import SessionLog
from trigger_machine import TriggerStateMachine

logger = logging.getLogger(__name__)


class TriggerDetector:
    """
    Runs the capture -> OCR -> match -> state update cycle on a worker thread.

    Cycles are strictly sequential with a fixed delay between them. Stopping
    takes effect between cycles; the recorder connection is closed only after
    the worker has exited.
    """

    def __init__(
        self,
        *,
        frame_source: FrameSource,
        ocr: FrameOcr,
        machine: TriggerStateMachine,
        session_log: SessionLog,
        matcher: Optional[PhraseMatcher] = None,
        recorder: Optional[RecordingController] = None,
        validator: Optional[BatchValidator] = None,
        cycle_delay: float = DEFAULT_CYCLE_DELAY,
        capture_timeout: float = DEFAULT_CAPTURE_TIMEOUT,
        reconnect_interval: float = DEFAULT_RECONNECT_INTERVAL,
        validate_on_stop: bool = True,
        auto_start_buffer: bool = True,
        buffer_length_seconds: Optional[int] = None,
        retention_days: Optional[float] = None,
        clip_dir: Optional[Path] = None,
        on_event: Optional[Callable[[DetectionEvent], None]] = None,
    ) -> None:
        self.frame_source = frame_source
        self.ocr = ocr
        self.machine = machine
        self.session_log = session_log
        self.matcher = matcher or PhraseMatcher()
        self.recorder = recorder
        self.validator = validator
        self.cycle_delay = cycle_delay
        self.capture_timeout = capture_timeout
        self.reconnect_interval = reconnect_interval
        self.validate_on_stop = validate_on_stop
        self.auto_start_buffer = auto_start_buffer
        self.buffer_length_seconds = buffer_length_seconds
        self.retention_days = retention_days
        self.clip_dir = clip_dir
        self.on_event = on_event

        self.session: Optional[Session] = None
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._lock = threading.Lock()
        self._capture_pool: Optional[ThreadPoolExecutor] = None
        self._last_reconnect = 0.0

        if self.machine.on_event is None:
            self.machine.on_event = self._emit
        if self.recorder is not None:
            self.recorder.add_connection_listener(self._on_connection_change)

    # Thread control -------------------------------------------------------

    def start(self) -> Session:
        with self._lock:
            if self._thread and self._thread.is_alive():
                logger.warning("TriggerDetector already running.")
                return self.session
            self.session = self.session_log.open_session()
            self.machine.begin_session(self.session.id)
            self._prepare_recorder()
            self._purge_expired()
            self._stop_event.clear()
            self._capture_pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="ClipWatchCapture")
            self._thread = threading.Thread(target=self._run_loop, name="ClipWatchDetector", daemon=True)
            self._thread.start()
        logger.info("TriggerDetector started for session %s.", self.session.id)
        return self.session

    def stop(self) -> Optional[ValidationReport]:
        """Stop after the in-flight cycle, close the session, and optionally validate it."""
        with self._lock:
            thread = self._thread
            self._stop_event.set()
            if thread:
                thread.join()
            self._thread = None
            if self._capture_pool:
                self._capture_pool.shutdown(wait=False)
                self._capture_pool = None

            self.machine.end_session()
            if self.recorder is not None:
                self.recorder.close()
            closed = self.session_log.close_session(self.session.id) if self.session else None
            self.session = None
        logger.info("TriggerDetector stopped.")

        if closed and self.validate_on_stop and self.validator is not None:
            return self.validator.validate_session(closed.id)
        return None

    def is_running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    # Internal helpers ----------------------------------------------------

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.run_cycle()
            except Exception as exc:
                logger.exception("Detector loop error: %s", exc)
            finally:
                self._stop_event.wait(self.cycle_delay)

    def run_cycle(self) -> Optional[DetectionOutcome]:
        """One capture/OCR/match/update pass. Returns the machine outcome, if any."""
        self._maybe_reconnect()
        self.machine.tick()
        phase = self.machine.accepting
        if phase is None:
            return None

        try:
            image = self._capture(phase)
            text = self.ocr.read_text(image)
        except (CaptureFailure, OcrFailure) as exc:
            logger.warning("Skipping cycle: %s", exc)
            return None

        phrase = self.matcher.match(text, phase)
        if not phrase:
            return None

        region = self.frame_source.region_for(phase)
        event = TriggerEvent(
            phrase=phrase,
            phase=phase,
            detected_text=text,
            timestamp=datetime.now(),
            region_y=region.top,
        )
        logger.info("Detected %s phrase %r", phase.value, phrase)
        return self.machine.handle(event, image)

    def _capture(self, phase: DetectionPhase):
        if self._capture_pool is None:
            return self.frame_source.capture(phase)
        future = self._capture_pool.submit(self.frame_source.capture, phase)
        try:
            return future.result(timeout=self.capture_timeout)
        except FutureTimeout as exc:
            future.cancel()
            raise CaptureFailure(f"Capture exceeded {self.capture_timeout}s budget") from exc

    def _prepare_recorder(self) -> None:
        if self.recorder is None:
            return
        try:
            if not self.recorder.connected:
                self.recorder.connect()
            # Resize before starting; the recorder applies the length on buffer start.
            self._sync_buffer_length()
            if self.auto_start_buffer:
                self.recorder.start_buffer()
        except (ConnectionLost, SaveRequestFailure) as exc:
            logger.warning("Recorder not ready, detection continues without clips: %s", exc)
        except NotImplementedError:
            logger.debug("Recorder does not control its buffer.")
        self._last_reconnect = time.monotonic()

    def _sync_buffer_length(self) -> None:
        if not self.buffer_length_seconds:
            return
        ok, message = self.recorder.check_buffer_length(self.buffer_length_seconds)
        if ok:
            return
        logger.warning("Replay buffer mismatch: %s Updating it.", message)
        try:
            self.recorder.set_buffer_length(self.buffer_length_seconds)
        except NotImplementedError:
            logger.warning("Recorder cannot resize its buffer; clips keep the old length.")

    def _maybe_reconnect(self) -> None:
        if self.recorder is None or self.recorder.connected:
            return
        now = time.monotonic()
        if now - self._last_reconnect < self.reconnect_interval:
            return
        self._last_reconnect = now
        try:
            self.recorder.connect()
            if self.auto_start_buffer:
                self.recorder.start_buffer()
        except (ConnectionLost, SaveRequestFailure) as exc:
            logger.debug("Reconnect attempt failed: %s", exc)
        except NotImplementedError:
            pass

    def _purge_expired(self) -> None:
        if not self.retention_days or self.clip_dir is None:
            return
        try:
            purge_expired(self.clip_dir, self.machine.evidence_store, self.retention_days)
        except (OSError, MappingIOFailure) as exc:
            logger.warning("Retention purge failed: %s", exc)

    def _on_connection_change(self, connected: bool, reason: Optional[str]) -> None:
        outcome = DetectionOutcome.RECONNECTED if connected else DetectionOutcome.CONNECTION_LOST
        self._emit(
            DetectionEvent(
                outcome=outcome,
                session_id=self.session.id if self.session else None,
                detail=reason,
            )
        )

    def _emit(self, event: DetectionEvent) -> None:
        if self.on_event:
            self.on_event(event)
