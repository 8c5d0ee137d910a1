#!/usr/bin/env python3
"""Run live trigger detection until Ctrl+C, then validate the finished session."""

import argparse
import json
import logging
import sys
import time
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

import constants  # noqa: E402
from batch_validator import BatchValidator  # noqa: E402
from clip_resolver import ClipResolver  # noqa: E402
from detector import TriggerDetector  # noqa: E402
from evidence_store import EvidenceStore  # noqa: E402
from frame_source import FrameSource  # noqa: E402
from ocr import TesseractOcr  # noqa: E402
from recorder import ObsRecordingController  # noqa: E402
from session_store import SessionLog  # noqa: E402
from settings_store import load_settings  # noqa: E402
from trigger_machine import TriggerStateMachine  # noqa: E402


def build_detector(settings: dict, clip_dir: Path, evidence_dir: Path, *, validate: bool) -> TriggerDetector:
    obs_cfg = settings["obs"]
    detection = settings["detection"]
    resolver_cfg = settings["resolver"]
    retention = settings["retention"]
    validation = settings["validation"]

    recorder = ObsRecordingController(
        host=obs_cfg["host"],
        port=int(obs_cfg["port"]),
        password=obs_cfg["password"],
        timeout=int(obs_cfg["timeout"]),
    )
    store = EvidenceStore(evidence_dir, constants.MAPPING_PATH)
    resolver = ClipResolver(
        clip_dir,
        settle_delay=float(resolver_cfg["settle_delay"]),
        backoff=float(resolver_cfg["backoff"]),
        max_attempts=int(resolver_cfg["max_attempts"]),
    )
    machine = TriggerStateMachine(
        evidence_store=store,
        resolver=resolver,
        recorder=recorder,
        primary_cooldown=float(detection["primary_cooldown"]),
        secondary_cooldown=float(detection["secondary_cooldown"]),
    )
    validator = None
    if validate:
        validator = BatchValidator(
            store,
            clip_dir=clip_dir,
            model_name=validation["model_name"],
            proximity_window=float(validation["proximity_window"]),
        )
    return TriggerDetector(
        frame_source=FrameSource(),
        ocr=TesseractOcr(timeout=float(detection["ocr_timeout"])),
        machine=machine,
        session_log=SessionLog(),
        recorder=recorder,
        validator=validator,
        cycle_delay=float(detection["cycle_delay"]),
        capture_timeout=float(detection["capture_timeout"]),
        reconnect_interval=float(detection["reconnect_interval"]),
        validate_on_stop=validate,
        auto_start_buffer=bool(settings["replay_buffer"]["auto_start"]),
        buffer_length_seconds=int(settings["replay_buffer"]["length_seconds"]),
        retention_days=float(retention["delete_after_days"]) if retention["auto_delete_clips"] else None,
        clip_dir=clip_dir,
        on_event=lambda event: logging.getLogger("clipwatch.events").info(json.dumps(event.to_payload())),
    )


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--clip-dir", default=str(constants.CLIP_DIR), help="Directory the recorder writes clips to")
    parser.add_argument("--evidence-dir", default=str(constants.EVIDENCE_DIR), help="Directory for evidence screenshots")
    parser.add_argument("--no-validate", action="store_true", help="Skip batch validation when stopping")
    parser.add_argument("--log-level", default="INFO", help="Python logging level")
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    settings = load_settings()
    validate = not args.no_validate and bool(settings["validation"]["validate_on_stop"])
    detector = build_detector(settings, Path(args.clip_dir), Path(args.evidence_dir), validate=validate)

    session = detector.start()
    print(f"Detecting in session {session.id}. Press Ctrl+C to stop.")
    try:
        while detector.is_running():
            time.sleep(0.5)
    except KeyboardInterrupt:
        pass

    report = detector.stop()
    if report is not None:
        print(json.dumps(report.to_dict(), indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
