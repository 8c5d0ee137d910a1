import logging
import os
import re
import time
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, List, Optional

from constants import FILENAME_TIMESTAMP_FORMAT, VIDEO_EXTENSIONS

if TYPE_CHECKING:  # pragma: no cover
    from evidence_store import EvidenceStore

logger = logging.getLogger(__name__)

_OWN_TIMESTAMP = re.compile(r"(\d{8}_\d{6}_\d{6})")
# OBS default file name format, e.g. "Replay 2024-05-01 21-14-03.mkv".
_OBS_TIMESTAMP = re.compile(r"(\d{4}-\d{2}-\d{2})[ _](\d{2}-\d{2}-\d{2})")


def is_video(path: Path, extensions: Iterable[str] = VIDEO_EXTENSIONS) -> bool:
    return path.is_file() and path.suffix.lower() in {ext.lower() for ext in extensions}


def list_clips(
    clip_dir: Path,
    *,
    session_id: Optional[str] = None,
    extensions: Iterable[str] = VIDEO_EXTENSIONS,
) -> List[Path]:
    """Video files in ``clip_dir``, newest first, optionally limited to one session."""
    clip_dir = Path(clip_dir)
    if not clip_dir.is_dir():
        return []
    extensions = tuple(extensions)
    clips = []
    for entry in clip_dir.iterdir():
        if not is_video(entry, extensions):
            continue
        if session_id and not entry.name.startswith(f"{session_id}_"):
            continue
        clips.append(entry)
    return sorted(clips, key=_mtime, reverse=True)


def clip_name(session_id: str, counter: int, timestamp: datetime, extension: str) -> str:
    return f"{session_id}_{counter:04d}_{timestamp.strftime(FILENAME_TIMESTAMP_FORMAT)}{extension}"


def rename_clip(clip_path: Path, session_id: str, counter: int, timestamp: datetime) -> Path:
    """Give a resolved clip its session-prefixed name, keeping the old one if the file is locked."""
    target = clip_path.with_name(clip_name(session_id, counter, timestamp, clip_path.suffix.lower()))
    if target == clip_path:
        return clip_path
    try:
        os.replace(clip_path, target)
    except OSError as exc:
        logger.warning("Could not rename clip %s (%s); keeping recorder name.", clip_path.name, exc)
        return clip_path
    logger.debug("Renamed clip %s -> %s", clip_path.name, target.name)
    return target


def timestamp_from_name(name: str) -> Optional[datetime]:
    match = _OWN_TIMESTAMP.search(name)
    if match:
        try:
            return datetime.strptime(match.group(1), FILENAME_TIMESTAMP_FORMAT)
        except ValueError:
            pass
    match = _OBS_TIMESTAMP.search(name)
    if match:
        try:
            return datetime.strptime(f"{match.group(1)} {match.group(2)}", "%Y-%m-%d %H-%M-%S")
        except ValueError:
            pass
    return None


def find_clip_by_proximity(
    evidence_path: Path,
    session_id: str,
    clip_dir: Path,
    *,
    window_seconds: float = 60.0,
    exclude: Iterable[str] = (),
) -> Optional[Path]:
    """
    Best-effort guess of the clip recorded for ``evidence_path``.

    Only used when no mapping entry exists. Candidates must carry the session
    prefix; the one whose embedded timestamp (or mtime) is closest to the
    evidence timestamp wins, provided it falls inside ``window_seconds``.
    Clock skew or rapid successive events can still produce a wrong pick.
    """
    evidence_path = Path(evidence_path)
    reference = timestamp_from_name(evidence_path.name)
    if reference is None:
        logger.debug("No timestamp in evidence name %s; proximity lookup skipped.", evidence_path.name)
        return None

    excluded = {os.path.normcase(os.path.abspath(p)) for p in exclude}
    best: Optional[Path] = None
    best_delta = None
    for clip in list_clips(clip_dir, session_id=session_id):
        if os.path.normcase(os.path.abspath(clip)) in excluded:
            continue
        stamp = timestamp_from_name(clip.name) or datetime.fromtimestamp(_mtime(clip))
        delta = abs((stamp - reference).total_seconds())
        if delta > window_seconds:
            continue
        if best_delta is None or delta < best_delta:
            best, best_delta = clip, delta
    return best


def purge_expired(
    clip_dir: Path,
    evidence_store: "EvidenceStore",
    max_age_days: float,
    *,
    now: Optional[float] = None,
) -> List[Path]:
    """Delete clips older than ``max_age_days`` together with their mapped evidence."""
    cutoff = (now if now is not None else time.time()) - max_age_days * 86400
    removed = []
    for clip in list_clips(clip_dir):
        if _mtime(clip) >= cutoff:
            continue
        evidence = evidence_store.unmap_clip(clip)
        delete_file(clip)
        if evidence:
            delete_file(Path(evidence))
        removed.append(clip)
    if removed:
        logger.info("Purged %s clips older than %s days.", len(removed), max_age_days)
    return removed


def delete_file(path: Path) -> bool:
    try:
        os.remove(path)
        return True
    except FileNotFoundError:
        return False
    except OSError as exc:
        logger.warning("Failed to delete %s: %s", path, exc)
        return False


def _mtime(path: Path) -> float:
    try:
        return path.stat().st_mtime
    except OSError:
        return 0.0
