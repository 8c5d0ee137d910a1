import json
import logging
import os
import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from PIL import Image

from constants import EVIDENCE_DIR, EVIDENCE_EXTENSION, EVIDENCE_PREFIX, FILENAME_TIMESTAMP_FORMAT, MAPPING_PATH
from errors import MappingIOFailure

logger = logging.getLogger(__name__)


def _key(path) -> str:
    return os.path.normcase(os.path.abspath(os.fspath(path)))


class EvidenceStore:
    """
    Screenshots taken at match time plus the evidence -> clip mapping.

    The mapping is a single JSON document rewritten atomically on every
    mutation, so after a crash it reflects whichever mutations completed.
    All reads and writes of the document go through one lock; the live loop
    and an out-of-band batch validator can share an instance safely.
    """

    def __init__(
        self,
        evidence_dir: Optional[Path] = None,
        mapping_path: Optional[Path] = None,
        *,
        prefix: str = EVIDENCE_PREFIX,
        extension: str = EVIDENCE_EXTENSION,
    ) -> None:
        self.evidence_dir = Path(evidence_dir or EVIDENCE_DIR)
        self.mapping_path = Path(mapping_path or MAPPING_PATH)
        self.prefix = prefix
        self.extension = extension
        self.evidence_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()

    # Evidence files -------------------------------------------------------

    def save(self, image: Image.Image, session_id: str, counter: int, timestamp: Optional[datetime] = None) -> Path:
        stamp = (timestamp or datetime.now()).strftime(FILENAME_TIMESTAMP_FORMAT)
        path = self.evidence_dir / f"{self.prefix}_{session_id}_{counter:04d}_{stamp}{self.extension}"
        try:
            image.save(path)
        except (OSError, ValueError) as exc:
            raise MappingIOFailure(f"Could not write evidence {path.name}: {exc}") from exc
        logger.debug("Saved evidence %s", path)
        return path

    def list_session_evidence(self, session_id: str) -> List[Path]:
        marker = f"{self.prefix}_{session_id}_"
        if not self.evidence_dir.is_dir():
            return []
        suffixes = {".png", ".jpg", self.extension.lower()}
        return sorted(
            entry
            for entry in self.evidence_dir.iterdir()
            if entry.is_file() and entry.name.startswith(marker) and entry.suffix.lower() in suffixes
        )

    # Mapping ---------------------------------------------------------------

    def map_evidence_to_clip(self, evidence_path: Path, clip_path: Path) -> None:
        if not Path(clip_path).exists():
            raise MappingIOFailure(f"Refusing to map evidence to missing clip {clip_path}")
        with self._lock:
            mapping = self._load()
            clip_key = _key(clip_path)
            # One clip backs at most one evidence file.
            for evidence_key, mapped_clip in list(mapping.items()):
                if mapped_clip == clip_key and evidence_key != _key(evidence_path):
                    del mapping[evidence_key]
            mapping[_key(evidence_path)] = clip_key
            self._flush(mapping)
        logger.debug("Mapped %s -> %s", Path(evidence_path).name, Path(clip_path).name)

    def clip_for(self, evidence_path: Path) -> Optional[Path]:
        with self._lock:
            clip = self._load().get(_key(evidence_path))
        return Path(clip) if clip else None

    def evidence_for(self, clip_path: Path) -> Optional[Path]:
        clip_key = _key(clip_path)
        with self._lock:
            for evidence_key, mapped_clip in self._load().items():
                if mapped_clip == clip_key:
                    return Path(evidence_key)
        return None

    def unmap_clip(self, clip_path: Path) -> Optional[Path]:
        """Drop the entry for ``clip_path`` and return the evidence it pointed from."""
        clip_key = _key(clip_path)
        with self._lock:
            mapping = self._load()
            evidence = next((e for e, c in mapping.items() if c == clip_key), None)
            if evidence is None:
                return None
            del mapping[evidence]
            self._flush(mapping)
        return Path(evidence)

    def unmap_evidence(self, evidence_path: Path) -> Optional[Path]:
        """Drop the entry for ``evidence_path`` and return the clip it pointed to."""
        with self._lock:
            mapping = self._load()
            clip = mapping.pop(_key(evidence_path), None)
            if clip is None:
                return None
            self._flush(mapping)
        return Path(clip)

    def mapped_clips(self) -> List[Path]:
        with self._lock:
            return [Path(clip) for clip in self._load().values()]

    def discard(self, evidence_path: Optional[Path], clip_path: Optional[Path] = None) -> None:
        """Delete an evidence file and/or clip and remove any mapping entries touching them."""
        with self._lock:
            if evidence_path is not None:
                mapped = self.unmap_evidence(evidence_path)
                clip_path = clip_path or mapped
            if clip_path is not None:
                self.unmap_clip(clip_path)
        for path in (evidence_path, clip_path):
            if path is None:
                continue
            try:
                os.remove(path)
                logger.info("Deleted %s", Path(path).name)
            except FileNotFoundError:
                continue
            except OSError as exc:
                logger.warning("Failed to delete %s: %s", path, exc)

    def snapshot(self) -> Dict[str, str]:
        with self._lock:
            return dict(self._load())

    # Persistence -------------------------------------------------------------

    def _load(self) -> Dict[str, str]:
        if not self.mapping_path.exists():
            return {}
        try:
            data = json.loads(self.mapping_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise MappingIOFailure(f"Cannot read evidence mapping {self.mapping_path}: {exc}") from exc
        entries = data.get("evidenceToClip", {}) if isinstance(data, dict) else {}
        return {str(k): str(v) for k, v in entries.items() if k and v}

    def _flush(self, mapping: Dict[str, str]) -> None:
        payload = {"evidenceToClip": mapping, "updatedAt": datetime.now().isoformat()}
        tmp_path = self.mapping_path.with_name(self.mapping_path.name + ".tmp")
        try:
            self.mapping_path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, self.mapping_path)
        except OSError as exc:
            raise MappingIOFailure(f"Cannot write evidence mapping {self.mapping_path}: {exc}") from exc
