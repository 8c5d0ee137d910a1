import os
import tempfile
import time
import unittest
from datetime import datetime
from pathlib import Path

from PIL import Image

from clip_library import find_clip_by_proximity, list_clips, purge_expired, rename_clip, timestamp_from_name
from evidence_store import EvidenceStore


class ClipLibraryTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        root = Path(self._tmp.name)
        self.clip_dir = root / "clips"
        self.clip_dir.mkdir()
        self.store = EvidenceStore(root / "evidence", root / "evidence_map.json")

    def _clip(self, name: str, mtime: float = None) -> Path:
        path = self.clip_dir / name
        path.write_bytes(b"clip")
        if mtime is not None:
            os.utime(path, (mtime, mtime))
        return path

    def test_timestamps_parse_from_both_naming_schemes(self) -> None:
        self.assertEqual(
            timestamp_from_name("ab12cd34_0003_20240501_211403_500000.mp4"),
            datetime(2024, 5, 1, 21, 14, 3, 500000),
        )
        self.assertEqual(timestamp_from_name("Replay 2024-05-01 21-14-03.mkv"), datetime(2024, 5, 1, 21, 14, 3))
        self.assertIsNone(timestamp_from_name("clip.mp4"))

    def test_list_clips_newest_first_and_by_session(self) -> None:
        now = time.time()
        older = self._clip("ab12cd34_0001.mp4", now - 10)
        newer = self._clip("ab12cd34_0002.mkv", now)
        self._clip("ffff0000_0001.mp4", now + 5)
        self._clip("readme.txt", now + 10)

        self.assertEqual(list_clips(self.clip_dir, session_id="ab12cd34"), [newer, older])
        self.assertEqual(len(list_clips(self.clip_dir)), 3)

    def test_rename_clip_uses_session_prefix(self) -> None:
        original = self._clip("Replay 2024-05-01 21-14-03.MP4")
        renamed = rename_clip(original, "ab12cd34", 5, datetime(2024, 5, 1, 21, 14, 3))

        self.assertEqual(renamed.name, "ab12cd34_0005_20240501_211403_000000.mp4")
        self.assertTrue(renamed.exists())
        self.assertFalse(original.exists())

    def test_proximity_picks_closest_unmapped_clip_in_window(self) -> None:
        evidence = Path("evidence_ab12cd34_0002_20240501_211400_000000.png")
        self._clip("ab12cd34_0001_20240501_211300_000000.mp4")
        near = self._clip("ab12cd34_0002_20240501_211402_000000.mp4")
        taken = self._clip("ab12cd34_0003_20240501_211401_000000.mp4")
        self._clip("ffff0000_0001_20240501_211400_000000.mp4")

        guess = find_clip_by_proximity(evidence, "ab12cd34", self.clip_dir, exclude=[str(taken)])
        self.assertEqual(guess, near)

        self.assertIsNone(
            find_clip_by_proximity(evidence, "ab12cd34", self.clip_dir, window_seconds=0.5, exclude=[str(taken)])
        )

    def test_purge_removes_old_clips_and_their_evidence(self) -> None:
        now = time.time()
        old_clip = self._clip("ab12cd34_0001.mp4", now - 5 * 86400)
        fresh_clip = self._clip("ab12cd34_0002.mp4", now - 3600)
        evidence = self.store.save(Image.new("RGB", (4, 4)), "ab12cd34", 1)
        self.store.map_evidence_to_clip(evidence, old_clip)

        removed = purge_expired(self.clip_dir, self.store, max_age_days=3, now=now)

        self.assertEqual(removed, [old_clip])
        self.assertFalse(old_clip.exists())
        self.assertFalse(evidence.exists())
        self.assertTrue(fresh_clip.exists())
        self.assertEqual(self.store.snapshot(), {})


if __name__ == "__main__":
    unittest.main()
