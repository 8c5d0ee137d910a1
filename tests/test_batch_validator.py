import tempfile
import unittest
from datetime import datetime, timedelta
from pathlib import Path

from PIL import Image

from fakes import FakeVisionModel
from batch_validator import BatchValidator, Verdict
from clip_library import clip_name
from errors import OcrFailure
from evidence_store import EvidenceStore

SESSION = "ab12cd34"


class BatchValidatorTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        root = Path(self._tmp.name)
        self.clip_dir = root / "clips"
        self.clip_dir.mkdir()
        self.store = EvidenceStore(root / "evidence", root / "evidence_map.json")
        self.image = Image.new("RGB", (8, 8), "black")
        self.base_time = datetime(2024, 5, 1, 21, 0, 0)

    def _pair(self, counter: int, *, mapped: bool = True, session_id: str = SESSION):
        stamp = self.base_time + timedelta(minutes=counter)
        evidence = self.store.save(self.image, session_id, counter, stamp)
        clip = self.clip_dir / clip_name(session_id, counter, stamp, ".mp4")
        clip.write_bytes(b"clip")
        if mapped:
            self.store.map_evidence_to_clip(evidence, clip)
        return evidence, clip

    def _validator(self, texts, **kwargs) -> BatchValidator:
        self.model = FakeVisionModel(texts)
        return BatchValidator(self.store, clip_dir=self.clip_dir, model=self.model, **kwargs)

    def test_classify_checks_deny_list_first(self) -> None:
        validator = self._validator({})
        self.assertEqual(validator.classify("Rival KNOCKED YOU OUT"), (Verdict.DENIED, "KNOCKED YOU OUT"))
        self.assertEqual(validator.classify("you knocked out Rival"), (Verdict.VALID, "YOU KNOCKED OUT"))
        self.assertEqual(validator.classify("squad wiped"), (Verdict.UNRECOGNIZED, None))

    def test_rejected_pairs_are_deleted_and_valid_ones_kept(self) -> None:
        good_evidence, good_clip = self._pair(1)
        denied_evidence, denied_clip = self._pair(2)
        blurry_evidence, blurry_clip = self._pair(3)
        validator = self._validator(
            {
                "_0001_": "YOU KNOCKED OUT Rival",
                "_0002_": "Rival KNOCKED YOU OUT",
                "_0003_": "#@! ~~",
            }
        )

        report = validator.validate_session(SESSION)

        self.assertEqual([v.evidence_path for v in report.valid], [good_evidence])
        self.assertEqual(
            {v.evidence_path: v.verdict for v in report.rejected},
            {denied_evidence: Verdict.DENIED, blurry_evidence: Verdict.UNRECOGNIZED},
        )
        self.assertTrue(all(v.deleted for v in report.rejected))
        self.assertFalse(report.requires_confirmation)

        for path in (denied_evidence, denied_clip, blurry_evidence, blurry_clip):
            self.assertFalse(path.exists(), path.name)
        self.assertTrue(good_evidence.exists())
        self.assertTrue(good_clip.exists())
        self.assertEqual(self.store.snapshot(), {str(good_evidence): str(good_clip)})

    def test_declined_confirmation_keeps_files(self) -> None:
        evidence, clip = self._pair(1)
        seen = []

        def confirm(rejected):
            seen.extend(rejected)
            return False

        report = self._validator({"_0001_": "nothing here"}).validate_session(SESSION, confirm=confirm)

        self.assertEqual(len(seen), 1)
        self.assertTrue(report.requires_confirmation)
        self.assertTrue(evidence.exists())
        self.assertTrue(clip.exists())

    def test_ocr_errors_are_reported_and_files_kept(self) -> None:
        evidence, clip = self._pair(1)
        report = self._validator({"_0001_": OcrFailure("quota exceeded")}).validate_session(SESSION)

        self.assertEqual(len(report.errors), 1)
        self.assertIn("quota exceeded", report.errors[0].error)
        self.assertEqual(report.rejected, [])
        self.assertTrue(evidence.exists())
        self.assertTrue(clip.exists())

    def test_unmapped_evidence_falls_back_to_closest_clip(self) -> None:
        evidence, clip = self._pair(1, mapped=False)
        other_session_evidence, other_clip = self._pair(1, mapped=False, session_id="ffff0000")

        report = self._validator({"_0001_": "KNOCKED YOU"}).validate_session(SESSION)

        self.assertEqual(report.rejected[0].clip_source, "proximity")
        self.assertFalse(evidence.exists())
        self.assertFalse(clip.exists())
        self.assertTrue(other_session_evidence.exists())
        self.assertTrue(other_clip.exists())

    def test_only_the_requested_session_is_validated(self) -> None:
        self._pair(1)
        other_evidence, _ = self._pair(2, session_id="ffff0000")
        validator = self._validator({}, allow_phrases=["NEVER MATCHES"])

        report = validator.validate_session(SESSION)

        self.assertEqual(len(report.rejected), 1)
        self.assertEqual(len(self.model.calls), 1)
        self.assertTrue(other_evidence.exists())

    def test_manual_invalidate_removes_pair(self) -> None:
        evidence, clip = self._pair(4)

        verdict = self._validator({}).invalidate(evidence)

        self.assertTrue(verdict.deleted)
        self.assertEqual(verdict.clip_source, "mapping")
        self.assertFalse(evidence.exists())
        self.assertFalse(clip.exists())
        self.assertEqual(self.store.snapshot(), {})

    def test_empty_session_produces_empty_report(self) -> None:
        report = self._validator({}).validate_session("00000000")
        self.assertEqual(report.to_dict()["valid"], [])
        self.assertFalse(report.requires_confirmation)


if __name__ == "__main__":
    unittest.main()
