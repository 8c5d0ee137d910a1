import unittest
from unittest import mock

import pytesseract
from PIL import Image

from errors import CaptureFailure, OcrFailure
from event_schema import DetectionPhase
from frame_source import PRIMARY_REGION, SECONDARY_REGION, FrameSource, RegionOfInterest
from ocr import TesseractOcr


class RegionOfInterestTests(unittest.TestCase):
    def test_box_is_offset_by_monitor_origin(self) -> None:
        region = RegionOfInterest(left=0.25, top=0.5, width=0.5, height=0.25)
        box = region.to_box(frame_left=1920, frame_top=0, frame_width=1920, frame_height=1080)
        self.assertEqual(box, {"left": 2400, "top": 540, "width": 960, "height": 270})

    def test_region_must_fit_inside_the_frame(self) -> None:
        with self.assertRaises(ValueError):
            RegionOfInterest(left=0.8, top=0.1, width=0.5, height=0.1)
        with self.assertRaises(ValueError):
            RegionOfInterest(left=0.1, top=0.1, width=0.0, height=0.1)

    def test_phase_selects_region(self) -> None:
        source = FrameSource()
        self.assertIs(source.region_for(DetectionPhase.PRIMARY), PRIMARY_REGION)
        self.assertIs(source.region_for(DetectionPhase.SECONDARY), SECONDARY_REGION)


class FrameSourceCaptureTests(unittest.TestCase):
    def _fake_mss(self, monitors):
        raw = mock.Mock()
        raw.size = (4, 2)
        raw.bgra = bytes([10, 20, 30, 255]) * 8
        sct = mock.MagicMock()
        sct.monitors = monitors
        sct.grab.return_value = raw
        sct.__enter__.return_value = sct
        return sct

    def test_capture_crops_selected_monitor(self) -> None:
        monitors = [
            {"left": 0, "top": 0, "width": 3840, "height": 1080},
            {"left": 0, "top": 0, "width": 1920, "height": 1080},
        ]
        sct = self._fake_mss(monitors)
        with mock.patch("frame_source.mss.mss", return_value=sct):
            image = FrameSource().capture(DetectionPhase.PRIMARY)

        sct.grab.assert_called_once_with({"left": 480, "top": 648, "width": 960, "height": 216})
        self.assertEqual(image.size, (4, 2))
        self.assertEqual(image.getpixel((0, 0)), (30, 20, 10))

    def test_missing_monitor_falls_back_to_virtual_screen(self) -> None:
        monitors = [{"left": 0, "top": 0, "width": 1000, "height": 1000}]
        sct = self._fake_mss(monitors)
        with mock.patch("frame_source.mss.mss", return_value=sct):
            FrameSource(monitor_index=3).capture(DetectionPhase.SECONDARY)
        sct.grab.assert_called_once_with({"left": 300, "top": 500, "width": 400, "height": 100})

    def test_backend_errors_become_capture_failures(self) -> None:
        with mock.patch("frame_source.mss.mss", side_effect=OSError("no display")):
            with self.assertRaises(CaptureFailure):
                FrameSource().capture(DetectionPhase.PRIMARY)


class TesseractOcrTests(unittest.TestCase):
    def setUp(self) -> None:
        self.image = Image.new("RGB", (200, 40), "white")

    def test_text_is_normalized(self) -> None:
        with mock.patch("ocr.pytesseract.image_to_string", return_value="you  killed\nBot\n") as fake:
            text = TesseractOcr(timeout=2).read_text(self.image)
        self.assertEqual(text, "YOU KILLED BOT")
        self.assertEqual(fake.call_args.kwargs["timeout"], 2)
        prepared = fake.call_args.args[0]
        self.assertGreaterEqual(prepared.width, 800)

    def test_timeout_is_reported_as_ocr_failure(self) -> None:
        with mock.patch("ocr.pytesseract.image_to_string", side_effect=RuntimeError("Tesseract process timeout")):
            with self.assertRaises(OcrFailure):
                TesseractOcr().read_text(self.image)

    def test_missing_binary_is_reported_as_ocr_failure(self) -> None:
        with mock.patch("ocr.pytesseract.image_to_string", side_effect=pytesseract.TesseractNotFoundError()):
            with self.assertRaises(OcrFailure):
                TesseractOcr().read_text(self.image)


if __name__ == "__main__":
    unittest.main()
