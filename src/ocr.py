import logging
import re
from abc import ABC, abstractmethod
from typing import Optional

import pytesseract
from PIL import Image, ImageOps

from errors import OcrFailure

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


def normalize_text(text: Optional[str]) -> str:
    """Upper-case and collapse whitespace so phrase checks are layout agnostic."""
    if not text:
        return ""
    return _WHITESPACE.sub(" ", text).strip().upper()


class FrameOcr(ABC):
    @abstractmethod
    def read_text(self, image: Image.Image) -> str:
        """Return the normalised text visible in ``image``."""


class TesseractOcr(FrameOcr):
    """Frame OCR backed by the local Tesseract binary."""

    def __init__(
        self,
        *,
        timeout: float = 5.0,
        config: str = "--psm 6",
        tesseract_cmd: Optional[str] = None,
    ) -> None:
        self.timeout = timeout
        self.config = config
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd

    def read_text(self, image: Image.Image) -> str:
        prepared = self._prepare(image)
        try:
            raw = pytesseract.image_to_string(prepared, config=self.config, timeout=self.timeout)
        except (pytesseract.TesseractError, pytesseract.TesseractNotFoundError, OSError) as exc:
            raise OcrFailure(f"OCR failed: {exc}") from exc
        except RuntimeError as exc:
            # pytesseract signals its own timeout with a bare RuntimeError.
            raise OcrFailure(f"OCR exceeded {self.timeout}s budget: {exc}") from exc
        text = normalize_text(raw)
        logger.debug("OCR text: %r", text)
        return text

    @staticmethod
    def _prepare(image: Image.Image) -> Image.Image:
        gray = ImageOps.grayscale(image)
        if gray.width < 800:
            scale = 800 / max(gray.width, 1)
            gray = gray.resize((int(gray.width * scale), int(gray.height * scale)), Image.LANCZOS)
        return ImageOps.autocontrast(gray)
