import logging
from dataclasses import dataclass
from typing import Dict

import mss
from mss.exception import ScreenShotError
from PIL import Image

from errors import CaptureFailure
from event_schema import DetectionPhase

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegionOfInterest:
    """A crop rectangle expressed as fractions of the captured monitor."""

    left: float
    top: float
    width: float
    height: float

    def __post_init__(self) -> None:
        for name in ("left", "top", "width", "height"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be a fraction between 0 and 1, got {value}")
        if self.width <= 0 or self.height <= 0:
            raise ValueError("Region must have a non-zero width and height.")
        if self.left + self.width > 1.0 or self.top + self.height > 1.0:
            raise ValueError("Region extends past the frame.")

    def to_box(self, frame_left: int, frame_top: int, frame_width: int, frame_height: int) -> Dict[str, int]:
        left = frame_left + int(frame_width * self.left)
        top = frame_top + int(frame_height * self.top)
        width = max(1, int(frame_width * self.width))
        height = max(1, int(frame_height * self.height))
        return {"left": left, "top": top, "width": width, "height": height}


# The kill feed banner sits in a band just below screen centre. The secondary
# line is a narrower strip a little higher up.
PRIMARY_REGION = RegionOfInterest(left=0.25, top=0.6, width=0.5, height=0.2)
SECONDARY_REGION = RegionOfInterest(left=0.3, top=0.5, width=0.4, height=0.1)


class FrameSource:
    """Grabs the current display and crops the region for the active phase."""

    def __init__(
        self,
        *,
        monitor_index: int = 1,
        primary_region: RegionOfInterest = PRIMARY_REGION,
        secondary_region: RegionOfInterest = SECONDARY_REGION,
    ) -> None:
        self.monitor_index = monitor_index
        self.regions = {
            DetectionPhase.PRIMARY: primary_region,
            DetectionPhase.SECONDARY: secondary_region,
        }

    def region_for(self, phase: DetectionPhase) -> RegionOfInterest:
        return self.regions[phase]

    def capture(self, phase: DetectionPhase) -> Image.Image:
        region = self.region_for(phase)
        try:
            with mss.mss() as sct:
                monitor = self._pick_monitor(sct.monitors)
                box = region.to_box(monitor["left"], monitor["top"], monitor["width"], monitor["height"])
                raw = sct.grab(box)
                image = Image.frombytes("RGB", raw.size, raw.bgra, "raw", "BGRX")
        except (ScreenShotError, OSError, ValueError) as exc:
            raise CaptureFailure(f"Screen capture failed: {exc}") from exc
        logger.debug("Captured %s region %s", phase.value, box)
        return image

    def _pick_monitor(self, monitors) -> Dict[str, int]:
        if not monitors:
            raise CaptureFailure("No monitors reported by the capture backend.")
        if self.monitor_index < len(monitors):
            return monitors[self.monitor_index]
        logger.warning(
            "Monitor %s not available (%s found); using the full virtual screen.",
            self.monitor_index,
            len(monitors) - 1,
        )
        return monitors[0]
