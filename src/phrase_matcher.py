from typing import Dict, Iterable, Optional, Tuple

from event_schema import DetectionPhase
from ocr import normalize_text

# High recall trip-wire. Short tokens are intentional: missing a real event is
# worse than a provisional clip that gets retracted later.
PRIMARY_PHRASES: Tuple[str, ...] = (
    "YOU KILLED",
    "KNOCKED OUT",
    "ELIMINATED",
    "KNOCKED",
    "KILLED",
)

# Confirmation line, only consulted while a primary clip is provisional.
SECONDARY_PHRASES: Tuple[str, ...] = (
    "YOU FINALLY KILLED",
    "YOU KNOCKED OUT",
    "YOU ELIMINATED",
)


class PhraseMatcher:
    """Maps OCR text and the active phase to at most one trigger phrase."""

    def __init__(
        self,
        primary: Iterable[str] = PRIMARY_PHRASES,
        secondary: Iterable[str] = SECONDARY_PHRASES,
    ) -> None:
        primary_set = tuple(normalize_text(p) for p in primary if normalize_text(p))
        secondary_set = tuple(normalize_text(p) for p in secondary if normalize_text(p))
        overlap = set(primary_set) & set(secondary_set)
        if overlap:
            raise ValueError(f"Primary and secondary phrase sets overlap: {sorted(overlap)}")
        self.phrases: Dict[DetectionPhase, Tuple[str, ...]] = {
            DetectionPhase.PRIMARY: primary_set,
            DetectionPhase.SECONDARY: secondary_set,
        }

    def match(self, text: str, phase: DetectionPhase) -> Optional[str]:
        normalized = normalize_text(text)
        if not normalized:
            return None
        for phrase in self.phrases[phase]:
            if phrase in normalized:
                return phrase
        return None


DEFAULT_MATCHER = PhraseMatcher()


def match(text: str, phase: DetectionPhase) -> Optional[str]:
    return DEFAULT_MATCHER.match(text, phase)
