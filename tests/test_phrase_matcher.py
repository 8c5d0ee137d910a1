import unittest

from event_schema import DetectionPhase
from ocr import normalize_text
from phrase_matcher import PhraseMatcher, match


class PhraseMatcherTests(unittest.TestCase):
    def test_primary_phrase_found_in_noisy_text(self) -> None:
        self.assertEqual(match("  you   knocked\nout  Rival42 ", DetectionPhase.PRIMARY), "KNOCKED OUT")

    def test_first_phrase_in_order_wins(self) -> None:
        # "YOU KILLED" is listed before the bare "KILLED".
        self.assertEqual(match("YOU KILLED SOMEONE", DetectionPhase.PRIMARY), "YOU KILLED")

    def test_secondary_phrases_only_apply_in_secondary_phase(self) -> None:
        self.assertEqual(match("YOU FINALLY KILLED Bot", DetectionPhase.SECONDARY), "YOU FINALLY KILLED")
        self.assertIsNone(match("KILLED", DetectionPhase.SECONDARY))

    def test_empty_or_unrelated_text_matches_nothing(self) -> None:
        self.assertIsNone(match("", DetectionPhase.PRIMARY))
        self.assertIsNone(match("VICTORY ROYALE", DetectionPhase.PRIMARY))

    def test_overlapping_phrase_sets_are_rejected(self) -> None:
        with self.assertRaises(ValueError):
            PhraseMatcher(primary=["you killed"], secondary=["YOU KILLED"])

    def test_custom_phrases_are_normalized(self) -> None:
        matcher = PhraseMatcher(primary=["  double   kill "], secondary=["triple kill"])
        self.assertEqual(matcher.match("Double Kill!", DetectionPhase.PRIMARY), "DOUBLE KILL")

    def test_normalize_text_collapses_whitespace(self) -> None:
        self.assertEqual(normalize_text(" a\tb \n c "), "A B C")
        self.assertEqual(normalize_text(None), "")


if __name__ == "__main__":
    unittest.main()
