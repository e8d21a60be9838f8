import unittest
from datetime import datetime, timezone

from eventrecon.match.similarity import normalize_title, rank_candidates, similarity
from eventrecon.models import ExternalCatalogEntry


def _entry(entry_id: str, name: str) -> ExternalCatalogEntry:
    return ExternalCatalogEntry(
        id=entry_id,
        venue_slug="moody-center",
        external_venue_id="KovZ917ACh0",
        name=name,
        local_date="2025-11-14",
        start_time=datetime(2025, 11, 15, 1, 0, tzinfo=timezone.utc),
    )


class NormalizeTitleTests(unittest.TestCase):
    def test_lowercases_and_strips_punctuation(self) -> None:
        self.assertEqual(normalize_title("  AC/DC:  Power   Up! "), "acdc power up")

    def test_removes_leading_article_only(self) -> None:
        self.assertEqual(normalize_title("The Band of the Year"), "band of the year")
        self.assertEqual(normalize_title("An Evening With Sting"), "evening with sting")

    def test_article_prefix_of_word_is_kept(self) -> None:
        self.assertEqual(normalize_title("Theory of a Deadman"), "theory of a deadman")


class SimilarityTests(unittest.TestCase):
    def test_identical_titles_score_one(self) -> None:
        for title in ("Texas MBB", "The Killers", "x"):
            self.assertEqual(similarity(title, title), 1.0)

    def test_equal_after_normalization(self) -> None:
        self.assertEqual(similarity("The Killers", "killers!"), 1.0)

    def test_empty_side_scores_zero(self) -> None:
        self.assertEqual(similarity("", "Texas MBB"), 0.0)
        self.assertEqual(similarity("Texas MBB", "!!!"), 0.0)

    def test_containment_floor(self) -> None:
        score = similarity("Texas MBB", "Texas MBB vs Baylor")
        self.assertAlmostEqual(score, 0.7)

    def test_containment_uses_length_ratio_when_higher(self) -> None:
        score = similarity("Hozier Unreal Unearth", "Hozier Unreal Unearth Tour")
        self.assertAlmostEqual(score, 21 / 26)

    def test_word_overlap(self) -> None:
        score = similarity("Texas Longhorns Basketball", "Longhorns Basketball Game")
        self.assertAlmostEqual(score, max(0.5, (2 / 3) * 0.8))

    def test_short_tokens_ignored_in_overlap(self) -> None:
        # "vs" and "am" are too short to count.
        score = similarity("Texas MBB", "Texas Longhorns Mens Basketball vs. Texas A&M")
        self.assertAlmostEqual(score, 0.5)

    def test_levenshtein_fallback(self) -> None:
        self.assertAlmostEqual(similarity("kitten", "sitting"), 1 - 3 / 7)

    def test_symmetric_for_containment_and_edit_distance(self) -> None:
        pairs = [
            ("Texas MBB", "Texas MBB vs Baylor"),
            ("kitten", "sitting"),
            ("Chris Stapleton", "Chris Stapelton"),
        ]
        for left, right in pairs:
            self.assertAlmostEqual(similarity(left, right), similarity(right, left))

    def test_score_in_unit_interval(self) -> None:
        for left, right in [("a", "b"), ("Metallica", "Megadeth"), ("Jazz Night", "Comedy Night Live")]:
            score = similarity(left, right)
            self.assertGreaterEqual(score, 0.0)
            self.assertLessEqual(score, 1.0)


class RankCandidatesTests(unittest.TestCase):
    def test_sorted_descending(self) -> None:
        entries = [_entry("A", "Disney On Ice"), _entry("B", "Texas MBB vs Baylor"), _entry("C", "Texas MBB")]
        ranked = rank_candidates("Texas MBB", entries)
        self.assertEqual([item.entry.id for item in ranked], ["C", "B", "A"])
        self.assertEqual(ranked[0].similarity, 1.0)

    def test_ties_keep_retrieval_order(self) -> None:
        entries = [
            _entry("M1", "Texas Longhorns Mens Basketball vs. Texas A&M"),
            _entry("W1", "Texas Longhorns Womens Basketball vs. UNC"),
        ]
        ranked = rank_candidates("Texas MBB", entries)
        self.assertEqual([item.entry.id for item in ranked], ["M1", "W1"])
        self.assertEqual(ranked[0].similarity, ranked[1].similarity)

    def test_empty(self) -> None:
        self.assertEqual(rank_candidates("Texas MBB", []), [])


if __name__ == "__main__":
    unittest.main()
