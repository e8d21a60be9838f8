import re
from typing import Iterable, List

from rapidfuzz.distance import Levenshtein

from eventrecon.models import ExternalCatalogEntry, RankedCandidate

CONTAINMENT_FLOOR = 0.7
WORD_OVERLAP_MIN_RATIO = 0.5
WORD_OVERLAP_FLOOR = 0.5
WORD_OVERLAP_SCALE = 0.8
MIN_TOKEN_LENGTH = 3

_LEADING_ARTICLE = re.compile(r"^(the|a|an)\s+")


def normalize_title(value: str) -> str:
    text = re.sub(r"[^\w\s]", "", (value or "").lower())
    text = re.sub(r"\s+", " ", text).strip()
    text = _LEADING_ARTICLE.sub("", text)
    return text.strip()


def similarity(title_a: str, title_b: str) -> float:
    """Score how likely two independently written event titles name the same event.

    Short titles from different sources tend to differ by abbreviation or by an
    added opponent/tour name, so containment and word overlap are checked
    before falling back to edit distance.
    """
    left = normalize_title(title_a)
    right = normalize_title(title_b)

    if left == right:
        return 1.0
    if not left or not right:
        return 0.0

    if left in right or right in left:
        shorter, longer = sorted((len(left), len(right)))
        return max(CONTAINMENT_FLOOR, shorter / longer)

    overlap = _word_overlap(left, right)
    if overlap >= WORD_OVERLAP_MIN_RATIO:
        return max(WORD_OVERLAP_FLOOR, overlap * WORD_OVERLAP_SCALE)

    distance = Levenshtein.distance(left, right)
    return 1.0 - distance / max(len(left), len(right))


def rank_candidates(title: str, entries: Iterable[ExternalCatalogEntry]) -> List[RankedCandidate]:
    ranked = [RankedCandidate(entry=entry, similarity=similarity(title, entry.name)) for entry in entries]
    # Stable: equal scores keep retrieval order.
    ranked.sort(key=lambda item: item.similarity, reverse=True)
    return ranked


def _word_overlap(left: str, right: str) -> float:
    left_words = _words(left)
    right_words = _words(right)
    if not left_words:
        return 0.0
    common = [
        word for word in left_words if any(other in word or word in other for other in right_words)
    ]
    return len(common) / len(left_words)


def _words(text: str) -> List[str]:
    return [word for word in text.split(" ") if len(word) >= MIN_TOKEN_LENGTH]
