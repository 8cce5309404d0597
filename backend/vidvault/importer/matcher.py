from __future__ import annotations

import logging
from dataclasses import dataclass

from vidvault.importer.filenames import strip_extension, strip_quality_suffix
from vidvault.importer.index import MetadataIndex
from vidvault.importer.records import MetadataRecord

logger = logging.getLogger(__name__)

STRATEGY_QUALITY_STRIPPED = "quality_stripped"
STRATEGY_UNDERSCORES_TO_SPACES = "underscores_to_spaces"
STRATEGY_SPACES_TO_UNDERSCORES = "spaces_to_underscores"
STRATEGY_FUZZY = "fuzzy"

DEFAULT_FUZZY_THRESHOLD = 70.0


@dataclass(frozen=True)
class MatchResult:
    record: MetadataRecord
    strategy: str
    key: str
    score: float = 100.0


def _similar_chars(a: str, b: str) -> int:
    # Longest common substring (first occurrence wins), then recurse on both sides.
    if not a or not b:
        return 0
    best = 0
    pos_a = pos_b = 0
    for i in range(len(a)):
        for j in range(len(b)):
            k = 0
            while i + k < len(a) and j + k < len(b) and a[i + k] == b[j + k]:
                k += 1
            if k > best:
                best, pos_a, pos_b = k, i, j
    if best == 0:
        return 0
    return (
        best
        + _similar_chars(a[:pos_a], b[:pos_b])
        + _similar_chars(a[pos_a + best :], b[pos_b + best :])
    )


def similar_text_percent(a: str, b: str) -> float:
    """Percentage similarity of two strings, as PHP's ``similar_text`` reports it."""
    total = len(a) + len(b)
    if total == 0:
        return 0.0
    return _similar_chars(a, b) * 2 * 100 / total


class FilenameMatcher:
    """Reconcile a video filename with a record in a :class:`MetadataIndex`.

    Strategies run in order and the first hit wins:

    1. strip a trailing ``(1080p)``-style annotation and look the name up;
    2. the same name with underscores turned into spaces;
    3. the same name with spaces turned into underscores;
    4. fuzzy: best ``similar_text`` score over every index key, accepted only
       when strictly greater than the threshold.
    """

    def __init__(self, index: MetadataIndex, *, threshold: float = DEFAULT_FUZZY_THRESHOLD) -> None:
        self.index = index
        self.threshold = float(threshold)

    def match(self, filename: str) -> MatchResult | None:
        cleaned = strip_quality_suffix(strip_extension(filename))
        name = cleaned.lower()

        candidates = (
            (STRATEGY_QUALITY_STRIPPED, name),
            (STRATEGY_UNDERSCORES_TO_SPACES, name.replace("_", " ")),
            (STRATEGY_SPACES_TO_UNDERSCORES, name.replace(" ", "_")),
        )
        for strategy, key in candidates:
            record = self.index.lookup(key)
            if record is not None:
                return MatchResult(record=record, strategy=strategy, key=key)

        if len(self.index) == 0:
            return None

        best_key: str | None = None
        best_record: MetadataRecord | None = None
        best_score = 0.0
        for key, record in self.index.items():
            score = similar_text_percent(name, key)
            if score > best_score:
                best_key, best_record, best_score = key, record, score

        if best_record is not None and best_key is not None and best_score > self.threshold:
            logger.debug("Fuzzy match %r -> %r (%.2f%%)", filename, best_key, best_score)
            return MatchResult(record=best_record, strategy=STRATEGY_FUZZY, key=best_key, score=best_score)
        return None
