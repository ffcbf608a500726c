"""
Post-hoc quality guard flagging translations that look like their source.

Placeholders and whitespace are stripped before comparing, so a translation
that only re-spaced the source still scores as identical.
"""
import re
from typing import Optional, Tuple

from rapidfuzz import fuzz

from bookbatch.config import SIMILARITY_HIGH_THRESHOLD, SIMILARITY_MEDIUM_THRESHOLD
from bookbatch.core.exceptions import SimilarityViolation
from bookbatch.core.result import Err, Ok, Result

LEVEL_LOW = "low"
LEVEL_MEDIUM = "medium"
LEVEL_HIGH = "high"

_PLACEHOLDER = re.compile(r'\[\[[^\]]+\]\]')
_WHITESPACE = re.compile(r'\s+')


def normalize(text: Optional[str]) -> str:
    if not text:
        return ""
    return _WHITESPACE.sub("", _PLACEHOLDER.sub("", text))


class SimilarityGuard:
    """Normalized edit-distance comparison with medium/high thresholds."""

    def __init__(self, medium_threshold: float = SIMILARITY_MEDIUM_THRESHOLD,
                 high_threshold: float = SIMILARITY_HIGH_THRESHOLD):
        if not 0.0 <= medium_threshold <= high_threshold <= 1.0:
            raise ValueError("Thresholds must satisfy 0 <= medium <= high <= 1")
        self.medium_threshold = medium_threshold
        self.high_threshold = high_threshold

    def similarity(self, source: Optional[str], translated: Optional[str]) -> float:
        """Ratio in [0, 1]; two empty texts are identical, one empty text shares nothing."""
        src = normalize(source)
        dst = normalize(translated)
        if not src and not dst:
            return 1.0
        if not src or not dst:
            return 0.0
        return fuzz.ratio(src, dst) / 100.0

    def classify(self, source: Optional[str], translated: Optional[str]) -> Tuple[float, str]:
        ratio = self.similarity(source, translated)
        if ratio >= self.high_threshold:
            return ratio, LEVEL_HIGH
        if ratio >= self.medium_threshold:
            return ratio, LEVEL_MEDIUM
        return ratio, LEVEL_LOW

    def check(self, source: Optional[str], translated: Optional[str]) -> Result[float, SimilarityViolation]:
        """Err at medium or high similarity, Ok(ratio) otherwise."""
        ratio, level = self.classify(source, translated)
        if level == LEVEL_HIGH:
            return Err(SimilarityViolation(level, ratio, self.high_threshold))
        if level == LEVEL_MEDIUM:
            return Err(SimilarityViolation(level, ratio, self.medium_threshold))
        return Ok(ratio)

    def check_high(self, source: Optional[str], translated: Optional[str]) -> Result[float, SimilarityViolation]:
        """Err only at high similarity."""
        ratio, level = self.classify(source, translated)
        if level == LEVEL_HIGH:
            return Err(SimilarityViolation(level, ratio, self.high_threshold))
        return Ok(ratio)
