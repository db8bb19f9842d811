"""
PII Detector
Applies a PatternCatalog to text in priority order and returns
non-overlapping candidate spans
"""

import bisect
import logging
import re
from dataclasses import dataclass
from typing import FrozenSet, Iterable, Iterator, List, Optional, Sequence, Set, Tuple

from services.catalog import PatternCatalog, PiiCategory

logger = logging.getLogger(__name__)

WORD_PATTERN = re.compile(r"\S+")


@dataclass(frozen=True)
class Candidate:
    """A detected PII span before token assignment"""

    start: int
    end: int
    category: PiiCategory
    value: str

    @property
    def code(self) -> str:
        return self.category.code

    def to_dict(self) -> dict:
        return {
            "entity_type": self.category.code,
            "category_name": self.category.name,
            "start": self.start,
            "end": self.end,
            "text": self.value,
        }


class SpanSet:
    """Sorted, non-overlapping set of half-open [start, end) intervals"""

    def __init__(self):
        self._starts: List[int] = []
        self._ends: List[int] = []

    def overlaps(self, start: int, end: int) -> bool:
        i = bisect.bisect_left(self._starts, end)
        # Only the interval starting just before `end` can overlap
        return i > 0 and self._ends[i - 1] > start

    def add(self, start: int, end: int) -> None:
        i = bisect.bisect_left(self._starts, start)
        self._starts.insert(i, start)
        self._ends.insert(i, end)

    def __len__(self) -> int:
        return len(self._starts)


class Detector:
    """
    Runs catalog categories in priority order. A span consumed by a
    higher-priority category is never offered to a lower one.
    """

    def __init__(self, catalog: PatternCatalog):
        self.catalog = catalog

    def detect(
        self,
        text: str,
        categories: Optional[Sequence[str]] = None,
        extra_exclusions: Iterable[str] = (),
    ) -> List[Candidate]:
        """
        Detect PII in text.

        Args:
            text: Input text to scan
            categories: Category codes to enable (None for all)
            extra_exclusions: Additional non-name words for this call

        Returns:
            One Candidate per distinct (value, category), in first-occurrence order
        """
        return self.deduplicate(self.detect_spans(text, categories, extra_exclusions))

    def detect_spans(
        self,
        text: str,
        categories: Optional[Sequence[str]] = None,
        extra_exclusions: Iterable[str] = (),
    ) -> List[Candidate]:
        """Every accepted span, non-overlapping and sorted by start"""
        selected = self.catalog.select(categories)
        exclusions = self.catalog.name_exclusions | frozenset(w.casefold() for w in extra_exclusions)

        consumed = SpanSet()
        accepted: List[Candidate] = []
        for category in selected:
            for start, end in self._category_spans(category, text, exclusions):
                if consumed.overlaps(start, end):
                    continue
                consumed.add(start, end)
                accepted.append(Candidate(start, end, category, text[start:end]))

        accepted.sort(key=lambda c: c.start)
        logger.debug("Detected %d PII spans across %d categories", len(accepted), len(selected))
        return accepted

    def _category_spans(
        self, category: PiiCategory, text: str, exclusions: FrozenSet[str]
    ) -> Iterator[Tuple[int, int]]:
        # Earlier first, then longer first
        spans = sorted(category.find(text), key=lambda s: (s[0], s[0] - s[1]))
        for start, end in spans:
            if category.kind == "name":
                yield from self._split_on_exclusions(text, start, end, exclusions)
            else:
                yield start, end

    @staticmethod
    def _split_on_exclusions(
        text: str, start: int, end: int, exclusions: FrozenSet[str]
    ) -> Iterator[Tuple[int, int]]:
        """Split a capitalized-word run into sub-runs that contain no excluded word"""
        run_start = run_end = None
        for word in WORD_PATTERN.finditer(text, start, end):
            if word.group().casefold() in exclusions:
                if run_start is not None:
                    yield run_start, run_end
                run_start = run_end = None
                continue
            if run_start is None:
                run_start = word.start()
            run_end = word.end()
        if run_start is not None:
            yield run_start, run_end

    @staticmethod
    def deduplicate(candidates: List[Candidate]) -> List[Candidate]:
        seen: Set[Tuple[str, str]] = set()
        unique = []
        for candidate in candidates:
            key = (candidate.value, candidate.code)
            if key in seen:
                continue
            seen.add(key)
            unique.append(candidate)
        return unique
