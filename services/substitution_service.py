"""
PII Substitution Service
Replaces detected values with their tokens using literal string matching
"""

from typing import Iterable, List, Mapping, Tuple

from services.detector import SpanSet


class SubstitutionService:
    """
    Replaces detected spans, and every other literal occurrence of each
    value, with its token. All replacements are chosen against the source
    text and spliced in once, so inserted tokens are never rescanned.
    """

    def substitute(
        self,
        text: str,
        replacements: Mapping[str, str],
        spans: Iterable[Tuple[int, int]] = (),
    ) -> str:
        """
        Args:
            text: Source text
            replacements: Mapping of original value -> token
            spans: Non-overlapping (start, end) spans already accepted by
                the detector; each must cover a value in replacements

        Returns:
            Text with every value replaced by its token
        """
        if not replacements:
            return text

        claimed = SpanSet()
        chosen: List[Tuple[int, int, str]] = []
        for start, end in spans:
            claimed.add(start, end)
            chosen.append((start, end, replacements[text[start:end]]))

        # Longer values claim their occurrences first, so a short value never splits a longer one
        for value in sorted(replacements, key=len, reverse=True):
            if not value:
                continue
            start = text.find(value)
            while start != -1:
                end = start + len(value)
                if claimed.overlaps(start, end):
                    start = text.find(value, start + 1)
                    continue
                claimed.add(start, end)
                chosen.append((start, end, replacements[value]))
                start = text.find(value, end)

        chosen.sort()
        parts = []
        plain_start = 0
        for start, end, token in chosen:
            parts.append(text[plain_start:start])
            parts.append(token)
            plain_start = end
        parts.append(text[plain_start:])
        return "".join(parts)
