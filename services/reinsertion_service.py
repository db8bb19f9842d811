"""
PII Reinsertion Service
Reinserts original values into text by resolving tokens
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from services.tokens import TOKEN_PATTERN

logger = logging.getLogger(__name__)


@dataclass
class ReinsertionResult:
    text: str
    resolved: Dict[str, str] = field(default_factory=dict)
    unresolved: List[str] = field(default_factory=list)


class ReinsertionService:
    """
    Service for reinserting PII into LLM responses.
    Replaces tokens with original values; unknown tokens are left as-is.
    """

    def __init__(self):
        self.placeholder_pattern = TOKEN_PATTERN
        self.unresolved_total = 0

    def reinsert_pii(self, text: str, resolve: Callable[[str], Optional[str]]) -> ReinsertionResult:
        """
        Reinsert PII into text by resolving every token it contains.

        All tokens are resolved before any output is built, so a resolver
        failure aborts the call without returning partially restored text.

        Args:
            text: Text containing tokens
            resolve: Returns the original value for a token, or None if unknown

        Returns:
            ReinsertionResult with the restored text and unresolved tokens
        """
        tokens = list(dict.fromkeys(m.group(0) for m in self.placeholder_pattern.finditer(text)))
        if not tokens:
            return ReinsertionResult(text=text)

        resolved: Dict[str, str] = {}
        unresolved: List[str] = []
        for token in tokens:
            value = resolve(token)
            if value is None:
                unresolved.append(token)
            else:
                resolved[token] = value

        if unresolved:
            self.unresolved_total += len(unresolved)
            logger.warning("Left %d unresolved token(s) in text: %s", len(unresolved), ", ".join(unresolved))

        restored = self.placeholder_pattern.sub(
            lambda m: resolved.get(m.group(0), m.group(0)),
            text,
        )
        return ReinsertionResult(text=restored, resolved=resolved, unresolved=unresolved)
