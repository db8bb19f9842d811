"""
PII Anonymization Service
Detects PII, swaps it for reversible tokens and restores it afterwards
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, Field, field_validator

from services.catalog import PatternCatalog
from services.detector import Candidate, Detector
from services.mapping_store import MappingStore
from services.reinsertion_service import ReinsertionResult, ReinsertionService
from services.substitution_service import SubstitutionService
from services.tokens import CATEGORY_CODE_PATTERN

logger = logging.getLogger(__name__)


class AnonymizationConfig(BaseModel):
    """Per-call detection options"""

    categories: Optional[List[str]] = Field(
        default=None,
        description="Category codes to detect (default: every catalog category)",
    )
    name_exclusions: List[str] = Field(
        default_factory=list,
        description="Extra words never treated as names in this call",
    )

    @field_validator("categories")
    @classmethod
    def codes_must_be_three_letters(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        if value is None:
            return value
        invalid = [code for code in value if not CATEGORY_CODE_PATTERN.match(code)]
        if invalid:
            raise ValueError(f"invalid category codes: {', '.join(invalid)}")
        return value


@dataclass
class AnonymizationResult:
    anonymized_text: str
    tokens_used: List[Tuple[str, str]] = field(default_factory=list)
    # token -> original value, for callers that keep the mapping themselves
    context: Dict[str, str] = field(default_factory=dict)


class PIIService:
    """Reversible anonymization over a PatternCatalog and a MappingStore"""

    def __init__(
        self,
        catalog: PatternCatalog,
        store: MappingStore,
        detector: Optional[Detector] = None,
        substitution: Optional[SubstitutionService] = None,
        reinsertion: Optional[ReinsertionService] = None,
    ):
        self.catalog = catalog
        self.store = store
        self.detector = detector or Detector(catalog)
        self.substitution = substitution or SubstitutionService()
        self.reinsertion = reinsertion or ReinsertionService()

    def detect_pii(self, text: str, config: Optional[AnonymizationConfig] = None) -> List[Candidate]:
        """Diagnostic detection without tokenizing anything"""
        config = config or AnonymizationConfig()
        return self.detector.detect(text, config.categories, config.name_exclusions)

    def anonymize(
        self,
        text: str,
        config: Optional[AnonymizationConfig] = None,
        store: Optional[MappingStore] = None,
    ) -> AnonymizationResult:
        """
        Replace detected PII with tokens.

        Every token is allocated before the text is touched: if the store
        fails, the error propagates and no partially anonymized text exists.

        Args:
            text: Raw text
            config: Per-call detection options
            store: Mapping store to use instead of the service default

        Returns:
            AnonymizationResult with the anonymized text and tokens used
        """
        store = store or self.store
        config = config or AnonymizationConfig()
        spans = self.detector.detect_spans(text, config.categories, config.name_exclusions)
        if not spans:
            return AnonymizationResult(anonymized_text=text)

        replacements: Dict[str, str] = {}
        tokens_used: List[Tuple[str, str]] = []
        context: Dict[str, str] = {}
        for candidate in self.detector.deduplicate(spans):
            # A value detected under a second category keeps its first token
            if candidate.value in replacements:
                continue
            token = store.get_or_create(candidate.value, candidate.code)
            tokens_used.append((token, candidate.code))
            context[token] = candidate.value
            replacements[candidate.value] = token

        anonymized_text = self.substitution.substitute(
            text, replacements, [(span.start, span.end) for span in spans]
        )
        logger.info(
            "Anonymized text with %d token(s): %s",
            len(tokens_used), ", ".join(sorted({code for _, code in tokens_used})),
        )
        return AnonymizationResult(anonymized_text=anonymized_text, tokens_used=tokens_used, context=context)

    def reidentify(
        self,
        text: str,
        store: Optional[MappingStore] = None,
        context: Optional[Mapping[str, str]] = None,
    ) -> ReinsertionResult:
        """Restore original values, reporting tokens that could not be resolved"""
        if context is not None:
            resolve = context.get
        else:
            resolve = (store or self.store).get_by_token
        return self.reinsertion.reinsert_pii(text, resolve)

    def deanonymize(
        self,
        text: str,
        store: Optional[MappingStore] = None,
        context: Optional[Mapping[str, str]] = None,
    ) -> str:
        return self.reidentify(text, store=store, context=context).text
