"""
PII Pattern Catalog
Ordered PII categories, each backed by a Presidio PatternRecognizer
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Literal, Optional, Sequence, Tuple

from presidio_analyzer import Pattern, PatternRecognizer
from pydantic import BaseModel, Field, ValidationError, field_validator

from services.errors import ConfigurationError
from services.tokens import CATEGORY_CODE_PATTERN

logger = logging.getLogger(__name__)

# Case-sensitive matching: the name heuristic depends on capitalization
REGEX_FLAGS = re.MULTILINE

NAME_WORD = r"[A-ZÁÉÍÓÚÜÑ][a-záéíóúüñ]+"

# Common capitalized words that are not names (sentence starts, greetings, calendar)
DEFAULT_NAME_EXCLUSIONS = frozenset({
    # English
    "a", "an", "and", "are", "as", "at", "be", "but", "by", "can", "contact", "could",
    "dear", "do", "for", "from", "good", "hello", "hey", "hi", "how", "i", "if", "in",
    "is", "it", "my", "no", "not", "of", "ok", "on", "or", "our", "please", "regards",
    "so", "thank", "thanks", "that", "the", "their", "there", "these", "this", "to",
    "we", "what", "when", "where", "which", "who", "why", "will", "with", "yes", "you",
    "your", "call", "email", "phone", "send", "id",
    "monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday",
    "january", "february", "march", "april", "may", "june", "july", "august",
    "september", "october", "november", "december",
    # Spanish
    "hola", "buenos", "buenas", "dias", "días", "tardes", "noches", "gracias", "el",
    "la", "los", "las", "un", "una", "mi", "tu", "su", "yo", "es", "soy", "con", "de",
    "del", "en", "por", "para", "que", "como", "cómo", "cuando", "donde", "nombre",
    "señor", "señora", "estimado", "estimada", "correo", "teléfono", "cédula", "contacto",
    "lunes", "martes", "miércoles", "jueves", "viernes", "sábado", "domingo",
    "enero", "febrero", "marzo", "abril", "mayo", "junio", "julio", "agosto",
    "septiembre", "octubre", "noviembre", "diciembre",
})


@dataclass(frozen=True)
class PiiCategory:
    """A PII category: code, priority and the recognizer that detects it"""

    code: str
    name: str
    priority: int
    kind: str
    recognizer: PatternRecognizer

    def find(self, text: str) -> List[Tuple[int, int]]:
        """Return (start, end) spans matched by this category's rule"""
        results = self.recognizer.analyze(text=text, entities=[self.code])
        return sorted((r.start, r.end) for r in results)


class PatternConfig(BaseModel):
    name: str
    regex: str
    score: float = Field(default=0.85, gt=0.0, le=1.0)

    @field_validator("regex")
    @classmethod
    def regex_must_compile(cls, value: str) -> str:
        try:
            re.compile(value, REGEX_FLAGS)
        except re.error as e:
            raise ValueError(f"invalid regex: {e}") from e
        return value


class CategoryConfig(BaseModel):
    code: str
    name: str
    priority: int
    kind: Literal["pattern", "name"] = "pattern"
    patterns: List[PatternConfig] = Field(min_length=1)

    @field_validator("code")
    @classmethod
    def code_must_be_three_letters(cls, value: str) -> str:
        if not CATEGORY_CODE_PATTERN.match(value):
            raise ValueError("category code must be 3 uppercase letters")
        return value


class CatalogConfig(BaseModel):
    categories: List[CategoryConfig] = Field(min_length=1)
    name_exclusions: Optional[List[str]] = None

    @field_validator("categories")
    @classmethod
    def codes_must_be_unique(cls, value: List[CategoryConfig]) -> List[CategoryConfig]:
        codes = [c.code for c in value]
        duplicates = sorted({c for c in codes if codes.count(c) > 1})
        if duplicates:
            raise ValueError(f"duplicate category codes: {', '.join(duplicates)}")
        return value


def default_catalog_config(national_id_min_digits: int = 7, national_id_max_digits: int = 9) -> CatalogConfig:
    """Built-in catalog: email, phone, national ID, name (in that priority)"""
    if not 1 <= national_id_min_digits <= national_id_max_digits:
        raise ConfigurationError(
            f"Invalid national ID digit bounds: {national_id_min_digits}..{national_id_max_digits}"
        )
    return CatalogConfig(categories=[
        CategoryConfig(
            code="EMA", name="email", priority=10,
            patterns=[PatternConfig(
                name="email",
                regex=r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b",
                score=0.9,
            )],
        ),
        CategoryConfig(
            code="PHO", name="phone", priority=20,
            patterns=[PatternConfig(
                name="phone",
                regex=r"(?<![\w+])(?:\+?\d{1,3}[-.\s]?)?\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}\b",
                score=0.7,
            )],
        ),
        CategoryConfig(
            code="CED", name="national_id", priority=30,
            patterns=[PatternConfig(
                name="national_id_digits",
                regex=rf"\b\d{{{national_id_min_digits},{national_id_max_digits}}}\b",
                score=0.6,
            )],
        ),
        CategoryConfig(
            code="NAM", name="person", priority=40, kind="name",
            patterns=[PatternConfig(
                name="capitalized_words",
                regex=rf"\b{NAME_WORD}(?:[ \t]+{NAME_WORD})*\b",
                score=0.5,
            )],
        ),
    ])


class PatternCatalog:
    """
    Immutable, priority-ordered set of PII categories plus the name
    exclusion set. Built once at startup and passed into the detector.
    """

    def __init__(self, categories: Iterable[PiiCategory], name_exclusions: Iterable[str] = DEFAULT_NAME_EXCLUSIONS):
        self._categories: Tuple[PiiCategory, ...] = tuple(
            sorted(categories, key=lambda c: c.priority)
        )
        if not self._categories:
            raise ConfigurationError("Catalog must define at least one category")
        self._by_code: Dict[str, PiiCategory] = {c.code: c for c in self._categories}
        self.name_exclusions: FrozenSet[str] = frozenset(w.casefold() for w in name_exclusions)

    @classmethod
    def from_config(cls, config: CatalogConfig) -> "PatternCatalog":
        categories = []
        for category in config.categories:
            recognizer = PatternRecognizer(
                supported_entity=category.code,
                name=f"{category.name}_recognizer",
                patterns=[Pattern(name=p.name, regex=p.regex, score=p.score) for p in category.patterns],
                global_regex_flags=REGEX_FLAGS,
            )
            categories.append(PiiCategory(
                code=category.code,
                name=category.name,
                priority=category.priority,
                kind=category.kind,
                recognizer=recognizer,
            ))
        exclusions = DEFAULT_NAME_EXCLUSIONS if config.name_exclusions is None else config.name_exclusions
        return cls(categories, exclusions)

    @classmethod
    def default(cls, national_id_min_digits: int = 7, national_id_max_digits: int = 9) -> "PatternCatalog":
        return cls.from_config(default_catalog_config(national_id_min_digits, national_id_max_digits))

    @classmethod
    def from_file(cls, path: str) -> "PatternCatalog":
        """Load a catalog from a JSON file; any problem is a ConfigurationError"""
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Cannot read PII catalog {path}: {e}") from e
        try:
            config = CatalogConfig.model_validate(raw)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid PII catalog {path}: {e}") from e
        logger.info("Loaded PII catalog from %s with %d categories", path, len(config.categories))
        return cls.from_config(config)

    @property
    def categories(self) -> Tuple[PiiCategory, ...]:
        return self._categories

    @property
    def codes(self) -> List[str]:
        return [c.code for c in self._categories]

    def get(self, code: str) -> PiiCategory:
        try:
            return self._by_code[code]
        except KeyError:
            raise ConfigurationError(f"Unknown PII category: {code}") from None

    def select(self, codes: Optional[Sequence[str]] = None) -> List[PiiCategory]:
        """Categories enabled for a call, in priority order"""
        if codes is None:
            return list(self._categories)
        unknown = [code for code in codes if code not in self._by_code]
        if unknown:
            raise ConfigurationError(f"Unknown PII categories: {', '.join(unknown)}")
        wanted = set(codes)
        return [c for c in self._categories if c.code in wanted]

    def matches_any(self, text: str) -> bool:
        return any(category.find(text) for category in self._categories)
