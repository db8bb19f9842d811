"""
Mapping Store
Resolves (value, category) pairs to stable tokens and tokens back to values
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple

from services.errors import TokenCollisionError
from services.tokens import TokenFactory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenRecord:
    token: str
    original_value: str
    category: str
    created_at: datetime


class MappingStore(ABC):
    """
    Base class for token stores. Subclasses provide lookups and an atomic
    insert; allocation and collision retries live here.
    """

    def __init__(self, token_factory: Optional[TokenFactory] = None):
        self.token_factory = token_factory or TokenFactory()

    def get_or_create(self, value: str, category: str) -> str:
        """Return the token for (value, category), allocating one on first sight"""
        token = self.get_token(value, category)
        if token is not None:
            return token

        attempts = self.token_factory.max_attempts
        for attempt in range(1, attempts + 1):
            candidate = self.token_factory.generate(category, self._next_sequence(category))
            if self.token_factory.is_unsafe(candidate):
                logger.warning("Generated %s token matches a PII rule (attempt %d/%d)", category, attempt, attempts)
                continue
            record = TokenRecord(
                token=candidate,
                original_value=value,
                category=category,
                created_at=datetime.now(timezone.utc),
            )
            stored = self._insert(record)
            if stored is not None:
                return stored
            logger.warning("Token collision for category %s (attempt %d/%d)", category, attempt, attempts)

        raise TokenCollisionError(category, attempts)

    @abstractmethod
    def get_token(self, value: str, category: str) -> Optional[str]:
        """Existing token for (value, category), if any"""

    @abstractmethod
    def get_by_token(self, token: str) -> Optional[str]:
        """Original value for a token, or None when unknown"""

    @abstractmethod
    def _insert(self, record: TokenRecord) -> Optional[str]:
        """
        Atomically persist a record.

        Returns the token now mapped to (value, category): the new token, or
        the one a concurrent caller stored first. Returns None when the token
        itself is already taken.
        """

    @abstractmethod
    def _next_sequence(self, category: str) -> int:
        """Sequence number for the next token of a category"""

    def ping(self) -> bool:
        return True


class InMemoryMappingStore(MappingStore):
    """Thread-safe dict-backed store for ephemeral (per-session) mappings"""

    def __init__(self, token_factory: Optional[TokenFactory] = None):
        super().__init__(token_factory)
        self._by_value: Dict[Tuple[str, str], TokenRecord] = {}
        self._by_token: Dict[str, TokenRecord] = {}
        self._sequences: Dict[str, int] = {}
        self._lock = threading.Lock()

    def get_token(self, value: str, category: str) -> Optional[str]:
        with self._lock:
            record = self._by_value.get((value, category))
            return record.token if record else None

    def get_by_token(self, token: str) -> Optional[str]:
        with self._lock:
            record = self._by_token.get(token)
            return record.original_value if record else None

    def _insert(self, record: TokenRecord) -> Optional[str]:
        with self._lock:
            existing = self._by_value.get((record.original_value, record.category))
            if existing is not None:
                return existing.token
            if record.token in self._by_token:
                return None
            self._by_value[(record.original_value, record.category)] = record
            self._by_token[record.token] = record
            return record.token

    def _next_sequence(self, category: str) -> int:
        with self._lock:
            self._sequences[category] = self._sequences.get(category, 0) + 1
            return self._sequences[category]

    def records(self) -> Dict[str, str]:
        """Copy of the token -> original value mapping"""
        with self._lock:
            return {token: record.original_value for token, record in self._by_token.items()}

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_token)
