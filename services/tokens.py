"""
Token grammar shared by the mapping stores and the reinsertion service.

Tokens look like ``[EMA1-x3f9]``: a 3-letter category code, a per-category
sequence number, and a random lowercase suffix, wrapped in brackets.
"""

import re
import secrets
import string
from typing import Callable, Optional

# Lowercase only: an uppercase letter followed by lowercase would look like a name
SUFFIX_ALPHABET = string.ascii_lowercase + string.digits

TOKEN_PATTERN = re.compile(r"\[([A-Z]{3})(\d+)-([a-z0-9]+)\]")

CATEGORY_CODE_PATTERN = re.compile(r"^[A-Z]{3}$")


def format_token(category: str, sequence: int, suffix: str) -> str:
    return f"[{category}{sequence}-{suffix}]"


class TokenFactory:
    """Generates candidate tokens and checks them against the PII catalog."""

    def __init__(
        self,
        matches_pii: Optional[Callable[[str], bool]] = None,
        suffix_length: int = 4,
        max_attempts: int = 5,
    ):
        if suffix_length < 1:
            raise ValueError("suffix_length must be positive")
        if max_attempts < 1:
            raise ValueError("max_attempts must be positive")
        self.matches_pii = matches_pii
        self.suffix_length = suffix_length
        self.max_attempts = max_attempts

    def generate(self, category: str, sequence: int) -> str:
        suffix = "".join(secrets.choice(SUFFIX_ALPHABET) for _ in range(self.suffix_length))
        return format_token(category, sequence, suffix)

    def is_unsafe(self, token: str) -> bool:
        """A token is unsafe if any PII rule would match its surface form"""
        if self.matches_pii is None:
            return False
        return self.matches_pii(token)


def is_token(text: str) -> bool:
    return TOKEN_PATTERN.fullmatch(text) is not None
