"""
Privacy Vault configuration
Reads settings from the environment (optionally from cedula.env or .env)
"""

import logging
import os
from pathlib import Path
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, model_validator

from services.errors import ConfigurationError

logger = logging.getLogger(__name__)


def load_environment(base_dir: Optional[Path] = None) -> Optional[Path]:
    """Load cedula.env if present, else .env. Existing variables win."""
    base_dir = base_dir or Path.cwd()
    for name in ("cedula.env", ".env"):
        path = base_dir / name
        if path.exists():
            load_dotenv(path, override=False)
            return path
    return None


class Settings(BaseModel):
    store_mode: Literal["durable", "ephemeral"] = "durable"
    database_url: str = "sqlite:///pii_vault.db"
    store_timeout_seconds: float = Field(default=5.0, gt=0)
    session_expiration_hours: float = Field(default=24, gt=0)
    catalog_path: Optional[str] = None
    national_id_min_digits: int = Field(default=7, ge=1)
    national_id_max_digits: int = Field(default=9, ge=1)
    token_suffix_length: int = Field(default=4, ge=1, le=32)
    token_max_attempts: int = Field(default=5, ge=1)
    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.5-flash"
    log_level: str = "INFO"

    @model_validator(mode="after")
    def digit_bounds_must_be_ordered(self) -> "Settings":
        if self.national_id_min_digits > self.national_id_max_digits:
            raise ValueError("PII_NATIONAL_ID_MIN_DIGITS must not exceed PII_NATIONAL_ID_MAX_DIGITS")
        return self

    @classmethod
    def from_env(cls) -> "Settings":
        env = {
            "store_mode": os.getenv("PII_STORE_MODE"),
            "database_url": os.getenv("PII_DATABASE_URL"),
            "store_timeout_seconds": os.getenv("PII_STORE_TIMEOUT_SECONDS"),
            "session_expiration_hours": os.getenv("PII_SESSION_EXPIRATION_HOURS"),
            "catalog_path": os.getenv("PII_CATALOG_PATH"),
            "national_id_min_digits": os.getenv("PII_NATIONAL_ID_MIN_DIGITS"),
            "national_id_max_digits": os.getenv("PII_NATIONAL_ID_MAX_DIGITS"),
            "token_suffix_length": os.getenv("PII_TOKEN_SUFFIX_LENGTH"),
            "token_max_attempts": os.getenv("PII_TOKEN_MAX_ATTEMPTS"),
            "gemini_api_key": os.getenv("GEMINI_API_KEY"),
            "gemini_model": os.getenv("GEMINI_MODEL"),
            "log_level": os.getenv("LOG_LEVEL"),
        }
        try:
            return cls(**{key: value for key, value in env.items() if value not in (None, "")})
        except ValidationError as e:
            raise ConfigurationError(f"Invalid environment configuration: {e}") from e
