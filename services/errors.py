"""
Exception hierarchy for the privacy vault.

Detection never raises: no matches simply means nothing to tokenize.
Store failures always propagate so callers never see half-anonymized text.
"""


class PrivacyVaultError(Exception):
    """Base class for all privacy vault errors"""


class ConfigurationError(PrivacyVaultError, ValueError):
    """Catalog or per-call configuration is malformed"""


class StoreUnavailableError(PrivacyVaultError):
    """Mapping store is unreachable or timed out"""


class TokenCollisionError(PrivacyVaultError):
    """Could not generate a safe, unique token within the retry limit"""

    def __init__(self, category: str, attempts: int):
        super().__init__(
            f"Could not allocate a unique token for category {category} after {attempts} attempts"
        )
        self.category = category
        self.attempts = attempts


class LLMServiceError(PrivacyVaultError):
    """Text-generation collaborator failed"""
