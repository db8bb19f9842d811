"""
Privacy Vault Gateway
A FastAPI service that swaps PII for reversible tokens before text reaches an LLM
and restores it in the response.
"""

import asyncio
import functools
import logging
import uuid
from typing import List, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from config import Settings, load_environment
from services.catalog import PatternCatalog
from services.errors import (
    ConfigurationError, LLMServiceError, PrivacyVaultError, StoreUnavailableError, TokenCollisionError,
)
from services.llm_service import LLMService
from services.mapping_store import InMemoryMappingStore, MappingStore
from services.pii_service import AnonymizationConfig, PIIService
from services.session_store import SessionStore
from services.sql_store import SQLMappingStore
from services.tokens import TokenFactory

load_environment()
settings = Settings.from_env()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def build_pii_service(settings: Settings) -> PIIService:
    """Wire catalog, token factory and the configured mapping store"""
    if settings.catalog_path:
        catalog = PatternCatalog.from_file(settings.catalog_path)
    else:
        catalog = PatternCatalog.default(settings.national_id_min_digits, settings.national_id_max_digits)

    token_factory = TokenFactory(
        matches_pii=catalog.matches_any,
        suffix_length=settings.token_suffix_length,
        max_attempts=settings.token_max_attempts,
    )
    if settings.store_mode == "durable":
        store: MappingStore = SQLMappingStore.from_url(
            settings.database_url,
            token_factory=token_factory,
            timeout_seconds=settings.store_timeout_seconds,
        )
        logger.info("Using durable mapping store")
    else:
        store = InMemoryMappingStore(token_factory)
        logger.info("Using ephemeral per-session mapping stores")
    return PIIService(catalog, store)


app = FastAPI(
    title="Privacy Vault Gateway",
    description="Gateway that tokenizes PII before LLM processing and restores it in responses",
    version="1.0.0"
)

# Initialize services
pii_service = build_pii_service(settings)
llm_service = LLMService(api_key=settings.gemini_api_key, model_name=settings.gemini_model)
session_store = SessionStore(
    expiration_hours=settings.session_expiration_hours,
    store_factory=lambda: InMemoryMappingStore(pii_service.store.token_factory),
)


class AnonymizeRequest(BaseModel):
    text: str
    config: Optional[AnonymizationConfig] = None
    session_id: Optional[str] = None


class TokenUsed(BaseModel):
    token: str
    category: str


class AnonymizeResponse(BaseModel):
    anonymized_text: str
    tokens_used: List[TokenUsed]
    session_id: str


class DeanonymizeRequest(BaseModel):
    text: str
    session_id: Optional[str] = None


class DeanonymizeResponse(BaseModel):
    text: str
    unresolved_tokens: List[str]


class PromptRequest(BaseModel):
    prompt: str
    session_id: Optional[str] = None
    model: Optional[str] = None
    config: Optional[AnonymizationConfig] = None


class PromptResponse(BaseModel):
    original_prompt: str
    anonymized_prompt: str
    llm_response: str
    reidentified_response: str
    tokens_used: List[TokenUsed]
    unresolved_tokens: List[str]
    session_id: str


class DetectPIIRequest(BaseModel):
    text: str
    config: Optional[AnonymizationConfig] = None


def _http_error(error: PrivacyVaultError) -> HTTPException:
    if isinstance(error, ConfigurationError):
        return HTTPException(status_code=400, detail=str(error))
    if isinstance(error, StoreUnavailableError):
        return HTTPException(status_code=503, detail="Mapping store unavailable")
    if isinstance(error, TokenCollisionError):
        return HTTPException(status_code=500, detail="Could not allocate a token")
    if isinstance(error, LLMServiceError):
        return HTTPException(status_code=502, detail="Text generation failed")
    return HTTPException(status_code=500, detail="Internal error")


def _store_for(session_id: Optional[str], create: bool = True) -> Optional[MappingStore]:
    """Durable mode shares one store; ephemeral mode scopes mappings to the session"""
    if settings.store_mode == "durable":
        return pii_service.store
    if session_id is None:
        return None
    if create:
        return session_store.get_or_create(session_id)
    return session_store.get(session_id)


async def _call_store(func, *args, **kwargs):
    """Run a store-backed operation off the event loop, bounded by the store timeout"""
    loop = asyncio.get_running_loop()
    try:
        return await asyncio.wait_for(
            loop.run_in_executor(None, functools.partial(func, *args, **kwargs)),
            timeout=settings.store_timeout_seconds,
        )
    except asyncio.TimeoutError as e:
        logger.error("Mapping store call timed out after %ss", settings.store_timeout_seconds)
        raise StoreUnavailableError("Mapping store timed out") from e


async def _reidentify(text: str, session_id: Optional[str]):
    store = _store_for(session_id, create=False)
    if store is None:
        # Unknown or expired session: nothing can be resolved
        return await _call_store(pii_service.reidentify, text, context={})
    return await _call_store(pii_service.reidentify, text, store=store)


@app.get("/")
async def root():
    return {
        "message": "Privacy Vault Gateway",
        "status": "operational",
        "version": "1.0.0"
    }


@app.get("/health")
async def health():
    try:
        store_ok = await _call_store(pii_service.store.ping)
    except StoreUnavailableError:
        store_ok = False
    return {
        "status": "healthy" if store_ok else "degraded",
        "store_mode": settings.store_mode,
        "store": "connected" if store_ok else "disconnected",
    }


@app.post("/detect-pii")
async def detect_pii(request: DetectPIIRequest):
    """
    Diagnostic endpoint to detect PII in text without tokenizing it.
    """
    try:
        candidates = pii_service.detect_pii(request.text, request.config)
    except PrivacyVaultError as e:
        raise _http_error(e) from e
    return {
        "text": request.text,
        "entities_detected": len(candidates),
        "entities": [c.to_dict() for c in candidates]
    }


@app.post("/anonymize", response_model=AnonymizeResponse)
async def anonymize(request: AnonymizeRequest):
    session_id = request.session_id or str(uuid.uuid4())
    try:
        result = await _call_store(
            pii_service.anonymize, request.text, request.config, store=_store_for(session_id)
        )
    except PrivacyVaultError as e:
        raise _http_error(e) from e
    return AnonymizeResponse(
        anonymized_text=result.anonymized_text,
        tokens_used=[TokenUsed(token=t, category=c) for t, c in result.tokens_used],
        session_id=session_id,
    )


@app.post("/deanonymize", response_model=DeanonymizeResponse)
async def deanonymize(request: DeanonymizeRequest):
    try:
        result = await _reidentify(request.text, request.session_id)
    except PrivacyVaultError as e:
        raise _http_error(e) from e
    return DeanonymizeResponse(text=result.text, unresolved_tokens=result.unresolved)


@app.post("/chat", response_model=PromptResponse)
async def chat(request: PromptRequest):
    """
    Process a chat request by:
    1. Replacing PII in the prompt with tokens
    2. Sending the anonymized prompt to the LLM
    3. Restoring PII in the LLM response
    4. Returning the final response
    """
    session_id = request.session_id or str(uuid.uuid4())
    try:
        anonymized = await _call_store(
            pii_service.anonymize, request.prompt, request.config, store=_store_for(session_id)
        )
        llm_response = await llm_service.get_completion(anonymized.anonymized_text, model=request.model)
        reidentified = await _reidentify(llm_response, session_id)
    except PrivacyVaultError as e:
        raise _http_error(e) from e

    return PromptResponse(
        original_prompt=request.prompt,
        anonymized_prompt=anonymized.anonymized_text,
        llm_response=llm_response,
        reidentified_response=reidentified.text,
        tokens_used=[TokenUsed(token=t, category=c) for t, c in anonymized.tokens_used],
        unresolved_tokens=reidentified.unresolved,
        session_id=session_id,
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
