"""Tests for anonymize / deanonymize through the PII service."""

import pytest
from pydantic import ValidationError

from services.catalog import CatalogConfig, CategoryConfig, PatternCatalog, PatternConfig
from services.errors import ConfigurationError, StoreUnavailableError
from services.mapping_store import InMemoryMappingStore
from services.pii_service import AnonymizationConfig, PIIService
from services.tokens import TOKEN_PATTERN, TokenFactory

ROUND_TRIP_TEXTS = [
    "Contact Juan Perez at juan@x.com, id 1234567",
    "Hola Maria, tu cédula 87654321 quedó registrada. Escríbeme a maria.lopez@correo.co",
    "Call (555) 123-4567 or +57 300-123-4567 and ask for Ana Gomez",
    "nothing sensitive in here",
    "Maria met Maria at maria@x.com and maria@x.com",
]


def test_end_to_end_example(service):
    text = "Contact Juan Perez at juan@x.com, id 1234567"
    result = service.anonymize(text)

    categories = {category for _, category in result.tokens_used}
    assert {"EMA", "NAM"} <= categories
    assert len({token for token, _ in result.tokens_used}) >= 2
    assert "Juan" not in result.anonymized_text
    assert "juan@x.com" not in result.anonymized_text
    assert "1234567" not in result.anonymized_text
    assert result.anonymized_text.startswith("Contact [NAM1-")
    assert service.deanonymize(result.anonymized_text) == text


@pytest.mark.parametrize("text", ROUND_TRIP_TEXTS)
def test_round_trip(service, text):
    assert service.deanonymize(service.anonymize(text).anonymized_text) == text


def test_no_email_survives(service, catalog):
    text = "Send it to first.last+tag@example.org or ops@example.co.uk, thanks"
    anonymized = service.anonymize(text).anonymized_text
    assert catalog.get("EMA").find(anonymized) == []


def test_duplicate_values_share_one_token(service):
    result = service.anonymize("Maria met Maria")
    assert len(result.tokens_used) == 1
    token, category = result.tokens_used[0]
    assert category == "NAM"
    assert result.anonymized_text == f"{token} met {token}"


def test_cross_call_stability(service):
    first = service.anonymize("write to juan@x.com")
    second = service.anonymize("juan@x.com replied")
    assert first.tokens_used == second.tokens_used


def test_exclusion_set(service):
    result = service.anonymize("Hola Maria")
    assert [category for _, category in result.tokens_used] == ["NAM"]
    token = result.tokens_used[0][0]
    assert result.anonymized_text == f"Hola {token}"


def test_per_call_config(service):
    config = AnonymizationConfig(categories=["EMA"], name_exclusions=["juan"])
    result = service.anonymize("Contact Juan Perez at juan@x.com", config)
    assert [category for _, category in result.tokens_used] == ["EMA"]
    assert "Juan Perez" in result.anonymized_text


def test_unknown_category_is_rejected(service):
    with pytest.raises(ConfigurationError):
        service.anonymize("juan@x.com", AnonymizationConfig(categories=["XYZ"]))
    with pytest.raises(ValidationError):
        AnonymizationConfig(categories=["email"])


def test_no_pii_is_not_an_error(service):
    result = service.anonymize("nothing sensitive in here")
    assert result.anonymized_text == "nothing sensitive in here"
    assert result.tokens_used == []


def test_anonymized_text_is_stable_when_anonymized_again(service):
    first = service.anonymize("Contact Juan Perez at juan@x.com, id 1234567")
    second = service.anonymize(first.anonymized_text)
    assert second.anonymized_text == first.anonymized_text
    assert second.tokens_used == []


def test_store_unavailable_aborts_anonymize(catalog, failing_store):
    service = PIIService(catalog, failing_store(healthy_calls=1))
    with pytest.raises(StoreUnavailableError):
        service.anonymize("Contact Juan Perez at juan@x.com")


def test_store_unavailable_aborts_deanonymize(catalog, failing_store):
    service = PIIService(catalog, failing_store())
    with pytest.raises(StoreUnavailableError):
        service.deanonymize("Hi [NAM1-abcd]")


def test_unresolved_tokens_are_reported(service):
    result = service.reidentify("Hi [NAM9-zzzz]")
    assert result.text == "Hi [NAM9-zzzz]"
    assert result.unresolved == ["[NAM9-zzzz]"]


def test_ephemeral_store_and_context(service):
    text = "Contact Juan Perez at juan@x.com"
    ephemeral = InMemoryMappingStore(service.store.token_factory)
    result = service.anonymize(text, store=ephemeral)

    assert set(result.context) == {token for token, _ in result.tokens_used}
    assert service.deanonymize(result.anonymized_text, context=result.context) == text
    assert service.deanonymize(result.anonymized_text, store=ephemeral) == text
    # The durable store never saw these tokens
    assert service.reidentify(result.anonymized_text).unresolved


def test_detect_pii_does_not_allocate(service):
    candidates = service.detect_pii("Contact Juan Perez at juan@x.com")
    assert [c.code for c in candidates] == ["NAM", "EMA"]
    assert service.store.get_token("juan@x.com", "EMA") is None


def test_tokens_have_wire_format(service):
    result = service.anonymize("Contact Juan Perez at juan@x.com, id 1234567")
    for token, category in result.tokens_used:
        match = TOKEN_PATTERN.fullmatch(token)
        assert match is not None
        assert match.group(1) == category


def test_shorter_value_never_cuts_into_an_email(service, catalog):
    text = "Ana Maria wrote. Ana Maria.Lopez@x.com"
    result = service.anonymize(text)
    email_token = next(token for token, category in result.tokens_used if category == "EMA")

    assert email_token in result.anonymized_text
    assert catalog.get("EMA").find(result.anonymized_text) == []
    assert "Lopez" not in result.anonymized_text
    assert service.deanonymize(result.anonymized_text) == text


def test_token_shaped_input_is_anonymized(service):
    text = "my cedula is [ABC1-87654321] and phone [XYZ2-3001234567]"
    result = service.anonymize(text)

    assert "87654321" not in result.anonymized_text
    assert "3001234567" not in result.anonymized_text
    assert {category for _, category in result.tokens_used} == {"CED", "PHO"}
    assert service.deanonymize(result.anonymized_text) == text


def test_value_under_two_categories_is_allocated_once():
    config = CatalogConfig(categories=[
        CategoryConfig(code="REF", name="reference", priority=10,
                       patterns=[PatternConfig(name="reference", regex=r"(?<=ref )[A-Z]{2}-\d{4}\b")]),
        CategoryConfig(code="CAS", name="case", priority=20,
                       patterns=[PatternConfig(name="case", regex=r"\b[A-Z]{2}-\d{4}\b")]),
    ])
    catalog = PatternCatalog.from_config(config)
    service = PIIService(catalog, InMemoryMappingStore(TokenFactory(matches_pii=catalog.matches_any)))
    assert [c.code for c in service.detect_pii("ref AX-1234 and AX-1234")] == ["REF", "CAS"]

    result = service.anonymize("ref AX-1234 and AX-1234")
    assert len(result.tokens_used) == 1
    token, category = result.tokens_used[0]
    assert category == "REF"
    assert result.anonymized_text == f"ref {token} and {token}"
    assert list(result.context) == [token]
    assert service.store.get_token("AX-1234", "CAS") is None
