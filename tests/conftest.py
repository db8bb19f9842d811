"""Shared fixtures. Environment is pinned before main is imported by any test."""

import os
import time

os.environ["PII_STORE_MODE"] = "durable"
os.environ["PII_DATABASE_URL"] = "sqlite://"
os.environ["GEMINI_API_KEY"] = ""
os.environ.pop("PII_CATALOG_PATH", None)

import pytest

from services.catalog import PatternCatalog
from services.errors import StoreUnavailableError
from services.mapping_store import InMemoryMappingStore, MappingStore
from services.pii_service import PIIService
from services.sql_store import SQLMappingStore
from services.tokens import TokenFactory


class FailingStore(MappingStore):
    """Store that is reachable for `healthy_calls` allocations, then fails"""

    def __init__(self, healthy_calls: int = 0):
        super().__init__(TokenFactory())
        self.delegate = InMemoryMappingStore()
        self.healthy_calls = healthy_calls

    def _check(self):
        if self.healthy_calls <= 0:
            raise StoreUnavailableError("Mapping store is unavailable")
        self.healthy_calls -= 1

    def get_token(self, value, category):
        self._check()
        return self.delegate.get_token(value, category)

    def get_by_token(self, token):
        raise StoreUnavailableError("Mapping store is unavailable")

    def _insert(self, record):
        return self.delegate._insert(record)

    def _next_sequence(self, category):
        return self.delegate._next_sequence(category)

    def ping(self):
        return False


class SlowStore(InMemoryMappingStore):
    def __init__(self, delay: float):
        super().__init__()
        self.delay = delay

    def get_token(self, value, category):
        time.sleep(self.delay)
        return super().get_token(value, category)

    def ping(self):
        time.sleep(self.delay)
        return True


@pytest.fixture
def catalog():
    return PatternCatalog.default()


@pytest.fixture
def token_factory(catalog):
    return TokenFactory(matches_pii=catalog.matches_any)


@pytest.fixture
def memory_store(token_factory):
    return InMemoryMappingStore(token_factory)


@pytest.fixture
def sql_store(token_factory):
    return SQLMappingStore.from_url("sqlite://", token_factory=token_factory)


@pytest.fixture
def service(catalog, sql_store):
    return PIIService(catalog, sql_store)


@pytest.fixture
def failing_store():
    return FailingStore


@pytest.fixture
def slow_store():
    return SlowStore
