"""
Durable mapping store backed by SQLAlchemy.
Tokens survive across calls and are resolved by token alone.
"""

import logging
from contextlib import contextmanager
from typing import Optional

from sqlalchemy import (
    Column, DateTime, Integer, MetaData, String, Table, UniqueConstraint,
    create_engine, func, insert, select, text,
)
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.pool import StaticPool

from services.errors import StoreUnavailableError
from services.mapping_store import MappingStore, TokenRecord
from services.tokens import TokenFactory

logger = logging.getLogger(__name__)

metadata = MetaData()

pii_tokens_table = Table(
    'pii_tokens',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('token', String(64), nullable=False),
    Column('original_value', String(512), nullable=False),
    Column('category', String(8), nullable=False, comment='Catalog category code'),
    Column('created_at', DateTime(timezone=True), nullable=False),
    UniqueConstraint('token', name='uq_pii_tokens_token'),
    UniqueConstraint('original_value', 'category', name='uq_pii_tokens_value_category'),
)


def create_store_engine(database_url: str, timeout_seconds: float = 5.0, echo: bool = False) -> Engine:
    """Create the database engine with every blocking point bounded by timeout_seconds"""
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        connect_args = {'check_same_thread': False, 'timeout': timeout_seconds}
        if url.database in (None, "", ":memory:"):
            # One shared connection, otherwise every checkout sees an empty database
            return create_engine(url, echo=echo, connect_args=connect_args, poolclass=StaticPool)
        return create_engine(url, echo=echo, connect_args=connect_args)
    connect_args = {}
    if url.get_backend_name() in ("postgresql", "mysql", "mariadb"):
        # Driver-level bound on reaching an unreachable server, in whole seconds
        connect_args['connect_timeout'] = max(1, int(timeout_seconds))
    return create_engine(
        url,
        echo=echo,
        connect_args=connect_args,
        pool_size=5,
        max_overflow=10,
        pool_recycle=3600,
        pool_pre_ping=True,
        pool_timeout=timeout_seconds,
    )


class SQLMappingStore(MappingStore):
    """
    Token store with uniqueness enforced by the database. Concurrent
    allocations of the same (value, category) converge on whichever row
    was committed first.
    """

    def __init__(self, engine: Engine, token_factory: Optional[TokenFactory] = None):
        super().__init__(token_factory)
        self.engine = engine

    @classmethod
    def from_url(
        cls,
        database_url: str,
        token_factory: Optional[TokenFactory] = None,
        timeout_seconds: float = 5.0,
    ) -> "SQLMappingStore":
        store = cls(create_store_engine(database_url, timeout_seconds), token_factory)
        store.create_tables()
        return store

    def create_tables(self) -> None:
        try:
            metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            logger.error("Failed to create mapping store tables: %s", e.__class__.__name__)
            raise StoreUnavailableError("Mapping store is unavailable") from e

    @contextmanager
    def _connection(self):
        try:
            with self.engine.begin() as conn:
                yield conn
        except IntegrityError:
            raise
        except SQLAlchemyError as e:
            # Values may appear in statement parameters; log the error type only
            logger.error("Mapping store error: %s", e.__class__.__name__)
            raise StoreUnavailableError("Mapping store is unavailable") from e

    def get_token(self, value: str, category: str) -> Optional[str]:
        query = select(pii_tokens_table.c.token).where(
            pii_tokens_table.c.original_value == value,
            pii_tokens_table.c.category == category,
        )
        with self._connection() as conn:
            return conn.execute(query).scalar_one_or_none()

    def get_by_token(self, token: str) -> Optional[str]:
        query = select(pii_tokens_table.c.original_value).where(pii_tokens_table.c.token == token)
        with self._connection() as conn:
            return conn.execute(query).scalar_one_or_none()

    def _insert(self, record: TokenRecord) -> Optional[str]:
        statement = insert(pii_tokens_table).values(
            token=record.token,
            original_value=record.original_value,
            category=record.category,
            created_at=record.created_at,
        )
        try:
            with self._connection() as conn:
                conn.execute(statement)
        except IntegrityError:
            # Either the value was stored concurrently or the token is taken
            logger.debug("Insert conflict for category %s, re-reading", record.category)
            return self.get_token(record.original_value, record.category)
        return record.token

    def _next_sequence(self, category: str) -> int:
        query = select(func.count()).select_from(pii_tokens_table).where(
            pii_tokens_table.c.category == category
        )
        with self._connection() as conn:
            return conn.execute(query).scalar_one() + 1

    def ping(self) -> bool:
        try:
            with self._connection() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except StoreUnavailableError:
            return False
