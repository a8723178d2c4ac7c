"""
Pytest configuration and fixtures for Docsyphon tests.

Provides an in-memory database, message factories and fake LLM / vector
search capabilities so pipeline stages can run without network access.
"""

from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Generator, Optional, Union

import pytest
from pydantic import BaseModel
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from docsyphon.models.db import Base, Message
from docsyphon.models.pipeline import SearchHit

BASE_TIME = datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc)


@pytest.fixture(scope="session")
def test_engine():
    """Create a test database engine using SQLite in-memory."""
    engine = create_engine(
        "sqlite:///:memory:",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite defers BEGIN on its own, which breaks SAVEPOINT handling.
    # Let SQLAlchemy emit BEGIN itself.
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(test_engine) -> Generator[Session, None, None]:
    """
    Create a new database session for a test.

    Each test gets a fresh session inside a transaction that is rolled back
    after the test completes. Commits made by the code under test only
    release a savepoint, so they never leak between tests.
    """
    connection = test_engine.connect()
    transaction = connection.begin()
    session = sessionmaker(bind=connection, join_transaction_mode="create_savepoint")()

    yield session

    session.close()
    transaction.rollback()
    connection.close()


@pytest.fixture
def make_message(db_session: Session) -> Callable[..., Message]:
    """Factory creating PENDING messages; timestamps default to BASE_TIME + minutes."""

    def _make(
        content: str = "How do I configure the sync interval?",
        minutes: float = 0,
        stream_id: str = "telegram-main",
        author: str = "alice",
        channel: Optional[str] = "support",
        external_id: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
        timestamp: Optional[datetime] = None,
        status: str = "PENDING",
    ) -> Message:
        message = Message(
            stream_id=stream_id,
            external_id=external_id,
            timestamp=timestamp or BASE_TIME + timedelta(minutes=minutes),
            author=author,
            content=content,
            channel=channel,
            message_metadata=metadata,
            processing_status=status,
        )
        db_session.add(message)
        db_session.flush()
        return message

    return _make


Response = Union[BaseModel, dict, Exception, Callable[..., Any]]


class FakeLLM:
    """Scripted stand-in for the structured LLM capability.

    Each queued response is returned once, in order. Dicts are validated
    into the requested model, exceptions are raised, callables are invoked
    with the request kwargs.
    """

    def __init__(self, responses: Optional[list[Response]] = None, model_name: str = "fake-model"):
        self.responses: deque = deque(responses or [])
        self.calls: list[dict[str, Any]] = []
        self._model_name = model_name

    @property
    def model_name(self) -> str:
        return self._model_name

    def queue(self, *responses: Response) -> None:
        self.responses.extend(responses)

    def request_structured(
        self,
        system_prompt: str,
        user_prompt: str,
        response_model,
        max_tokens: int,
        purpose: str = "structured",
    ):
        call = {
            "system_prompt": system_prompt,
            "user_prompt": user_prompt,
            "response_model": response_model,
            "max_tokens": max_tokens,
            "purpose": purpose,
        }
        self.calls.append(call)
        if not self.responses:
            raise AssertionError(f"Unexpected {purpose} request")
        response = self.responses.popleft()
        if isinstance(response, Exception):
            raise response
        if callable(response) and not isinstance(response, BaseModel):
            response = response(**call)
        if isinstance(response, dict):
            return response_model.model_validate(response)
        return response


class FakeVectorSearch:
    """Returns fixed hits for every query and records the queries."""

    def __init__(self, hits: Optional[list[SearchHit]] = None, error: Optional[Exception] = None):
        self.hits = hits or []
        self.error = error
        self.queries: list[tuple[str, int]] = []

    def search_similar(self, query: str, top_k: int) -> list[SearchHit]:
        self.queries.append((query, top_k))
        if self.error is not None:
            raise self.error
        return list(self.hits[:top_k])


def make_hit(
    file_path: str = "docs/guides/sync.md",
    similarity: float = 0.7,
    content: str = "Sync runs every five minutes by default.",
    doc_id: Optional[str] = None,
    title: str = "Sync",
) -> SearchHit:
    return SearchHit(
        id=doc_id or file_path,
        file_path=file_path,
        title=title,
        content=content,
        similarity=similarity,
    )


@pytest.fixture
def fake_llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def fake_search() -> FakeVectorSearch:
    return FakeVectorSearch([make_hit()])
