import os
from collections.abc import AsyncGenerator
from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from docchat.config.settings import Settings, get_settings
from docchat.infra.database import Base, Database, get_database, get_session
from docchat.main import create_app

# Import models to ensure they're registered
from docchat.v1.documents import models as document_models  # noqa: F401
from docchat.v1.events.models import Event
from docchat.v1.infra.jobs import models as job_models  # noqa: F401
from docchat.v1.webhooks.models import WebhookSubscription


def _database_url(tmp_path) -> str:
    database_url = os.getenv("DATABASE_URL")
    if database_url and "postgresql" in database_url:
        return database_url
    return f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}"


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings pointed at the test database, with no waiting anywhere."""
    return Settings(
        database_url=_database_url(tmp_path),
        job_poll_interval_ms=0,
        job_error_backoff_s=0,
        job_retry_delay_s=0,
        job_max_attempts=3,
        webhook_max_attempts=5,
    )


@pytest.fixture
def is_postgres(settings) -> bool:
    return settings.database_url.startswith("postgresql")


@pytest.fixture
async def database(settings) -> AsyncGenerator[Database, None]:
    """Fresh schema per test."""
    database = Database(settings)
    async with database.engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield database

    async with database.engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await database.close()


@pytest.fixture
async def db_session(database) -> AsyncGenerator[AsyncSession, None]:
    """Session for test setup; commit before handing work to a service."""
    async with database.SessionLocal() as session:
        yield session


@pytest.fixture
def app(settings, database):
    """Create a test FastAPI application bound to the test database."""
    app = create_app()

    async def get_test_session():
        async with database.SessionLocal() as session:
            yield session

    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_database] = lambda: database
    app.dependency_overrides[get_session] = get_test_session

    yield app

    app.dependency_overrides.clear()


@pytest.fixture
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


class WebhookReceiver:
    """
    Fake subscriber endpoint for httpx.MockTransport.

    Records every request and answers with the queued status codes, then
    with default_status once the queue is empty.
    """

    def __init__(self, default_status: int = 200):
        self.default_status = default_status
        self.statuses: list[int] = []
        self.error: Exception | None = None
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        status = self.statuses.pop(0) if self.statuses else self.default_status
        return httpx.Response(status, json={"received": True})

    def client_factory(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self), timeout=5.0)


@pytest.fixture
def receiver() -> WebhookReceiver:
    return WebhookReceiver()


@pytest.fixture
def make_event(db_session: AsyncSession):
    """Insert an event row directly, without a dispatch job."""

    async def _make(
        event_type: str = "document_processed",
        payload: dict[str, Any] | None = None,
        user_id: UUID | None = None,
    ) -> Event:
        event = Event(
            id=uuid4(),
            type=event_type,
            payload=payload if payload is not None else {"document_id": str(uuid4())},
            user_id=user_id,
            created_at=datetime.now(UTC),
        )
        db_session.add(event)
        await db_session.commit()
        return event

    return _make


@pytest.fixture
def make_subscription(db_session: AsyncSession):
    async def _make(
        url: str = "https://hooks.example.com/docchat",
        secret: str = "s3cret",
        is_active: bool = True,
    ) -> WebhookSubscription:
        subscription = WebhookSubscription(
            id=uuid4(),
            url=url,
            secret=secret,
            is_active=is_active,
            created_at=datetime.now(UTC),
        )
        db_session.add(subscription)
        await db_session.commit()
        return subscription

    return _make
