"""Pytest configuration and shared fixtures."""
from __future__ import annotations

import os
from typing import Callable, Generator

import pytest
from sqlalchemy.orm import Session

from hookline.core.config import Settings
from hookline.core.db import build_engine, build_sessionmaker
from hookline.models.base import Base
from hookline.models.webhook import Webhook
from hookline.schemas.webhook import WebhookCreate
from hookline.services.webhook_registry import WebhookRegistry

# SQLite in memory by default; point at PostgreSQL to match production
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite://")

TEST_SECRET = "whsec_test_secret_0123456789abcdef"


@pytest.fixture
def db_engine():
    """Fresh schema per test so committed state never leaks between tests."""
    engine = build_engine(TEST_DATABASE_URL)
    Base.metadata.create_all(engine)

    yield engine

    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def db_session(db_engine) -> Generator[Session, None, None]:
    """Provide a database session bound to the test engine."""
    session = build_sessionmaker(db_engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def settings() -> Settings:
    return Settings()


@pytest.fixture
def registry(db_session: Session, settings: Settings) -> WebhookRegistry:
    return WebhookRegistry(db_session, settings)


@pytest.fixture
def make_webhook(registry: WebhookRegistry) -> Callable[..., Webhook]:
    """Factory creating webhooks through the registry."""

    def _make(organization_id: str = "org_1", **overrides) -> Webhook:
        data = {
            "name": f"endpoint-{len(registry.list_for_organization(organization_id, include_archived=True))}",
            "url": "https://hooks.example.com/receive",
            "events": ["order.created"],
            "secret": TEST_SECRET,
        }
        data.update(overrides)
        return registry.create(organization_id, WebhookCreate(**data))

    return _make


@pytest.fixture
def enqueued() -> list[str]:
    """Attempt ids handed to the worker pool during a test."""
    return []
