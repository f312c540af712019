"""Tests for settings loading."""
from __future__ import annotations

import pytest

from hookline.core.config import Settings


@pytest.mark.parametrize(
    "url",
    [
        "postgresql://u:p@db:5432/hookline",
        "postgres://u:p@db:5432/hookline",
        "postgresql+psycopg://u:p@db:5432/hookline",
        "postgresql+psycopg2://u:p@db:5432/hookline",
    ],
)
def test_postgres_urls_use_psycopg2(monkeypatch, url):
    monkeypatch.setenv("DATABASE_URL", url)

    assert Settings().database_url == "postgresql+psycopg2://u:p@db:5432/hookline"


def test_default_url_uses_psycopg2():
    assert Settings.model_fields["database_url"].default.startswith("postgresql+psycopg2://")


def test_sqlite_url_untouched(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "sqlite://")

    assert Settings().database_url == "sqlite://"
