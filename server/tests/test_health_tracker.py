"""Tests for endpoint health derivation and counters."""
from __future__ import annotations

from datetime import timedelta

import pytest

from hookline.models.base import utcnow
from hookline.models.webhook_delivery import DeliveryStatus
from hookline.schemas.webhook import HealthStatus
from hookline.services.delivery_store import DeliveryStore
from hookline.services.health_tracker import HealthTracker


@pytest.fixture
def tracker(db_session, settings) -> HealthTracker:
    return HealthTracker(db_session, settings)


def test_never_triggered_webhook_is_healthy(tracker, make_webhook):
    assert tracker.evaluate(make_webhook()) == HealthStatus.HEALTHY


def test_inactive_and_archived_webhooks(tracker, registry, make_webhook):
    inactive = make_webhook(is_active=False)
    archived = make_webhook()
    registry.archive(archived.id)

    assert tracker.evaluate(inactive) == HealthStatus.INACTIVE
    assert tracker.evaluate(archived) == HealthStatus.INACTIVE


def test_failure_then_success_counters(db_session, tracker, make_webhook):
    webhook = make_webhook()
    now = utcnow()

    tracker.record_failure(webhook.id, now)
    tracker.record_failure(webhook.id, now + timedelta(seconds=1))
    db_session.commit()
    assert webhook.failure_count == 2
    assert webhook.last_failure_at == now + timedelta(seconds=1)
    assert tracker.evaluate(webhook, now) == HealthStatus.FAILING

    tracker.record_success(webhook.id, now + timedelta(seconds=2))
    db_session.commit()
    assert webhook.failure_count == 0
    assert webhook.last_success_at == now + timedelta(seconds=2)
    assert webhook.last_triggered_at == now + timedelta(seconds=2)
    assert tracker.evaluate(webhook, now + timedelta(seconds=3)) == HealthStatus.HEALTHY


def test_old_success_is_unknown(db_session, tracker, settings, make_webhook):
    webhook = make_webhook()
    then = utcnow()
    tracker.record_success(webhook.id, then)
    db_session.commit()

    later = then + timedelta(hours=settings.health_recency_hours, minutes=1)
    assert tracker.evaluate(webhook, later) == HealthStatus.UNKNOWN


def test_success_rate_counts_terminal_events(db_session, tracker, make_webhook):
    webhook = make_webhook()
    store = DeliveryStore(db_session)
    now = utcnow()
    for status in (DeliveryStatus.PROCESSED, DeliveryStatus.PROCESSED, DeliveryStatus.PROCESSED,
                   DeliveryStatus.FAILED, DeliveryStatus.CANCELLED, DeliveryStatus.RETRYING):
        event, _ = store.create_event(webhook, "order.created", "{}")
        store.set_status(event, status, now)
    db_session.commit()

    assert tracker.success_rate(webhook.id) == 75.0
    snapshot = tracker.snapshot(webhook, now)
    assert snapshot.processed_count == 3
    assert snapshot.failed_count == 1
    assert snapshot.success_rate == 75.0


def test_success_rate_without_history(tracker, make_webhook):
    assert tracker.success_rate(make_webhook().id) == 0.0
