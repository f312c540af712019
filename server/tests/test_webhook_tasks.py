"""Tests for the Celery delivery and retry polling tasks."""
from __future__ import annotations

from contextlib import contextmanager
from datetime import timedelta
from unittest.mock import patch

import httpx
import pytest

from hookline.models.base import utcnow
from hookline.models.webhook_delivery import DeliveryEvent, DeliveryStatus
from hookline.services.delivery_worker import DeliveryWorker
from hookline.services.dispatcher import DeliveryDispatcher
from hookline.tasks.celery_app import celery_app
from hookline.tasks.webhook_tasks import deliver_webhook_task, poll_webhook_retries_task


@pytest.fixture
def task_session(db_session):
    """Route the tasks' session_scope to the test session."""

    @contextmanager
    def _scope():
        yield db_session
        db_session.commit()

    with patch("hookline.tasks.webhook_tasks.session_scope", _scope):
        yield db_session


@pytest.fixture
def pending_event(db_session, make_webhook, enqueued) -> DeliveryEvent:
    make_webhook()
    [event_id] = DeliveryDispatcher(db_session, enqueue=enqueued.append).dispatch("org_1", "order.created", {"id": 7})
    return db_session.get(DeliveryEvent, event_id)


def test_tasks_are_registered():
    assert "deliver_webhook" in celery_app.tasks
    assert "poll_webhook_retries" in celery_app.tasks
    assert "poll-webhook-retries" in celery_app.conf.beat_schedule


def test_deliver_task_processes_event(task_session, pending_event, enqueued):
    with patch.object(DeliveryWorker, "_post", return_value=httpx.Response(200, text="ok")) as mock_post:
        result = deliver_webhook_task(enqueued[0])

    mock_post.assert_called_once()
    assert result["success"] is True
    assert result["http_status"] == 200
    task_session.refresh(pending_event)
    assert pending_event.status == DeliveryStatus.PROCESSED


def test_deliver_task_records_failure_without_raising(task_session, pending_event, enqueued):
    with patch.object(DeliveryWorker, "_post", return_value=httpx.Response(502)):
        result = deliver_webhook_task(enqueued[0])

    assert result["success"] is False
    task_session.refresh(pending_event)
    assert pending_event.status == DeliveryStatus.RETRYING


def test_poll_task_enqueues_due_retries(task_session, pending_event, enqueued):
    with patch.object(DeliveryWorker, "_post", return_value=httpx.Response(500)):
        deliver_webhook_task(enqueued[0])

    due = utcnow() + timedelta(seconds=31)
    with patch("hookline.services.retry_scheduler.utcnow", return_value=due), patch(
        "hookline.tasks.webhook_tasks._enqueue_attempt"
    ) as mock_enqueue:
        result = poll_webhook_retries_task()

    assert result["retried"] == 1
    task_session.refresh(pending_event)
    assert pending_event.attempt_count == 2
    mock_enqueue.assert_called_once_with(pending_event.attempts[-1].id)
