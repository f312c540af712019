"""Tests for the retry state machine and the polling loop."""
from __future__ import annotations

from datetime import timedelta

import httpx
import pytest

from hookline.core.errors import BudgetExhaustedError, DeliveryEventNotFoundError, DeliveryEventTerminalError
from hookline.models.base import utcnow
from hookline.models.webhook_delivery import DeliveryEvent, DeliveryStatus
from hookline.services.delivery_worker import DeliveryWorker
from hookline.services.dispatcher import DeliveryDispatcher
from hookline.services.retry_scheduler import RetryScheduler, compute_retry_delay, next_retry_delay


@pytest.fixture
def scheduler(db_session, settings, enqueued) -> RetryScheduler:
    return RetryScheduler(db_session, enqueue=enqueued.append, settings=settings)


@pytest.fixture
def dispatcher(db_session, enqueued) -> DeliveryDispatcher:
    return DeliveryDispatcher(db_session, enqueue=enqueued.append)


def worker_answering(db_session, scheduler, settings, status_code: int) -> DeliveryWorker:
    client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(status_code)))
    return DeliveryWorker(db_session, client=client, scheduler=scheduler, settings=settings)


class TestBackoff:
    def test_delays_double_from_thirty_seconds(self):
        assert [compute_retry_delay(n) for n in (1, 2, 3, 4)] == [30, 60, 120, 240]

    def test_custom_base_delay(self):
        assert compute_retry_delay(3, base_delay=10) == 40

    def test_attempt_number_is_one_based(self):
        with pytest.raises(ValueError):
            compute_retry_delay(0)

    def test_budget_exhausted_at_max_retries(self):
        assert next_retry_delay(2, max_retries=3) == 60
        with pytest.raises(BudgetExhaustedError):
            next_retry_delay(3, max_retries=3)


class TestScenarios:
    def test_always_failing_endpoint_exhausts_budget(
        self, db_session, settings, scheduler, dispatcher, make_webhook, enqueued
    ):
        webhook = make_webhook(max_retries=3)
        worker = worker_answering(db_session, scheduler, settings, 500)
        [event_id] = dispatcher.dispatch("org_1", "order.created", {"order_id": 1})
        event = db_session.get(DeliveryEvent, event_id)

        worker.execute(enqueued.pop())
        for expected_delay in (30, 60):
            assert event.status == DeliveryStatus.RETRYING
            last = event.attempts[-1]
            assert last.next_retry_at - last.delivered_at == timedelta(seconds=expected_delay)

            # Not due yet: nothing happens
            assert scheduler.poll_due(event.next_retry_at - timedelta(seconds=1)) == (0, 0)
            assert scheduler.poll_due(event.next_retry_at) == (1, 0)
            worker.execute(enqueued.pop())

        db_session.refresh(event)
        db_session.refresh(webhook)
        assert event.status == DeliveryStatus.FAILED
        assert event.completed_at is not None
        assert event.next_retry_at is None
        assert [a.attempt_number for a in event.attempts] == [1, 2, 3]
        assert all(a.is_success is False for a in event.attempts)
        assert event.attempts[-1].next_retry_at is None
        assert webhook.failure_count == 1
        assert webhook.last_failure_at is not None
        assert enqueued == []

    def test_deactivated_endpoint_cancels_scheduled_retry(
        self, db_session, settings, registry, scheduler, dispatcher, make_webhook, enqueued
    ):
        webhook = make_webhook()
        worker = worker_answering(db_session, scheduler, settings, 503)
        [event_id] = dispatcher.dispatch("org_1", "order.created", {})
        event = db_session.get(DeliveryEvent, event_id)
        worker.execute(enqueued.pop())

        registry.deactivate(webhook.id)
        assert scheduler.poll_due(event.next_retry_at) == (0, 1)

        db_session.refresh(event)
        assert event.status == DeliveryStatus.CANCELLED
        assert len(event.attempts) == 1
        assert enqueued == []

    def test_success_after_failure_resets_failure_count(
        self, db_session, settings, scheduler, dispatcher, make_webhook, enqueued
    ):
        webhook = make_webhook()
        webhook.failure_count = 4
        db_session.commit()
        [event_id] = dispatcher.dispatch("org_1", "order.created", {})
        event = db_session.get(DeliveryEvent, event_id)

        worker_answering(db_session, scheduler, settings, 500).execute(enqueued.pop())
        scheduler.poll_due(event.next_retry_at)
        worker_answering(db_session, scheduler, settings, 200).execute(enqueued.pop())

        db_session.refresh(event)
        db_session.refresh(webhook)
        assert event.status == DeliveryStatus.PROCESSED
        assert [a.is_success for a in event.attempts] == [False, True]
        assert webhook.failure_count == 0


class TestTerminality:
    def test_terminal_event_gets_no_new_attempts(
        self, db_session, settings, scheduler, dispatcher, make_webhook, enqueued
    ):
        make_webhook(max_retries=1)
        [event_id] = dispatcher.dispatch("org_1", "order.created", {})
        event = db_session.get(DeliveryEvent, event_id)
        worker_answering(db_session, scheduler, settings, 500).execute(enqueued.pop())

        assert event.status == DeliveryStatus.FAILED
        far_future = utcnow() + timedelta(days=1)
        assert scheduler.run_once(far_future).as_dict() == {
            "retried": 0,
            "cancelled": 0,
            "requeued": 0,
            "recovered": 0,
        }
        assert len(event.attempts) == 1

    def test_poll_is_idempotent_per_retry_slot(
        self, db_session, settings, scheduler, dispatcher, make_webhook, enqueued
    ):
        make_webhook()
        [event_id] = dispatcher.dispatch("org_1", "order.created", {})
        event = db_session.get(DeliveryEvent, event_id)
        worker_answering(db_session, scheduler, settings, 500).execute(enqueued.pop())
        due = event.next_retry_at

        assert scheduler.poll_due(due) == (1, 0)
        assert scheduler.poll_due(due + timedelta(seconds=5)) == (0, 0)
        assert len(enqueued) == 1


class TestRecovery:
    def test_unpicked_attempt_is_requeued(self, db_session, settings, scheduler, dispatcher, make_webhook, enqueued):
        make_webhook()
        [event_id] = dispatcher.dispatch("org_1", "order.created", {})
        event = db_session.get(DeliveryEvent, event_id)
        attempt_id = enqueued.pop()

        assert scheduler.requeue_stale(utcnow()) == 0
        later = utcnow() + timedelta(seconds=settings.stale_delivery_seconds + 1)
        assert scheduler.requeue_stale(later) == 1

        assert enqueued == [attempt_id]
        assert event.status == DeliveryStatus.PENDING
        assert len(event.attempts) == 1

    def test_stalled_processing_is_failed_over(
        self, db_session, settings, scheduler, dispatcher, make_webhook, enqueued
    ):
        make_webhook()
        [event_id] = dispatcher.dispatch("org_1", "order.created", {})
        event = db_session.get(DeliveryEvent, event_id)
        enqueued.pop()
        event.status = DeliveryStatus.PROCESSING
        db_session.commit()

        later = utcnow() + timedelta(seconds=settings.processing_timeout_seconds + 1)
        assert scheduler.recover_stalled(later) == 1

        db_session.refresh(event)
        attempt = event.attempts[0]
        assert event.status == DeliveryStatus.RETRYING
        assert attempt.is_success is False
        assert "did not report an outcome" in attempt.error_message
        assert attempt.next_retry_at == later + timedelta(seconds=30)

    def test_pending_event_of_inactive_webhook_is_cancelled_by_sweep(
        self, db_session, settings, registry, scheduler, dispatcher, make_webhook, enqueued
    ):
        webhook = make_webhook()
        [event_id] = dispatcher.dispatch("org_1", "order.created", {})
        registry.deactivate(webhook.id)

        later = utcnow() + timedelta(seconds=settings.stale_delivery_seconds + 1)
        assert scheduler.requeue_stale(later) == 0

        assert db_session.get(DeliveryEvent, event_id).status == DeliveryStatus.CANCELLED


class TestRetryNow:
    def test_moves_parked_retry_forward(self, db_session, settings, scheduler, dispatcher, make_webhook, enqueued):
        make_webhook()
        [event_id] = dispatcher.dispatch("org_1", "order.created", {})
        worker_answering(db_session, scheduler, settings, 500).execute(enqueued.pop())
        now = utcnow()

        event = scheduler.retry_now(event_id, "org_1", now=now)

        assert event.next_retry_at == now
        assert scheduler.poll_due(now) == (1, 0)

    def test_unknown_event(self, scheduler):
        with pytest.raises(DeliveryEventNotFoundError):
            scheduler.retry_now("missing")

    def test_terminal_event_rejected(self, db_session, settings, scheduler, dispatcher, make_webhook, enqueued):
        make_webhook()
        [event_id] = dispatcher.dispatch("org_1", "order.created", {})
        worker_answering(db_session, scheduler, settings, 200).execute(enqueued.pop())

        with pytest.raises(DeliveryEventTerminalError):
            scheduler.retry_now(event_id)
