"""Delivery state machine and the retry polling loop.

    pending -> processing -> processed
                          -> retrying -> processing ...
                          -> failed
    pending | retrying    -> cancelled   (endpoint deactivated or archived)

A failed attempt ``k`` is retried after ``base_delay * 2 ** (k - 1)``
seconds (30s, 60s, 120s, ...) until the endpoint's ``max_retries`` is
reached. Waiting is never done in-process: the event is parked in
``retrying`` with ``next_retry_at`` and the beat-driven poller creates the
next attempt once that time has passed.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from hookline.core.config import Settings, get_settings
from hookline.core.errors import BudgetExhaustedError, DeliveryEventNotFoundError, DeliveryEventTerminalError
from hookline.models.base import utcnow
from hookline.models.webhook import Webhook
from hookline.models.webhook_delivery import DeliveryAttempt, DeliveryEvent, DeliveryStatus
from hookline.services.delivery_store import DeliveryStore
from hookline.services.enqueue import Enqueue, enqueue_delivery
from hookline.services.health_tracker import HealthTracker


BASE_RETRY_DELAY_SECONDS = 30


def compute_retry_delay(attempt_number: int, base_delay: int = BASE_RETRY_DELAY_SECONDS) -> int:
    """Seconds to wait after failed attempt ``attempt_number`` (1-based)."""
    if attempt_number < 1:
        raise ValueError("attempt_number is 1-based")
    return base_delay * 2 ** (attempt_number - 1)


def next_retry_delay(attempt_number: int, max_retries: int, base_delay: int = BASE_RETRY_DELAY_SECONDS) -> int:
    """Delay before attempt ``attempt_number + 1``.

    Raises:
        BudgetExhaustedError: the next attempt would exceed ``max_retries``
    """
    if attempt_number + 1 > max_retries:
        raise BudgetExhaustedError(attempt_number, max_retries)
    return compute_retry_delay(attempt_number, base_delay)


@dataclass
class SchedulerRunResult:
    """Counts from one pass of the retry poller."""

    retried: int = 0
    cancelled: int = 0
    requeued: int = 0
    recovered: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


class RetryScheduler:
    """Applies attempt outcomes to delivery events and re-arms due retries."""

    def __init__(
        self,
        session: Session,
        enqueue: Enqueue | None = None,
        health: HealthTracker | None = None,
        settings: Settings | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._session = session
        self._settings = settings or get_settings()
        self._store = DeliveryStore(session)
        self._health = health or HealthTracker(session, self._settings)
        self._enqueue = enqueue or enqueue_delivery
        self._logger = logger or logging.getLogger(__name__)

    # -- outcome handling ---------------------------------------------------

    def record_success(self, event: DeliveryEvent, attempt: DeliveryAttempt, now: datetime) -> DeliveryStatus:
        self._store.set_status(event, DeliveryStatus.PROCESSED, now)
        self._health.record_success(event.webhook_id, now)
        self._logger.info(
            f"Delivery {event.id} processed on attempt {attempt.attempt_number} (webhook {event.webhook_id})"
        )
        return DeliveryStatus.PROCESSED

    def record_failure(
        self,
        event: DeliveryEvent,
        attempt: DeliveryAttempt,
        webhook: Webhook,
        now: datetime,
        error: str | None = None,
    ) -> DeliveryStatus:
        """Park the event in ``retrying`` or fail it when the budget is spent."""
        error = error or attempt.error_message or "Delivery failed"
        try:
            delay = next_retry_delay(attempt.attempt_number, webhook.max_retries, self._settings.retry_base_delay_seconds)
        except BudgetExhaustedError as e:
            self._store.set_status(event, DeliveryStatus.FAILED, now, last_error=f"{error} ({e})")
            self._health.record_failure(webhook.id, now)
            self._logger.warning(f"Delivery {event.id} failed permanently for webhook {webhook.id}: {e}")
            return DeliveryStatus.FAILED

        next_retry_at = now + timedelta(seconds=delay)
        attempt.next_retry_at = next_retry_at
        self._store.set_status(event, DeliveryStatus.RETRYING, now, next_retry_at=next_retry_at, last_error=error)
        self._logger.info(
            f"Delivery {event.id} attempt {attempt.attempt_number}/{webhook.max_retries} failed, "
            f"retrying in {delay}s"
        )
        return DeliveryStatus.RETRYING

    def cancel(self, event: DeliveryEvent, reason: str, now: datetime) -> bool:
        """Mark a waiting event cancelled and close its open attempt.

        Returns False, changing nothing, when the event is not ``pending`` or
        ``retrying`` (a worker holds it, or it already finished).
        """
        if not self._store.cancel_open(event, now, reason):
            self._logger.info(f"Delivery {event.id} is {DeliveryStatus(event.status).value}, not cancelled")
            return False
        attempt = self._store.open_attempt(event.id)
        if attempt is not None:
            self._store.complete_attempt(attempt, is_success=False, delivered_at=None, error_message=reason)
        self._logger.info(f"Delivery {event.id} cancelled: {reason}")
        return True

    # -- polling ------------------------------------------------------------

    def _dispatch(self, attempt_ids: list[str]) -> None:
        for attempt_id in attempt_ids:
            try:
                self._enqueue(attempt_id)
            except Exception as e:
                # The event keeps its open attempt and is picked up by requeue_stale.
                self._logger.error(f"Failed to enqueue delivery attempt {attempt_id}: {e}", exc_info=True)

    def poll_due(self, now: datetime | None = None) -> tuple[int, int]:
        """Create and enqueue the next attempt for every due ``retrying`` event.

        Returns:
            (retried, cancelled)
        """
        now = now or utcnow()
        retried: list[str] = []
        cancelled = 0
        for event in self._store.due_retries(now, self._settings.retry_batch_size):
            if not event.webhook.accepts_deliveries:
                if self.cancel(event, "Webhook deactivated before retry", now):
                    cancelled += 1
                continue
            if not self._store.arm_retry(event, now):
                continue
            attempt = self._store.create_next_attempt(event)
            retried.append(attempt.id)
        self._session.commit()
        self._dispatch(retried)
        return len(retried), cancelled

    def requeue_stale(self, now: datetime | None = None) -> int:
        """Re-enqueue open attempts that no worker has picked up in time."""
        now = now or utcnow()
        cutoff = now - timedelta(seconds=self._settings.stale_delivery_seconds)
        requeued: list[str] = []
        for event in self._store.stale_open_events(cutoff, self._settings.retry_batch_size):
            if not event.webhook.accepts_deliveries:
                self.cancel(event, "Webhook deactivated before delivery", now)
                continue
            attempt = self._store.open_attempt(event.id)
            if attempt is None:
                attempt = self._store.create_next_attempt(event)
            self._store.touch(event, now)
            requeued.append(attempt.id)
        self._session.commit()
        if requeued:
            self._logger.warning(f"Re-enqueued {len(requeued)} stale delivery attempt(s)")
        self._dispatch(requeued)
        return len(requeued)

    def recover_stalled(self, now: datetime | None = None) -> int:
        """Fail over events whose worker never reported an outcome."""
        now = now or utcnow()
        timeout = self._settings.processing_timeout_seconds
        cutoff = now - timedelta(seconds=timeout)
        recovered = 0
        for event in self._store.stalled_processing(cutoff, self._settings.retry_batch_size):
            attempt = self._store.open_attempt(event.id)
            if attempt is not None:
                error = f"Worker did not report an outcome within {timeout}s"
                self._store.complete_attempt(attempt, is_success=False, delivered_at=now, error_message=error)
                self.record_failure(event, attempt, event.webhook, now, error)
            else:
                attempts = self._store.attempts_for_event(event.id)
                if not attempts:
                    self._logger.error(f"Delivery {event.id} is processing without any attempt")
                    continue
                last = attempts[-1]
                if last.is_success:
                    self.record_success(event, last, now)
                else:
                    self.record_failure(event, last, event.webhook, now)
            recovered += 1
        self._session.commit()
        if recovered:
            self._logger.warning(f"Recovered {recovered} stalled delivery event(s)")
        return recovered

    def run_once(self, now: datetime | None = None) -> SchedulerRunResult:
        """One scheduler tick, as run by the beat task."""
        now = now or utcnow()
        result = SchedulerRunResult()
        result.recovered = self.recover_stalled(now)
        result.retried, result.cancelled = self.poll_due(now)
        result.requeued = self.requeue_stale(now)
        return result

    def retry_now(self, event_id: str, organization_id: str | None = None, now: datetime | None = None) -> DeliveryEvent:
        """Pull a parked retry forward so the next poll picks it up.

        Raises:
            DeliveryEventNotFoundError: unknown event
            DeliveryEventTerminalError: event already processed, failed or cancelled
        """
        now = now or utcnow()
        event = self._store.get_event(event_id, organization_id)
        if event is None:
            raise DeliveryEventNotFoundError(event_id)
        if event.is_terminal:
            raise DeliveryEventTerminalError(f"Delivery event {event_id} is {DeliveryStatus(event.status).value}")
        if event.status == DeliveryStatus.RETRYING and event.next_retry_at is not None:
            event.next_retry_at = now
            self._session.commit()
            self._logger.info(f"Delivery {event_id} retry moved forward")
        return event
