"""Celery tasks for webhook delivery and retry scheduling."""
from __future__ import annotations

import logging

from hookline.core.db import session_scope
from hookline.services.delivery_worker import DeliveryWorker
from hookline.services.retry_scheduler import RetryScheduler
from hookline.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


def _enqueue_attempt(attempt_id: str) -> None:
    deliver_webhook_task.delay(attempt_id)


@celery_app.task(
    name="deliver_webhook",
    bind=True,
    acks_late=True,
    reject_on_worker_lost=True,
)
def deliver_webhook_task(self, attempt_id: str) -> dict:
    """Execute one delivery attempt.

    Task Flow:
    1. Load the attempt, its delivery event and endpoint
    2. Cancel without a network call if the endpoint was deactivated
    3. Claim the event (pending/retrying -> processing)
    4. POST the signed payload and record the outcome
    5. Let the retry scheduler move the event to processed/retrying/failed

    Failures of the endpoint are recorded, not raised: re-running the task
    would bypass the backoff schedule. Infrastructure errors (database
    down) propagate so the broker redelivers the message.

    Args:
        attempt_id: DeliveryAttempt id created by the dispatcher or scheduler

    Returns:
        dict summarizing the outcome
    """
    logger.info(f"Starting webhook delivery task for attempt {attempt_id} (task {self.request.id})")

    with session_scope() as session:
        worker = DeliveryWorker(session, scheduler=RetryScheduler(session, enqueue=_enqueue_attempt))
        outcome = worker.execute(attempt_id)

    return outcome.as_dict()


@celery_app.task(name="poll_webhook_retries", acks_late=True)
def poll_webhook_retries_task() -> dict:
    """Beat-driven scheduler tick: recover stalled events, arm due retries, requeue stale ones."""
    with session_scope() as session:
        result = RetryScheduler(session, enqueue=_enqueue_attempt).run_once()

    if result.retried or result.cancelled or result.requeued or result.recovered:
        logger.info(
            f"Retry poll: {result.retried} retried, {result.cancelled} cancelled, "
            f"{result.requeued} requeued, {result.recovered} recovered"
        )
    return result.as_dict()
