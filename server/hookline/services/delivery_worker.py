"""Executes one HTTP delivery attempt."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field

import httpx
from sqlalchemy.orm import Session

from hookline.core.config import Settings, get_settings
from hookline.core.errors import DeliveryError, PermanentDeliveryError, TransientDeliveryError
from hookline.core.headers import (
    ATTEMPT_HEADER,
    CONTENT_TYPE_HEADER,
    DELIVERY_HEADER,
    EVENT_HEADER,
    RESERVED_HEADERS,
    SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
)
from hookline.models.base import utcnow
from hookline.models.webhook import Webhook
from hookline.models.webhook_delivery import DeliveryAttempt, DeliveryEvent
from hookline.services.delivery_store import DeliveryStore
from hookline.services.retry_scheduler import RetryScheduler
from hookline.services.signer import sign_for_webhook

TRUNCATION_MARKER = "... (truncated)"


@dataclass
class DeliveryOutcome:
    """Result of executing (or declining to execute) one attempt."""

    attempt_id: str
    success: bool = False
    http_status: int | None = None
    body: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    response_time_ms: int | None = None
    error: str | None = None
    retryable: bool = True
    skipped: bool = False
    cancelled: bool = False

    def as_dict(self) -> dict:
        return {
            "attempt_id": self.attempt_id,
            "success": self.success,
            "http_status": self.http_status,
            "response_time_ms": self.response_time_ms,
            "error": self.error,
            "skipped": self.skipped,
            "cancelled": self.cancelled,
        }


def classify_response(status_code: int) -> DeliveryError | None:
    """None for 2xx; otherwise the error describing the response."""
    if 200 <= status_code < 300:
        return None
    if status_code == 429 or status_code >= 500:
        return TransientDeliveryError(f"HTTP {status_code}", http_status=status_code)
    return PermanentDeliveryError(f"HTTP {status_code}", http_status=status_code)


def build_headers(webhook: Webhook, event: DeliveryEvent, attempt: DeliveryAttempt) -> dict[str, str]:
    """Custom headers first, then the engine's own headers which always win."""
    headers = {key: value for key, value in (webhook.headers or {}).items() if key.lower() not in RESERVED_HEADERS}
    headers.update(
        {
            CONTENT_TYPE_HEADER: "application/json",
            SIGNATURE_HEADER: sign_for_webhook(webhook, attempt.payload),
            EVENT_HEADER: event.event_type,
            DELIVERY_HEADER: event.id,
            ATTEMPT_HEADER: str(attempt.attempt_number),
            TIMESTAMP_HEADER: str(int(time.time())),
        }
    )
    return headers


class DeliveryWorker:
    """Runs one attempt: pre-flight, claim, POST, record, hand over to the scheduler."""

    def __init__(
        self,
        session: Session,
        client: httpx.Client | None = None,
        scheduler: RetryScheduler | None = None,
        settings: Settings | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize the worker.

        Args:
            session: Active database session
            client: Optional shared httpx client (a short-lived one is used otherwise)
            scheduler: State machine receiving outcomes
            settings: Optional settings override
            logger: Optional logger override
        """
        self._session = session
        self._settings = settings or get_settings()
        self._store = DeliveryStore(session)
        self._client = client
        self._scheduler = scheduler or RetryScheduler(session, settings=self._settings, logger=logger)
        self._logger = logger or logging.getLogger(__name__)

    def _truncate(self, text: str) -> str:
        limit = self._settings.max_response_body_length
        if len(text) > limit:
            return text[:limit] + TRUNCATION_MARKER
        return text

    def _post(self, url: str, body: bytes, headers: dict[str, str]) -> httpx.Response:
        timeout = self._settings.webhook_timeout_seconds
        if self._client is not None:
            return self._client.post(url, content=body, headers=headers, timeout=timeout)
        with httpx.Client(timeout=timeout, follow_redirects=False) as client:
            return client.post(url, content=body, headers=headers)

    def send(self, webhook: Webhook, event: DeliveryEvent, attempt: DeliveryAttempt) -> DeliveryOutcome:
        """POST the attempt's payload and classify the result. No database writes."""
        outcome = DeliveryOutcome(attempt_id=attempt.id)
        headers = build_headers(webhook, event, attempt)
        timeout = self._settings.webhook_timeout_seconds
        start_time = time.monotonic()

        try:
            response = self._post(webhook.url, attempt.payload.encode("utf-8"), headers)
            outcome.response_time_ms = int((time.monotonic() - start_time) * 1000)
            outcome.http_status = response.status_code
            outcome.headers = dict(response.headers)
            try:
                outcome.body = self._truncate(response.text)
            except (UnicodeDecodeError, httpx.ResponseNotRead) as e:
                self._logger.warning(f"Failed to read response body: {e}")
            error = classify_response(response.status_code)
        except httpx.TimeoutException:
            error = TransientDeliveryError(f"Webhook request timed out after {timeout}s")
        except httpx.HTTPError as e:
            # Connection refused, DNS failure, protocol errors.
            error = TransientDeliveryError(f"Webhook request failed: {e}")
        except (httpx.InvalidURL, UnicodeEncodeError) as e:
            # The request could not be built from the stored URL or headers.
            error = PermanentDeliveryError(f"Webhook request could not be built: {e}")

        if outcome.response_time_ms is None:
            outcome.response_time_ms = int((time.monotonic() - start_time) * 1000)
        if error is None:
            outcome.success = True
        else:
            outcome.error = self._truncate(str(error))
            outcome.retryable = error.retryable
        return outcome

    def execute(self, attempt_id: str) -> DeliveryOutcome:
        """Execute the attempt identified by ``attempt_id``.

        Duplicate or late task deliveries (attempt already completed, event
        terminal or claimed by someone else) return a ``skipped`` outcome
        without side effects.
        """
        attempt = self._store.get_attempt(attempt_id)
        if attempt is None:
            self._logger.error(f"Delivery attempt {attempt_id} not found")
            return DeliveryOutcome(attempt_id=attempt_id, skipped=True, error="attempt not found")
        if not attempt.in_flight:
            self._logger.info(f"Delivery attempt {attempt_id} already completed, skipping")
            return DeliveryOutcome(attempt_id=attempt_id, skipped=True, error="attempt already completed")

        event = attempt.delivery_event
        webhook = event.webhook
        if event.is_terminal:
            self._logger.info(f"Delivery {event.id} is {event.status.value}, skipping attempt {attempt_id}")
            return DeliveryOutcome(attempt_id=attempt_id, skipped=True, error=f"event {event.status.value}")

        now = utcnow()
        if not webhook.accepts_deliveries:
            reason = "Webhook is inactive; delivery cancelled"
            if not self._scheduler.cancel(event, reason, now):
                self._session.rollback()
                self._logger.info(f"Delivery {event.id} already claimed, skipping attempt {attempt_id}")
                return DeliveryOutcome(attempt_id=attempt_id, skipped=True, error="event already claimed")
            self._session.commit()
            return DeliveryOutcome(attempt_id=attempt_id, cancelled=True, retryable=False, error=reason)

        if not self._store.claim(event, now):
            self._session.rollback()
            self._logger.info(f"Delivery {event.id} already claimed, skipping attempt {attempt_id}")
            return DeliveryOutcome(attempt_id=attempt_id, skipped=True, error="event already claimed")
        # Make ``processing`` visible before the network call.
        self._session.commit()

        self._logger.info(
            f"Delivering {event.event_type} to webhook {webhook.id} "
            f"(delivery {event.id}, attempt {attempt.attempt_number}/{webhook.max_retries})"
        )
        outcome = self.send(webhook, event, attempt)

        completed_at = utcnow()
        self._store.complete_attempt(
            attempt,
            is_success=outcome.success,
            delivered_at=completed_at,
            http_status=outcome.http_status,
            response_body=outcome.body,
            response_headers=outcome.headers or None,
            response_time_ms=outcome.response_time_ms,
            error_message=outcome.error,
        )
        if outcome.success:
            self._logger.info(
                f"Webhook {webhook.id} delivered successfully "
                f"(status: {outcome.http_status}, time: {outcome.response_time_ms}ms)"
            )
            self._scheduler.record_success(event, attempt, completed_at)
        else:
            self._logger.warning(
                f"Webhook {webhook.id} delivery failed "
                f"(status: {outcome.http_status}, time: {outcome.response_time_ms}ms): {outcome.error}"
            )
            self._scheduler.record_failure(event, attempt, webhook, completed_at, outcome.error)
        self._session.commit()
        return outcome
