"""Delivery dispatcher: fans a fired event out to subscribed endpoints."""
from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from hookline.core.errors import InvalidPayloadError
from hookline.models.base import utcnow
from hookline.models.webhook import Webhook
from hookline.schemas.webhook import HealthStatus
from hookline.services.delivery_store import DeliveryStore
from hookline.services.enqueue import Enqueue, enqueue_delivery
from hookline.services.health_tracker import HealthTracker
from hookline.services.webhook_registry import WebhookRegistry

TEST_EVENT_TYPE = "webhook.test"


def build_payload(event_type: str, data: dict[str, Any], webhook_id: str, timestamp: datetime) -> dict[str, Any]:
    """The document every endpoint receives."""
    return {
        "event_type": event_type,
        "data": data,
        "webhook_id": webhook_id,
        "timestamp": timestamp.isoformat(),
    }


def serialize_payload(payload: dict[str, Any]) -> str:
    """Serialize once; the resulting string is what gets signed and sent.

    Raises:
        InvalidPayloadError: payload contains values JSON cannot represent
    """
    try:
        return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, allow_nan=False)
    except (TypeError, ValueError) as e:
        raise InvalidPayloadError(f"Event data is not JSON serializable: {e}") from e


class DeliveryDispatcher:
    """Creates delivery events for fired events and hands them to the worker pool."""

    def __init__(
        self,
        session: Session,
        enqueue: Enqueue | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize dispatcher.

        Args:
            session: Active database session
            enqueue: Callable queuing an attempt id (defaults to the Celery task)
            logger: Optional logger override
        """
        self._session = session
        self._registry = WebhookRegistry(session)
        self._store = DeliveryStore(session)
        self._health = HealthTracker(session)
        self._enqueue = enqueue or enqueue_delivery
        self._logger = logger or logging.getLogger(__name__)

    def _create(self, webhooks: list[Webhook], event_type: str, data: dict[str, Any]) -> list[tuple[str, str]]:
        now = utcnow()
        # Reject unserializable data before anything is persisted.
        serialize_payload(build_payload(event_type, data, "", now))

        created: list[tuple[str, str]] = []
        for webhook in webhooks:
            if self._health.evaluate(webhook, now) == HealthStatus.FAILING:
                self._logger.warning(
                    f"Webhook {webhook.id} is failing ({webhook.failure_count} exhausted deliveries), "
                    f"dispatching '{event_type}' anyway"
                )
            body = serialize_payload(build_payload(event_type, data, webhook.id, now))
            event, attempt = self._store.create_event(webhook, event_type, body)
            created.append((event.id, attempt.id))
        self._session.commit()
        return created

    def _hand_off(self, created: list[tuple[str, str]]) -> None:
        for event_id, attempt_id in created:
            try:
                self._enqueue(attempt_id)
                self._logger.debug(f"Enqueued delivery {event_id} (attempt {attempt_id})")
            except Exception as e:
                # Event stays pending; the scheduler's stale sweep re-enqueues it.
                self._logger.error(f"Failed to enqueue delivery {event_id}: {e}", exc_info=True)

    def dispatch(self, organization_id: str, event_type: str, data: dict[str, Any]) -> list[str]:
        """Publish an event to every active webhook of the organization subscribed to it.

        This method:
        1. Resolves subscribed, active endpoints
        2. Persists one pending delivery event (with attempt 1) per endpoint
        3. Enqueues the attempts and returns without waiting for delivery

        Args:
            organization_id: Tenant the event belongs to
            event_type: Event type (e.g., "order.created")
            data: JSON-serializable event data

        Returns:
            Delivery event ids, one per matching endpoint (empty if none match)

        Raises:
            InvalidPayloadError: data cannot be serialized to JSON
        """
        webhooks = self._registry.list_subscribed(organization_id, event_type)
        if not webhooks:
            self._logger.debug(f"No active webhooks for '{event_type}' in organization {organization_id}")
            return []

        self._logger.info(
            f"Dispatching '{event_type}' for organization {organization_id} to {len(webhooks)} webhook(s)"
        )
        created = self._create(webhooks, event_type, data)
        self._hand_off(created)
        return [event_id for event_id, _ in created]

    def test_endpoint(self, webhook_id: str, organization_id: str | None = None) -> str:
        """Send a synthetic ``webhook.test`` event through the normal pipeline.

        Raises:
            EndpointNotFoundError: unknown webhook
        """
        webhook = self._registry.get(webhook_id, organization_id)
        data = {
            "message": "This is a test webhook delivery",
            "timestamp": utcnow().isoformat(),
        }
        created = self._create([webhook], TEST_EVENT_TYPE, data)
        self._hand_off(created)
        self._logger.info(f"Queued test delivery {created[0][0]} for webhook {webhook_id}")
        return created[0][0]
