"""Per-endpoint delivery statistics and derived health."""
from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import update
from sqlalchemy.orm import Session

from hookline.core.config import Settings, get_settings
from hookline.models.base import utcnow
from hookline.models.webhook import Webhook
from hookline.schemas.webhook import HealthStatus, WebhookHealth
from hookline.services.delivery_store import DeliveryStore


class HealthTracker:
    """Maintains failure counters on Webhook rows and reports health.

    Counter updates are single UPDATE statements with SQL-side arithmetic so
    concurrent completions for the same endpoint never lose an increment.
    """

    def __init__(self, session: Session, settings: Settings | None = None) -> None:
        self._session = session
        self._settings = settings or get_settings()

    def record_success(self, webhook_id: str, at: datetime | None = None) -> None:
        at = at or utcnow()
        self._session.execute(
            update(Webhook)
            .where(Webhook.id == webhook_id)
            .values(failure_count=0, last_success_at=at, last_triggered_at=at)
            .execution_options(synchronize_session=False)
        )
        self._expire(webhook_id)

    def record_failure(self, webhook_id: str, at: datetime | None = None) -> None:
        at = at or utcnow()
        self._session.execute(
            update(Webhook)
            .where(Webhook.id == webhook_id)
            .values(failure_count=Webhook.failure_count + 1, last_failure_at=at, last_triggered_at=at)
            .execution_options(synchronize_session=False)
        )
        self._expire(webhook_id)

    def _expire(self, webhook_id: str) -> None:
        webhook = self._session.get(Webhook, webhook_id)
        if webhook is not None:
            self._session.expire(
                webhook, ["failure_count", "last_success_at", "last_failure_at", "last_triggered_at"]
            )

    def evaluate(self, webhook: Webhook, now: datetime | None = None) -> HealthStatus:
        """Derive health from the endpoint's flags and last terminal outcomes."""
        now = now or utcnow()
        if not webhook.accepts_deliveries:
            return HealthStatus.INACTIVE

        last_success = webhook.last_success_at
        last_failure = webhook.last_failure_at
        if webhook.failure_count > 0 and last_failure is not None and (
            last_success is None or last_failure > last_success
        ):
            return HealthStatus.FAILING

        if last_success is not None and last_success > now - timedelta(hours=self._settings.health_recency_hours):
            return HealthStatus.HEALTHY
        if webhook.last_triggered_at is None:
            return HealthStatus.HEALTHY
        return HealthStatus.UNKNOWN

    def success_rate(self, webhook_id: str) -> float:
        """Percent of processed events among processed + failed, lifetime."""
        processed, failed = DeliveryStore(self._session).terminal_counts(webhook_id)
        total = processed + failed
        if total == 0:
            return 0.0
        return round(processed / total * 100, 2)

    def snapshot(self, webhook: Webhook, now: datetime | None = None) -> WebhookHealth:
        processed, failed = DeliveryStore(self._session).terminal_counts(webhook.id)
        total = processed + failed
        return WebhookHealth(
            webhook_id=webhook.id,
            status=self.evaluate(webhook, now),
            failure_count=webhook.failure_count,
            last_triggered_at=webhook.last_triggered_at,
            last_success_at=webhook.last_success_at,
            last_failure_at=webhook.last_failure_at,
            success_rate=round(processed / total * 100, 2) if total else 0.0,
            processed_count=processed,
            failed_count=failed,
        )
