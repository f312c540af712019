"""Persistence for delivery events and their attempts."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from hookline.models.webhook import Webhook
from hookline.models.webhook_delivery import (
    CLAIMABLE_STATUSES,
    TERMINAL_STATUSES,
    DeliveryAttempt,
    DeliveryEvent,
    DeliveryStatus,
)
from hookline.schemas.webhook import DeliveryFilters


class DeliveryStore:
    """Reads and writes DeliveryEvent / DeliveryAttempt rows.

    Methods flush but never commit; the calling service owns the
    transaction boundary.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    # -- creation -----------------------------------------------------------

    def create_event(self, webhook: Webhook, event_type: str, payload: str) -> tuple[DeliveryEvent, DeliveryAttempt]:
        """Persist a pending event together with attempt number 1."""
        event = DeliveryEvent(
            webhook_id=webhook.id,
            organization_id=webhook.organization_id,
            event_type=event_type,
            payload=payload,
            status=DeliveryStatus.PENDING,
            attempt_count=1,
        )
        self._session.add(event)
        self._session.flush()

        attempt = DeliveryAttempt(
            delivery_event=event,
            webhook_id=webhook.id,
            event_type=event_type,
            attempt_number=1,
            payload=payload,
        )
        self._session.add(attempt)
        self._session.flush()
        return event, attempt

    def create_next_attempt(self, event: DeliveryEvent) -> DeliveryAttempt:
        """Open attempt n+1 carrying the event's original payload string."""
        event.attempt_count += 1
        attempt = DeliveryAttempt(
            delivery_event=event,
            webhook_id=event.webhook_id,
            event_type=event.event_type,
            attempt_number=event.attempt_count,
            payload=event.payload,
        )
        self._session.add(attempt)
        self._session.flush()
        return attempt

    # -- lookups ------------------------------------------------------------

    def get_event(self, event_id: str, organization_id: str | None = None) -> DeliveryEvent | None:
        event = self._session.get(DeliveryEvent, event_id)
        if event is None or (organization_id is not None and event.organization_id != organization_id):
            return None
        return event

    def get_attempt(self, attempt_id: str) -> DeliveryAttempt | None:
        return self._session.get(DeliveryAttempt, attempt_id)

    def open_attempt(self, event_id: str) -> DeliveryAttempt | None:
        """The attempt of this event whose outcome has not been recorded yet."""
        stmt = (
            select(DeliveryAttempt)
            .where(DeliveryAttempt.delivery_event_id == event_id, DeliveryAttempt.is_success.is_(None))
            .order_by(DeliveryAttempt.attempt_number.desc())
            .limit(1)
        )
        return self._session.scalars(stmt).first()

    def attempts_for_event(self, event_id: str) -> Sequence[DeliveryAttempt]:
        stmt = (
            select(DeliveryAttempt)
            .where(DeliveryAttempt.delivery_event_id == event_id)
            .order_by(DeliveryAttempt.attempt_number)
        )
        return self._session.scalars(stmt).all()

    # -- state changes ------------------------------------------------------

    def claim(self, event: DeliveryEvent, now: datetime) -> bool:
        """Atomically move ``pending``/``retrying`` to ``processing``.

        Returns False when another worker already claimed the event or it
        left the claimable states in the meantime.
        """
        result = self._session.execute(
            update(DeliveryEvent)
            .where(DeliveryEvent.id == event.id, DeliveryEvent.status.in_(CLAIMABLE_STATUSES))
            .values(status=DeliveryStatus.PROCESSING, next_retry_at=None, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        self._session.refresh(event)
        return result.rowcount == 1

    def arm_retry(self, event: DeliveryEvent, now: datetime) -> bool:
        """Consume a due retry slot so only one poller creates the next attempt."""
        result = self._session.execute(
            update(DeliveryEvent)
            .where(
                DeliveryEvent.id == event.id,
                DeliveryEvent.status == DeliveryStatus.RETRYING,
                DeliveryEvent.next_retry_at.is_not(None),
            )
            .values(next_retry_at=None, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        self._session.refresh(event)
        return result.rowcount == 1

    def cancel_open(self, event: DeliveryEvent, now: datetime, reason: str) -> bool:
        """Atomically move ``pending``/``retrying`` to ``cancelled``.

        Returns False when a worker holds the event in ``processing`` or it
        already reached a terminal state.
        """
        result = self._session.execute(
            update(DeliveryEvent)
            .where(DeliveryEvent.id == event.id, DeliveryEvent.status.in_(CLAIMABLE_STATUSES))
            .values(
                status=DeliveryStatus.CANCELLED,
                next_retry_at=None,
                last_error=reason,
                completed_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        self._session.refresh(event)
        return result.rowcount == 1

    def complete_attempt(
        self,
        attempt: DeliveryAttempt,
        *,
        is_success: bool,
        delivered_at: datetime | None,
        http_status: int | None = None,
        response_body: str | None = None,
        response_headers: dict[str, str] | None = None,
        response_time_ms: int | None = None,
        error_message: str | None = None,
    ) -> DeliveryAttempt:
        attempt.is_success = is_success
        attempt.http_status = http_status
        attempt.response_body = response_body
        attempt.response_headers = response_headers
        attempt.response_time_ms = response_time_ms
        attempt.error_message = error_message
        attempt.delivered_at = delivered_at
        self._session.flush()
        return attempt

    def set_status(
        self,
        event: DeliveryEvent,
        status: DeliveryStatus,
        now: datetime,
        *,
        next_retry_at: datetime | None = None,
        last_error: str | None = None,
    ) -> DeliveryEvent:
        event.status = status
        event.next_retry_at = next_retry_at
        event.updated_at = now
        if last_error is not None or status == DeliveryStatus.PROCESSED:
            event.last_error = last_error
        if status in TERMINAL_STATUSES:
            event.completed_at = now
        self._session.flush()
        return event

    def touch(self, event: DeliveryEvent, now: datetime) -> None:
        event.updated_at = now
        self._session.flush()

    def archive_for_webhook(self, webhook_id: str, now: datetime) -> int:
        """Tombstone all events of a webhook; cancel those waiting for a worker.

        Events in ``processing`` keep their worker's outcome. A resulting retry
        is cancelled by the poller since the webhook no longer accepts deliveries.

        Returns the number of events that were cancelled.
        """
        open_events = self._session.scalars(
            select(DeliveryEvent).where(
                DeliveryEvent.webhook_id == webhook_id,
                DeliveryEvent.status.in_(CLAIMABLE_STATUSES),
            )
        ).all()
        cancelled = 0
        for event in open_events:
            if not self.cancel_open(event, now, "Webhook archived"):
                continue
            attempt = self.open_attempt(event.id)
            if attempt is not None:
                self.complete_attempt(
                    attempt, is_success=False, delivered_at=None, error_message="Webhook archived"
                )
            cancelled += 1

        self._session.execute(
            update(DeliveryEvent)
            .where(DeliveryEvent.webhook_id == webhook_id)
            .values(archived=True)
            .execution_options(synchronize_session=False)
        )
        return cancelled

    # -- scheduler queries --------------------------------------------------

    def due_retries(self, now: datetime, limit: int) -> Sequence[DeliveryEvent]:
        """Retrying events whose next_retry_at has elapsed, row-locked for this poller."""
        stmt = (
            select(DeliveryEvent)
            .where(
                DeliveryEvent.status == DeliveryStatus.RETRYING,
                DeliveryEvent.next_retry_at.is_not(None),
                DeliveryEvent.next_retry_at <= now,
            )
            .order_by(DeliveryEvent.next_retry_at)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        return self._session.scalars(stmt).all()

    def stale_open_events(self, cutoff: datetime, limit: int) -> Sequence[DeliveryEvent]:
        """Events waiting on a queued attempt that no worker picked up since ``cutoff``."""
        stmt = (
            select(DeliveryEvent)
            .where(
                DeliveryEvent.status.in_(CLAIMABLE_STATUSES),
                DeliveryEvent.next_retry_at.is_(None),
                DeliveryEvent.updated_at <= cutoff,
            )
            .order_by(DeliveryEvent.updated_at)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        return self._session.scalars(stmt).all()

    def stalled_processing(self, cutoff: datetime, limit: int) -> Sequence[DeliveryEvent]:
        """Events left in ``processing`` since before ``cutoff`` (worker lost mid-attempt)."""
        stmt = (
            select(DeliveryEvent)
            .where(DeliveryEvent.status == DeliveryStatus.PROCESSING, DeliveryEvent.updated_at <= cutoff)
            .order_by(DeliveryEvent.updated_at)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        return self._session.scalars(stmt).all()

    # -- history ------------------------------------------------------------

    def list_deliveries(self, webhook_id: str, filters: DeliveryFilters) -> tuple[Sequence[DeliveryAttempt], int]:
        """Attempt history for a webhook, newest first, with the total match count."""
        conditions: list[Any] = [DeliveryAttempt.webhook_id == webhook_id]
        if filters.event_type is not None:
            conditions.append(DeliveryAttempt.event_type == filters.event_type)
        if filters.is_success is not None:
            conditions.append(DeliveryAttempt.is_success == filters.is_success)
        if filters.http_status_min is not None:
            conditions.append(DeliveryAttempt.http_status >= filters.http_status_min)
        if filters.http_status_max is not None:
            conditions.append(DeliveryAttempt.http_status <= filters.http_status_max)
        if filters.since is not None:
            conditions.append(DeliveryAttempt.created_at >= filters.since)
        if filters.until is not None:
            conditions.append(DeliveryAttempt.created_at <= filters.until)

        stmt = select(DeliveryAttempt).where(*conditions)
        if filters.status is not None:
            stmt = stmt.join(DeliveryEvent, DeliveryAttempt.delivery_event_id == DeliveryEvent.id).where(
                DeliveryEvent.status == filters.status
            )

        total = self._session.scalar(select(func.count()).select_from(stmt.subquery())) or 0
        items = self._session.scalars(
            stmt.order_by(DeliveryAttempt.created_at.desc(), DeliveryAttempt.attempt_number.desc())
            .limit(filters.limit)
            .offset(filters.offset)
        ).all()
        return items, total

    def list_events(self, webhook_id: str, filters: DeliveryFilters) -> tuple[Sequence[DeliveryEvent], int]:
        conditions: list[Any] = [DeliveryEvent.webhook_id == webhook_id]
        if filters.event_type is not None:
            conditions.append(DeliveryEvent.event_type == filters.event_type)
        if filters.status is not None:
            conditions.append(DeliveryEvent.status == filters.status)
        if filters.since is not None:
            conditions.append(DeliveryEvent.created_at >= filters.since)
        if filters.until is not None:
            conditions.append(DeliveryEvent.created_at <= filters.until)

        stmt = select(DeliveryEvent).where(*conditions)
        total = self._session.scalar(select(func.count()).select_from(stmt.subquery())) or 0
        items = self._session.scalars(
            stmt.order_by(DeliveryEvent.created_at.desc()).limit(filters.limit).offset(filters.offset)
        ).all()
        return items, total

    def terminal_counts(self, webhook_id: str) -> tuple[int, int]:
        """(processed, failed) lifetime event counts for a webhook."""
        rows = self._session.execute(
            select(DeliveryEvent.status, func.count())
            .where(
                DeliveryEvent.webhook_id == webhook_id,
                DeliveryEvent.status.in_((DeliveryStatus.PROCESSED, DeliveryStatus.FAILED)),
            )
            .group_by(DeliveryEvent.status)
        ).all()
        counts = {DeliveryStatus(status): count for status, count in rows}
        return counts.get(DeliveryStatus.PROCESSED, 0), counts.get(DeliveryStatus.FAILED, 0)
