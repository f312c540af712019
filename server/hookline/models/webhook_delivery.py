"""Delivery event and delivery attempt model definitions."""
from __future__ import annotations

import json
from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Enum as PgEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, UTCDateTime, new_id, utcnow
from .webhook import Webhook


class DeliveryStatus(str, Enum):
    """Lifecycle of one fired event towards one endpoint."""

    PENDING = "pending"
    PROCESSING = "processing"
    RETRYING = "retrying"
    PROCESSED = "processed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = (DeliveryStatus.PROCESSED, DeliveryStatus.FAILED, DeliveryStatus.CANCELLED)
CLAIMABLE_STATUSES = (DeliveryStatus.PENDING, DeliveryStatus.RETRYING)


class DeliveryEvent(Base):
    """Groups every attempt made to deliver one event to one endpoint."""

    __tablename__ = "webhook_delivery_events"
    __table_args__ = (Index("ix_webhook_delivery_events_status_next_retry_at", "status", "next_retry_at"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    webhook_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("webhooks.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    organization_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    event_type: Mapped[str] = mapped_column(String(255), nullable=False)
    # Canonical serialized body; signed and sent byte-for-byte on every attempt.
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[DeliveryStatus] = mapped_column(
        PgEnum(DeliveryStatus, name="delivery_event_status", values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=DeliveryStatus.PENDING,
        server_default=DeliveryStatus.PENDING.value,
    )
    attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    next_retry_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    archived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
    )
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    webhook: Mapped[Webhook] = relationship(Webhook)
    attempts: Mapped[list["DeliveryAttempt"]] = relationship(
        "DeliveryAttempt",
        back_populates="delivery_event",
        order_by="DeliveryAttempt.attempt_number",
    )

    @property
    def payload_data(self) -> dict[str, Any]:
        return json.loads(self.payload)

    @property
    def is_terminal(self) -> bool:
        return DeliveryStatus(self.status).is_terminal


class DeliveryAttempt(Base):
    """One HTTP try for a delivery event; kept for audit whatever the outcome."""

    __tablename__ = "webhook_delivery_attempts"
    __table_args__ = (
        UniqueConstraint(
            "delivery_event_id", "attempt_number", name="uq_webhook_delivery_attempts_event_attempt"
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    delivery_event_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("webhook_delivery_events.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    webhook_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("webhooks.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    event_type: Mapped[str] = mapped_column(String(255), nullable=False)
    attempt_number: Mapped[int] = mapped_column(Integer, nullable=False)
    payload: Mapped[str] = mapped_column(Text, nullable=False)

    http_status: Mapped[int | None] = mapped_column(Integer, nullable=True)
    response_body: Mapped[str | None] = mapped_column(Text, nullable=True)
    response_headers: Mapped[dict[str, str] | None] = mapped_column(JSON, nullable=True)
    response_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_success: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    next_retry_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=utcnow, server_default=func.now()
    )

    delivery_event: Mapped[DeliveryEvent] = relationship(DeliveryEvent, back_populates="attempts")

    @property
    def in_flight(self) -> bool:
        return self.is_success is None

    @property
    def status(self) -> str:
        if self.is_success is None:
            return "pending"
        if self.is_success:
            return "success"
        if self.next_retry_at is not None:
            return "retrying"
        return "failed"
