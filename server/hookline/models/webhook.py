"""Webhook endpoint model definition."""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, UTCDateTime, new_id, utcnow


class Webhook(Base):
    """An organization's outbound endpoint: where to POST and which events to send."""

    __tablename__ = "webhooks"
    __table_args__ = (UniqueConstraint("organization_id", "name", name="uq_webhooks_organization_id_name"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    organization_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    events: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    # Write-only: never serialized into API responses except once on create/rotate.
    secret: Mapped[str] = mapped_column(Text, nullable=False)
    headers: Mapped[dict[str, str]] = mapped_column(JSON, nullable=False, default=dict)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    archived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    max_retries: Mapped[int] = mapped_column(Integer, nullable=False, default=3, server_default="3")

    failure_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    last_triggered_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    last_success_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    last_failure_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

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

    def listens_to(self, event_type: str) -> bool:
        return event_type in (self.events or [])

    @property
    def accepts_deliveries(self) -> bool:
        return self.is_active and not self.archived

    def __repr__(self) -> str:
        return f"<Webhook id={self.id} org={self.organization_id} name={self.name!r} active={self.is_active}>"
