"""Webhook registry: durable endpoint configuration per organization."""
from __future__ import annotations

import logging
import secrets
from typing import Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from hookline.core.config import Settings, get_settings
from hookline.core.errors import (
    DuplicateEndpointError,
    EndpointNotFoundError,
    InvalidEndpointConfigError,
)
from hookline.models.base import utcnow
from hookline.models.webhook import Webhook
from hookline.schemas.webhook import WebhookCreate, WebhookUpdate, validate_endpoint_url
from hookline.services.delivery_store import DeliveryStore

logger = logging.getLogger(__name__)

SECRET_PREFIX = "whsec_"
SECRET_BYTES = 32

__all__ = ["WebhookRegistry", "generate_secret", "validate_endpoint_url"]


def generate_secret() -> str:
    """Return a new signing secret backed by 32 bytes from the OS CSPRNG."""
    return SECRET_PREFIX + secrets.token_hex(SECRET_BYTES)


class WebhookRegistry:
    """Handles database operations for Webhook entities."""

    def __init__(self, session: Session, settings: Settings | None = None) -> None:
        """Initialize registry with a SQLAlchemy session.

        Args:
            session: Active database session for executing queries
            settings: Optional settings override (defaults to cached settings)
        """
        self._session = session
        self._settings = settings or get_settings()

    def _check_max_retries(self, max_retries: int) -> None:
        limit = self._settings.max_retries_limit
        if not 1 <= max_retries <= limit:
            raise InvalidEndpointConfigError(f"max_retries must be between 1 and {limit}")

    def _commit_or_duplicate(self, organization_id: str, name: str) -> None:
        try:
            self._session.commit()
        except IntegrityError as e:
            self._session.rollback()
            raise DuplicateEndpointError(
                f"Webhook named {name!r} already exists in organization {organization_id}"
            ) from e

    def _name_taken(self, organization_id: str, name: str, exclude_id: str | None = None) -> bool:
        stmt = select(Webhook.id).where(Webhook.organization_id == organization_id, Webhook.name == name)
        if exclude_id is not None:
            stmt = stmt.where(Webhook.id != exclude_id)
        return self._session.execute(stmt).first() is not None

    def create(self, organization_id: str, webhook: WebhookCreate) -> Webhook:
        """Create a new webhook.

        Args:
            organization_id: Owning organization
            webhook: Validated WebhookCreate schema

        Returns:
            Created Webhook instance. ``secret`` is populated (generated if
            the caller did not supply one) so it can be shown exactly once.

        Raises:
            DuplicateEndpointError: name already used in the organization
            InvalidEndpointConfigError: max_retries outside the allowed range
        """
        self._check_max_retries(webhook.max_retries)
        if self._name_taken(organization_id, webhook.name):
            raise DuplicateEndpointError(
                f"Webhook named {webhook.name!r} already exists in organization {organization_id}"
            )

        db_webhook = Webhook(
            organization_id=organization_id,
            name=webhook.name,
            url=validate_endpoint_url(webhook.url),
            events=list(webhook.events),
            secret=webhook.secret or generate_secret(),
            headers=dict(webhook.headers),
            is_active=webhook.is_active,
            max_retries=webhook.max_retries,
        )
        self._session.add(db_webhook)
        self._commit_or_duplicate(organization_id, webhook.name)
        self._session.refresh(db_webhook)
        logger.info(f"Created webhook {db_webhook.id} for organization {organization_id} ({db_webhook.url})")
        return db_webhook

    def get_by_id(self, webhook_id: str, organization_id: str | None = None) -> Webhook | None:
        """Fetch a webhook by id, optionally scoped to an organization."""
        webhook = self._session.get(Webhook, webhook_id)
        if webhook is None:
            return None
        if organization_id is not None and webhook.organization_id != organization_id:
            return None
        return webhook

    def get(self, webhook_id: str, organization_id: str | None = None) -> Webhook:
        """Like get_by_id but raises EndpointNotFoundError."""
        webhook = self.get_by_id(webhook_id, organization_id)
        if webhook is None:
            raise EndpointNotFoundError(webhook_id)
        return webhook

    def list_for_organization(
        self,
        organization_id: str,
        include_archived: bool = False,
        search: str | None = None,
    ) -> Sequence[Webhook]:
        """Organization's webhooks, newest first.

        ``search`` matches a case-insensitive part of the name or URL, or one
        of the subscribed event names exactly.
        """
        stmt = select(Webhook).where(Webhook.organization_id == organization_id)
        if not include_archived:
            stmt = stmt.where(Webhook.archived.is_(False))
        webhooks = self._session.scalars(stmt.order_by(Webhook.created_at.desc())).all()
        term = (search or "").strip()
        if not term:
            return webhooks
        needle = term.lower()
        return [
            wh
            for wh in webhooks
            if needle in wh.name.lower() or needle in wh.url.lower() or term in (wh.events or [])
        ]

    def list_subscribed(self, organization_id: str, event_type: str) -> list[Webhook]:
        """Active, non-archived webhooks of the organization subscribed to event_type.

        JSON containment differs between backends, so the subscription check
        runs in Python over the organization's active endpoints.
        """
        stmt = (
            select(Webhook)
            .where(
                Webhook.organization_id == organization_id,
                Webhook.is_active.is_(True),
                Webhook.archived.is_(False),
            )
            .order_by(Webhook.created_at)
        )
        return [wh for wh in self._session.scalars(stmt).all() if wh.listens_to(event_type)]

    def update(self, webhook_id: str, patch: WebhookUpdate, organization_id: str | None = None) -> Webhook:
        """Apply the provided fields of ``patch``.

        Raises:
            EndpointNotFoundError: unknown webhook
            DuplicateEndpointError: renamed onto an existing name
        """
        db_webhook = self.get(webhook_id, organization_id)

        if patch.max_retries is not None:
            self._check_max_retries(patch.max_retries)
            db_webhook.max_retries = patch.max_retries
        if patch.name is not None and patch.name != db_webhook.name:
            if self._name_taken(db_webhook.organization_id, patch.name, exclude_id=db_webhook.id):
                raise DuplicateEndpointError(
                    f"Webhook named {patch.name!r} already exists in organization {db_webhook.organization_id}"
                )
            db_webhook.name = patch.name
        if patch.url is not None:
            db_webhook.url = validate_endpoint_url(patch.url)
        if patch.events is not None:
            db_webhook.events = list(patch.events)
        if patch.headers is not None:
            db_webhook.headers = dict(patch.headers)

        self._commit_or_duplicate(db_webhook.organization_id, db_webhook.name)
        self._session.refresh(db_webhook)
        return db_webhook

    def _set_active(self, webhook_id: str, is_active: bool, organization_id: str | None) -> Webhook:
        db_webhook = self.get(webhook_id, organization_id)
        if is_active and db_webhook.archived:
            raise InvalidEndpointConfigError(f"Webhook {webhook_id} is archived and cannot be reactivated")
        db_webhook.is_active = is_active
        self._session.commit()
        self._session.refresh(db_webhook)
        logger.info(f"Webhook {webhook_id} {'reactivated' if is_active else 'deactivated'}")
        return db_webhook

    def deactivate(self, webhook_id: str, organization_id: str | None = None) -> Webhook:
        """Stop deliveries. Open retries are cancelled by the worker/poller."""
        return self._set_active(webhook_id, False, organization_id)

    def reactivate(self, webhook_id: str, organization_id: str | None = None) -> Webhook:
        return self._set_active(webhook_id, True, organization_id)

    def archive(self, webhook_id: str, organization_id: str | None = None) -> Webhook:
        """Soft delete: deactivate, flag archived and tombstone its delivery events.

        Rows are kept so historical deliveries stay attributable.
        """
        db_webhook = self.get(webhook_id, organization_id)
        now = utcnow()
        db_webhook.is_active = False
        db_webhook.archived = True
        cancelled = DeliveryStore(self._session).archive_for_webhook(db_webhook.id, now)
        self._session.commit()
        self._session.refresh(db_webhook)
        logger.info(f"Archived webhook {webhook_id} ({cancelled} open deliveries cancelled)")
        return db_webhook

    def rotate_secret(self, webhook_id: str, organization_id: str | None = None) -> str:
        """Generate and persist a new secret. The previous one is irrecoverable."""
        db_webhook = self.get(webhook_id, organization_id)
        new_secret = generate_secret()
        db_webhook.secret = new_secret
        self._session.commit()
        logger.info(f"Rotated signing secret for webhook {webhook_id}")
        return new_secret
