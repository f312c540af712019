"""Tests for WebhookRegistry CRUD and lifecycle operations."""
from __future__ import annotations

import pytest
from pydantic import ValidationError

from hookline.core.errors import (
    DuplicateEndpointError,
    EndpointNotFoundError,
    InvalidEndpointConfigError,
    InvalidUrlError,
)
from hookline.models.webhook_delivery import DeliveryStatus
from hookline.schemas.webhook import WebhookCreate, WebhookUpdate, validate_endpoint_url
from hookline.services.dispatcher import DeliveryDispatcher
from hookline.services.webhook_registry import generate_secret


class TestValidation:
    """URL, events and headers are validated before anything is stored."""

    @pytest.mark.parametrize(
        "url",
        ["ftp://example.com/hook", "example.com/hook", "", "https://", "not a url"],
    )
    def test_invalid_urls_rejected(self, url):
        with pytest.raises(InvalidUrlError):
            validate_endpoint_url(url)

    def test_valid_url_is_stripped(self):
        assert validate_endpoint_url("  https://example.com/hook  ") == "https://example.com/hook"

    def test_schema_rejects_bad_url(self):
        with pytest.raises(ValidationError):
            WebhookCreate(name="a", url="ftp://example.com", events=["order.created"])

    def test_schema_rejects_empty_events(self):
        with pytest.raises(ValidationError):
            WebhookCreate(name="a", url="https://example.com", events=[])

    def test_events_are_deduplicated_in_order(self):
        webhook = WebhookCreate(
            name="a",
            url="https://example.com",
            events=["order.created", " order.shipped ", "order.created"],
        )
        assert webhook.events == ["order.created", "order.shipped"]

    def test_reserved_headers_rejected(self):
        with pytest.raises(ValidationError):
            WebhookCreate(
                name="a",
                url="https://example.com",
                events=["order.created"],
                headers={"x-webhook-signature": "forged"},
            )

    @pytest.mark.parametrize("headers", [{"X-Tenant": "Zürich"}, {"X-Ünit": "eu"}])
    def test_non_ascii_headers_rejected(self, headers):
        with pytest.raises(ValidationError, match="must be ASCII"):
            WebhookCreate(name="a", url="https://example.com", events=["order.created"], headers=headers)

    def test_update_rejects_non_ascii_headers(self):
        with pytest.raises(ValidationError):
            WebhookUpdate(headers={"X-Tenant": "Zürich"})


class TestCreate:
    def test_create_generates_secret(self, make_webhook):
        webhook = make_webhook(secret=None)

        assert webhook.secret.startswith("whsec_")
        assert len(webhook.secret) == len("whsec_") + 64
        assert webhook.is_active is True
        assert webhook.archived is False
        assert webhook.failure_count == 0
        assert webhook.max_retries == 3

    def test_create_keeps_supplied_secret(self, make_webhook):
        webhook = make_webhook(secret="my-own-secret-value-123")
        assert webhook.secret == "my-own-secret-value-123"

    def test_generated_secrets_are_unique(self):
        assert generate_secret() != generate_secret()

    def test_duplicate_name_in_organization_rejected(self, make_webhook):
        make_webhook(name="orders")
        with pytest.raises(DuplicateEndpointError):
            make_webhook(name="orders")

    def test_same_name_in_other_organization_allowed(self, make_webhook):
        first = make_webhook("org_1", name="orders")
        second = make_webhook("org_2", name="orders")
        assert first.id != second.id

    def test_max_retries_above_limit_rejected(self, make_webhook):
        with pytest.raises(InvalidEndpointConfigError):
            make_webhook(max_retries=11)


class TestLookup:
    def test_get_is_scoped_to_organization(self, registry, make_webhook):
        webhook = make_webhook("org_1")

        assert registry.get(webhook.id, "org_1").id == webhook.id
        assert registry.get_by_id(webhook.id, "org_2") is None
        with pytest.raises(EndpointNotFoundError):
            registry.get(webhook.id, "org_2")

    def test_list_subscribed_filters_events_and_activity(self, registry, make_webhook):
        created = make_webhook(events=["order.created"])
        make_webhook(events=["order.shipped"])
        inactive = make_webhook(events=["order.created"], is_active=False)

        subscribed = registry.list_subscribed("org_1", "order.created")

        assert [w.id for w in subscribed] == [created.id]
        assert inactive.id not in [w.id for w in subscribed]

    def test_list_excludes_archived_by_default(self, registry, make_webhook):
        kept = make_webhook()
        archived = make_webhook()
        registry.archive(archived.id)

        assert [w.id for w in registry.list_for_organization("org_1")] == [kept.id]
        assert len(registry.list_for_organization("org_1", include_archived=True)) == 2

    def test_search_matches_name_url_or_event(self, registry, make_webhook):
        orders = make_webhook(name="Orders feed", url="https://hooks.example.com/orders", events=["order.created"])
        billing = make_webhook(name="billing", url="https://pay.example.net/in", events=["invoice.paid"])

        assert [w.id for w in registry.list_for_organization("org_1", search="ORDERS")] == [orders.id]
        assert [w.id for w in registry.list_for_organization("org_1", search="example.net")] == [billing.id]
        assert [w.id for w in registry.list_for_organization("org_1", search="invoice.paid")] == [billing.id]
        assert registry.list_for_organization("org_1", search="invoice") == []
        assert len(registry.list_for_organization("org_1", search="  ")) == 2


class TestUpdate:
    def test_partial_update(self, registry, make_webhook):
        webhook = make_webhook()

        updated = registry.update(
            webhook.id,
            WebhookUpdate(url="https://new.example.com/hook", events=["invoice.paid"], max_retries=5),
        )

        assert updated.url == "https://new.example.com/hook"
        assert updated.events == ["invoice.paid"]
        assert updated.max_retries == 5
        assert updated.name == webhook.name

    def test_rename_onto_existing_name_rejected(self, registry, make_webhook):
        make_webhook(name="orders")
        other = make_webhook(name="invoices")

        with pytest.raises(DuplicateEndpointError):
            registry.update(other.id, WebhookUpdate(name="orders"))

    def test_update_unknown_webhook(self, registry):
        with pytest.raises(EndpointNotFoundError):
            registry.update("missing", WebhookUpdate(name="x"))


class TestLifecycle:
    def test_deactivate_and_reactivate(self, registry, make_webhook):
        webhook = make_webhook()

        assert registry.deactivate(webhook.id).is_active is False
        assert registry.reactivate(webhook.id).is_active is True

    def test_archive_cancels_open_deliveries(self, db_session, registry, make_webhook, enqueued):
        webhook = make_webhook()
        dispatcher = DeliveryDispatcher(db_session, enqueue=enqueued.append)
        [event_id] = dispatcher.dispatch("org_1", "order.created", {"id": 1})

        archived = registry.archive(webhook.id)

        assert archived.archived is True
        assert archived.is_active is False
        event = dispatcher._store.get_event(event_id)
        db_session.refresh(event)
        assert event.status == DeliveryStatus.CANCELLED
        assert event.archived is True
        assert event.completed_at is not None
        assert event.attempts[0].is_success is False

    def test_archive_leaves_in_flight_delivery_to_its_worker(self, db_session, registry, make_webhook, enqueued):
        webhook = make_webhook()
        dispatcher = DeliveryDispatcher(db_session, enqueue=enqueued.append)
        [event_id] = dispatcher.dispatch("org_1", "order.created", {"id": 1})
        event = dispatcher._store.get_event(event_id)
        event.status = DeliveryStatus.PROCESSING
        db_session.commit()

        registry.archive(webhook.id)

        db_session.refresh(event)
        assert event.status == DeliveryStatus.PROCESSING
        assert event.archived is True
        assert event.completed_at is None
        assert event.attempts[0].is_success is None

    def test_archived_webhook_cannot_be_reactivated(self, registry, make_webhook):
        webhook = make_webhook()
        registry.archive(webhook.id)

        with pytest.raises(InvalidEndpointConfigError):
            registry.reactivate(webhook.id)

    def test_rotate_secret(self, registry, make_webhook):
        webhook = make_webhook()
        old_secret = webhook.secret

        new_secret = registry.rotate_secret(webhook.id)

        assert new_secret != old_secret
        assert new_secret.startswith("whsec_")
        assert registry.get(webhook.id).secret == new_secret
