"""Pydantic schemas for webhook resources."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field, field_validator

from hookline.core.errors import InvalidEndpointConfigError, InvalidUrlError
from hookline.core.headers import RESERVED_HEADERS
from hookline.models.webhook_delivery import DeliveryStatus


def validate_endpoint_url(value: str) -> str:
    """Return the stripped URL or raise InvalidUrlError.

    Only absolute http/https URLs with a host are accepted.
    """
    candidate = (value or "").strip()
    try:
        parsed = httpx.URL(candidate)
    except (httpx.InvalidURL, TypeError) as e:
        raise InvalidUrlError(f"Invalid webhook URL: {e}") from e
    if parsed.scheme not in ("http", "https"):
        raise InvalidUrlError("URL must start with http:// or https://")
    if not parsed.host:
        raise InvalidUrlError("URL must include a host")
    return candidate


def normalize_events(value: list[str]) -> list[str]:
    """Strip, drop duplicates (keeping first occurrence) and reject empty lists."""
    events: list[str] = []
    for event in value:
        name = event.strip() if isinstance(event, str) else ""
        if not name:
            raise InvalidEndpointConfigError("Event names must be non-empty strings")
        if name not in events:
            events.append(name)
    if not events:
        raise InvalidEndpointConfigError("Events list cannot be empty")
    return events


def validate_custom_headers(value: dict[str, str]) -> dict[str, str]:
    """Reject headers that override engine headers or cannot be sent on the wire."""
    clashes = sorted(key for key in value if key.strip().lower() in RESERVED_HEADERS)
    if clashes:
        raise InvalidEndpointConfigError(f"Custom headers may not override: {', '.join(clashes)}")
    # HTTP/1.1 header fields are encoded as ASCII by the client.
    unsendable = sorted(key for key, val in value.items() if not (key.isascii() and val.isascii()))
    if unsendable:
        raise InvalidEndpointConfigError(f"Custom headers must be ASCII: {', '.join(unsendable)}")
    return {key.strip(): val for key, val in value.items()}


class HealthStatus(str, Enum):
    """Derived endpoint health."""

    HEALTHY = "healthy"
    FAILING = "failing"
    INACTIVE = "inactive"
    UNKNOWN = "unknown"


class WebhookBase(BaseModel):
    """Shared attributes for webhook payloads."""

    name: str = Field(min_length=1, max_length=255, description="Human readable name, unique per organization")
    url: str = Field(description="Webhook URL to receive POST requests")
    events: list[str] = Field(description="Event types to subscribe to")
    headers: dict[str, str] = Field(default_factory=dict, description="Custom headers sent with every delivery")
    is_active: bool = Field(default=True, description="Whether the webhook receives deliveries")
    max_retries: int = Field(default=3, ge=1, description="Attempts per event before giving up")

    @field_validator("url")
    @classmethod
    def validate_url(cls, value: str) -> str:
        return validate_endpoint_url(value)

    @field_validator("events")
    @classmethod
    def validate_events(cls, value: list[str]) -> list[str]:
        return normalize_events(value)

    @field_validator("headers")
    @classmethod
    def validate_headers(cls, value: dict[str, str]) -> dict[str, str]:
        return validate_custom_headers(value)


class WebhookCreate(WebhookBase):
    """Payload used when creating a webhook.

    ``secret`` is optional; a random one is generated when omitted.
    """

    secret: str | None = Field(default=None, min_length=16, description="Signing secret")


class WebhookUpdate(BaseModel):
    """Payload used when updating a webhook (all fields optional)."""

    name: str | None = Field(default=None, min_length=1, max_length=255)
    url: str | None = Field(default=None, description="Webhook URL to receive POST requests")
    events: list[str] | None = Field(default=None, description="Event types to subscribe to")
    headers: dict[str, str] | None = Field(default=None, description="Replaces all custom headers")
    max_retries: int | None = Field(default=None, ge=1)

    @field_validator("url")
    @classmethod
    def validate_url(cls, value: str | None) -> str | None:
        if value is None:
            return value
        return validate_endpoint_url(value)

    @field_validator("events")
    @classmethod
    def validate_events(cls, value: list[str] | None) -> list[str] | None:
        if value is None:
            return value
        return normalize_events(value)

    @field_validator("headers")
    @classmethod
    def validate_headers(cls, value: dict[str, str] | None) -> dict[str, str] | None:
        if value is None:
            return value
        return validate_custom_headers(value)


class WebhookResponse(BaseModel):
    """Response model returned by API endpoints. Never includes the secret."""

    id: str
    organization_id: str
    name: str
    url: str
    events: list[str]
    headers: dict[str, str]
    is_active: bool
    archived: bool
    max_retries: int
    failure_count: int
    last_triggered_at: datetime | None
    last_success_at: datetime | None
    last_failure_at: datetime | None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class WebhookCreatedResponse(WebhookResponse):
    """Returned once on creation; the only time the secret is readable."""

    secret: str


class SecretRotationResponse(BaseModel):
    webhook_id: str
    secret: str = Field(description="New signing secret; the previous one is no longer valid")


class WebhookHealth(BaseModel):
    """Health snapshot for one endpoint."""

    webhook_id: str
    status: HealthStatus
    failure_count: int
    last_triggered_at: datetime | None
    last_success_at: datetime | None
    last_failure_at: datetime | None
    success_rate: float = Field(description="Percent of terminal deliveries that succeeded")
    processed_count: int
    failed_count: int


class DeliveryAttemptResponse(BaseModel):
    """One HTTP attempt in a delivery history."""

    id: str
    delivery_event_id: str
    webhook_id: str
    event_type: str
    attempt_number: int
    status: str
    http_status: int | None
    response_body: str | None
    response_headers: dict[str, str] | None
    response_time_ms: int | None
    is_success: bool | None
    error_message: str | None
    next_retry_at: datetime | None
    delivered_at: datetime | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class DeliveryEventResponse(BaseModel):
    """Status of one logical delivery, with its attempts."""

    id: str
    webhook_id: str
    organization_id: str
    event_type: str
    status: DeliveryStatus
    attempt_count: int
    next_retry_at: datetime | None
    last_error: str | None
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None
    payload: dict[str, Any] = Field(validation_alias="payload_data")
    attempts: list[DeliveryAttemptResponse] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class DeliveryFilters(BaseModel):
    """Filters accepted by delivery history queries."""

    event_type: str | None = None
    status: DeliveryStatus | None = None
    is_success: bool | None = None
    http_status_min: int | None = Field(default=None, ge=100, le=599)
    http_status_max: int | None = Field(default=None, ge=100, le=599)
    since: datetime | None = None
    until: datetime | None = None
    limit: int = Field(default=50, ge=1, le=100)
    offset: int = Field(default=0, ge=0)


class DeliveryPage(BaseModel):
    items: list[DeliveryAttemptResponse]
    total: int
    page: int
    page_size: int


class DispatchRequest(BaseModel):
    """Event fired by a producer."""

    event_type: str = Field(min_length=1, max_length=255)
    data: dict[str, Any] = Field(default_factory=dict)


class DispatchResponse(BaseModel):
    event_type: str
    delivery_event_ids: list[str]


class WebhookTestResponse(BaseModel):
    """Response model for webhook test endpoint."""

    webhook_id: str
    delivery_event_id: str
    status: DeliveryStatus
