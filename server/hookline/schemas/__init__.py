"""Public schema exports."""

from .webhook import (
    DeliveryAttemptResponse,
    DeliveryEventResponse,
    DeliveryFilters,
    DeliveryPage,
    DispatchRequest,
    DispatchResponse,
    HealthStatus,
    SecretRotationResponse,
    WebhookCreate,
    WebhookCreatedResponse,
    WebhookHealth,
    WebhookResponse,
    WebhookTestResponse,
    WebhookUpdate,
)

__all__ = [
    "DeliveryAttemptResponse",
    "DeliveryEventResponse",
    "DeliveryFilters",
    "DeliveryPage",
    "DispatchRequest",
    "DispatchResponse",
    "HealthStatus",
    "SecretRotationResponse",
    "WebhookCreate",
    "WebhookCreatedResponse",
    "WebhookHealth",
    "WebhookResponse",
    "WebhookTestResponse",
    "WebhookUpdate",
]
