"""Core application utilities and infrastructure."""
from .config import Settings, get_settings
from .errors import (
    BudgetExhaustedError,
    ConfigurationError,
    DeliveryError,
    DeliveryEventNotFoundError,
    DeliveryEventTerminalError,
    DuplicateEndpointError,
    EndpointNotFoundError,
    InvalidEndpointConfigError,
    InvalidPayloadError,
    InvalidUrlError,
    PermanentDeliveryError,
    TransientDeliveryError,
    WebhookError,
)

__all__ = [
    "Settings",
    "get_settings",
    "BudgetExhaustedError",
    "ConfigurationError",
    "DeliveryError",
    "DeliveryEventNotFoundError",
    "DeliveryEventTerminalError",
    "DuplicateEndpointError",
    "EndpointNotFoundError",
    "InvalidEndpointConfigError",
    "InvalidPayloadError",
    "InvalidUrlError",
    "PermanentDeliveryError",
    "TransientDeliveryError",
    "WebhookError",
]
