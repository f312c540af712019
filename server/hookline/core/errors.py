"""Exception hierarchy for webhook registration and delivery.

Configuration errors are raised synchronously to the caller and are never
retried. Delivery errors describe the outcome of a single HTTP attempt and
are recorded on the attempt row rather than propagated to producers.
"""
from __future__ import annotations


class WebhookError(Exception):
    """Base class for all webhook engine errors."""


class ConfigurationError(WebhookError):
    """Endpoint configuration was rejected."""


class EndpointNotFoundError(ConfigurationError):
    """No endpoint with the given id exists (in the given organization)."""

    def __init__(self, webhook_id: str) -> None:
        super().__init__(f"Webhook {webhook_id} not found")
        self.webhook_id = webhook_id


class InvalidUrlError(ConfigurationError, ValueError):
    """Endpoint URL is not an absolute http(s) URL."""


class DuplicateEndpointError(ConfigurationError):
    """An endpoint with the same name already exists in the organization."""


class InvalidEndpointConfigError(ConfigurationError, ValueError):
    """Events, headers or retry limit are invalid."""


class InvalidPayloadError(WebhookError, ValueError):
    """Event data could not be serialized to JSON."""


class DeliveryEventNotFoundError(WebhookError):
    """No delivery event with the given id exists."""

    def __init__(self, event_id: str) -> None:
        super().__init__(f"Delivery event {event_id} not found")
        self.event_id = event_id


class DeliveryEventTerminalError(WebhookError):
    """Delivery event already reached processed, failed or cancelled."""


class DeliveryError(WebhookError):
    """A delivery attempt did not succeed."""

    retryable = True

    def __init__(self, message: str, http_status: int | None = None) -> None:
        super().__init__(message)
        self.http_status = http_status


class TransientDeliveryError(DeliveryError):
    """Timeout, connection failure, 5xx or 429."""


class PermanentDeliveryError(DeliveryError):
    """Any other non-2xx response.

    Still retried against the endpoint's budget; the flag only documents
    that a retry is unlikely to help.
    """

    retryable = False


class BudgetExhaustedError(DeliveryError):
    """The endpoint's retry budget has been used up."""

    retryable = False

    def __init__(self, attempt_number: int, max_retries: int) -> None:
        super().__init__(f"Retry budget exhausted after {attempt_number} of {max_retries} attempts")
        self.attempt_number = attempt_number
        self.max_retries = max_retries
