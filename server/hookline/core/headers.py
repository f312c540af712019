"""Header names set by the engine on every outbound delivery."""

SIGNATURE_HEADER = "X-Webhook-Signature"
EVENT_HEADER = "X-Webhook-Event"
DELIVERY_HEADER = "X-Webhook-Delivery"
ATTEMPT_HEADER = "X-Webhook-Attempt"
TIMESTAMP_HEADER = "X-Webhook-Timestamp"
CONTENT_TYPE_HEADER = "Content-Type"

# Endpoint-configured headers may not override these (compared case-insensitively).
RESERVED_HEADERS = frozenset(
    name.lower()
    for name in (
        SIGNATURE_HEADER,
        EVENT_HEADER,
        DELIVERY_HEADER,
        ATTEMPT_HEADER,
        TIMESTAMP_HEADER,
        CONTENT_TYPE_HEADER,
    )
)
