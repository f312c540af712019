"""ORM models exposed for external modules."""
from .base import Base, UTCDateTime, utcnow
from .webhook import Webhook
from .webhook_delivery import (
    CLAIMABLE_STATUSES,
    TERMINAL_STATUSES,
    DeliveryAttempt,
    DeliveryEvent,
    DeliveryStatus,
)

__all__ = [
    "Base",
    "UTCDateTime",
    "utcnow",
    "Webhook",
    "DeliveryAttempt",
    "DeliveryEvent",
    "DeliveryStatus",
    "CLAIMABLE_STATUSES",
    "TERMINAL_STATUSES",
]
