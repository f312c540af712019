"""Services module for webhook registration and delivery."""
from __future__ import annotations

from .delivery_store import DeliveryStore
from .delivery_worker import DeliveryOutcome, DeliveryWorker
from .dispatcher import DeliveryDispatcher
from .health_tracker import HealthTracker
from .retry_scheduler import RetryScheduler, SchedulerRunResult, compute_retry_delay
from .signer import sign, verify
from .webhook_registry import WebhookRegistry, generate_secret

__all__ = [
    "DeliveryDispatcher",
    "DeliveryOutcome",
    "DeliveryStore",
    "DeliveryWorker",
    "HealthTracker",
    "RetryScheduler",
    "SchedulerRunResult",
    "WebhookRegistry",
    "compute_retry_delay",
    "generate_secret",
    "sign",
    "verify",
]
