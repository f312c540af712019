"""Hand-off from services to the Celery delivery queue."""
from __future__ import annotations

from typing import Callable

Enqueue = Callable[[str], None]


def enqueue_delivery(attempt_id: str) -> None:
    """Queue one delivery attempt on the worker pool."""
    # Imported lazily: the task module itself imports the services package.
    from hookline.tasks.webhook_tasks import deliver_webhook_task

    deliver_webhook_task.delay(attempt_id)
