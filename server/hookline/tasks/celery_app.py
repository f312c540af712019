"""Celery application factory for webhook delivery workers and the retry beat."""

from celery import Celery

from hookline.core.config import get_settings

settings = get_settings()

# Create Celery app instance
celery_app = Celery(
    "hookline",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["hookline.tasks.webhook_tasks"],
)

# Load configuration from celery_config module
celery_app.config_from_object("hookline.tasks.celery_config")

# Settings-driven values that the static config module cannot know
celery_app.conf.update(
    broker_connection_retry_on_startup=True,
    broker_connection_retry=True,
    worker_concurrency=settings.worker_concurrency,
    beat_schedule={
        "poll-webhook-retries": {
            "task": "poll_webhook_retries",
            "schedule": settings.retry_poll_interval_seconds,
            "options": {"queue": "webhook_scheduler", "expires": settings.retry_poll_interval_seconds},
        },
    },
)


def get_celery_app() -> Celery:
    """Return the configured Celery application instance.

    Useful for dependency injection in tests and for explicit imports.
    """
    return celery_app
