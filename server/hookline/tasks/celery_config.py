"""Celery configuration for webhook delivery with reliability settings."""

from kombu import Exchange, Queue

# ==============================================================================
# BROKER & BACKEND CONFIGURATION
# ==============================================================================

broker_connection_retry_on_startup = True
broker_connection_retry = True
broker_connection_max_retries = 10

broker_pool_limit = 10
broker_heartbeat = 30  # Seconds between heartbeats to detect connection issues

# Delivery outcomes live in the database; task results are only for debugging
result_expires = 3600

# ==============================================================================
# TASK EXECUTION SETTINGS
# ==============================================================================

# ACK after the attempt is recorded; a lost worker gets its task redelivered
task_acks_late = True
task_reject_on_worker_lost = True
worker_prefetch_multiplier = 1  # One attempt at a time so a slow endpoint cannot hoard tasks

task_track_started = True
task_send_sent_event = True

# Serialization
task_serializer = "json"
accept_content = ["json"]  # Only accept JSON, prevent pickle attacks
result_serializer = "json"
timezone = "UTC"
enable_utc = True

# Retries are driven by the webhook retry scheduler, not by Celery
task_default_retry_delay = 0
task_max_retries = 0

# ==============================================================================
# QUEUE DEFINITIONS
# ==============================================================================

webhook_exchange = Exchange("webhooks", type="direct", durable=True)

task_queues = (
    Queue(
        "webhooks",
        exchange=webhook_exchange,
        routing_key="webhook.deliver",
        durable=True,
    ),
    # Scheduler ticks are cheap and idempotent; stale ones are dropped
    Queue(
        "webhook_scheduler",
        exchange=webhook_exchange,
        routing_key="webhook.schedule",
        queue_arguments={"x-message-ttl": 60000},
        durable=True,
    ),
)

task_default_queue = "webhooks"
task_default_exchange = "webhooks"
task_default_routing_key = "webhook.deliver"

# ==============================================================================
# TASK ROUTING
# ==============================================================================

task_routes = {
    "deliver_webhook": {"queue": "webhooks", "routing_key": "webhook.deliver"},
    "poll_webhook_retries": {"queue": "webhook_scheduler", "routing_key": "webhook.schedule"},
}

# ==============================================================================
# WORKER CONFIGURATION
# ==============================================================================

worker_max_tasks_per_child = 1000  # Restart worker after 1000 tasks to prevent memory leaks
worker_send_task_events = True
worker_log_format = "[%(asctime)s: %(levelname)s/%(processName)s] %(message)s"
worker_task_log_format = "[%(asctime)s: %(levelname)s/%(processName)s][%(task_name)s(%(task_id)s)] %(message)s"

task_default_delivery_mode = 2  # 2 = persistent, 1 = transient

# ==============================================================================
# TASK ANNOTATIONS (task-specific overrides)
# ==============================================================================

task_annotations = {
    # Must comfortably exceed the HTTP timeout
    "deliver_webhook": {
        "time_limit": 120,
        "soft_time_limit": 90,
    },
    "poll_webhook_retries": {
        "time_limit": 120,
        "soft_time_limit": 100,
    },
}

# ==============================================================================
# BEAT SCHEDULER
# ==============================================================================

# beat_schedule is filled in from settings in celery_app
beat_scheduler = "celery.beat:PersistentScheduler"
beat_schedule_filename = "/tmp/hookline-celerybeat-schedule"

task_protocol = 2
task_store_errors_even_if_ignored = True
