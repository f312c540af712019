"""Create webhooks, delivery events and delivery attempts tables."""
from __future__ import annotations

from alembic import op

# revision identifiers, used by Alembic.
revision = "001_webhook_delivery"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute(
        """
        DO $$
        BEGIN
            IF NOT EXISTS (SELECT 1 FROM pg_type WHERE typname = 'delivery_event_status') THEN
                CREATE TYPE delivery_event_status AS ENUM (
                    'pending', 'processing', 'retrying', 'processed', 'failed', 'cancelled'
                );
            END IF;
        END$$;
        """
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS webhooks (
            id VARCHAR(36) PRIMARY KEY,
            organization_id VARCHAR(64) NOT NULL,
            name VARCHAR(255) NOT NULL,
            url TEXT NOT NULL,
            events JSON NOT NULL,
            secret TEXT NOT NULL,
            headers JSON NOT NULL,
            is_active BOOLEAN NOT NULL DEFAULT true,
            archived BOOLEAN NOT NULL DEFAULT false,
            max_retries INTEGER NOT NULL DEFAULT 3,
            failure_count INTEGER NOT NULL DEFAULT 0,
            last_triggered_at TIMESTAMP WITH TIME ZONE,
            last_success_at TIMESTAMP WITH TIME ZONE,
            last_failure_at TIMESTAMP WITH TIME ZONE,
            created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT now(),
            updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT now(),
            CONSTRAINT uq_webhooks_organization_id_name UNIQUE (organization_id, name)
        );
        """
    )
    op.execute("CREATE INDEX IF NOT EXISTS ix_webhooks_organization_id ON webhooks (organization_id);")

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS webhook_delivery_events (
            id VARCHAR(36) PRIMARY KEY,
            webhook_id VARCHAR(36) NOT NULL,
            organization_id VARCHAR(64) NOT NULL,
            event_type VARCHAR(255) NOT NULL,
            payload TEXT NOT NULL,
            status delivery_event_status NOT NULL DEFAULT 'pending',
            attempt_count INTEGER NOT NULL DEFAULT 0,
            next_retry_at TIMESTAMP WITH TIME ZONE,
            last_error TEXT,
            archived BOOLEAN NOT NULL DEFAULT false,
            created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT now(),
            updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT now(),
            completed_at TIMESTAMP WITH TIME ZONE,
            CONSTRAINT fk_webhook_delivery_events_webhook_id_webhooks
                FOREIGN KEY (webhook_id)
                REFERENCES webhooks(id)
                ON DELETE RESTRICT
        );
        """
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_webhook_delivery_events_webhook_id "
        "ON webhook_delivery_events (webhook_id);"
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_webhook_delivery_events_organization_id "
        "ON webhook_delivery_events (organization_id);"
    )
    # Scheduler polls by (status, next_retry_at)
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_webhook_delivery_events_status_next_retry_at "
        "ON webhook_delivery_events (status, next_retry_at);"
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS webhook_delivery_attempts (
            id VARCHAR(36) PRIMARY KEY,
            delivery_event_id VARCHAR(36) NOT NULL,
            webhook_id VARCHAR(36) NOT NULL,
            event_type VARCHAR(255) NOT NULL,
            attempt_number INTEGER NOT NULL,
            payload TEXT NOT NULL,
            http_status INTEGER,
            response_body TEXT,
            response_headers JSON,
            response_time_ms INTEGER,
            is_success BOOLEAN,
            error_message TEXT,
            next_retry_at TIMESTAMP WITH TIME ZONE,
            delivered_at TIMESTAMP WITH TIME ZONE,
            created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT now(),
            CONSTRAINT uq_webhook_delivery_attempts_event_attempt UNIQUE (delivery_event_id, attempt_number),
            CONSTRAINT fk_webhook_delivery_attempts_delivery_event_id
                FOREIGN KEY (delivery_event_id)
                REFERENCES webhook_delivery_events(id)
                ON DELETE RESTRICT,
            CONSTRAINT fk_webhook_delivery_attempts_webhook_id_webhooks
                FOREIGN KEY (webhook_id)
                REFERENCES webhooks(id)
                ON DELETE RESTRICT
        );
        """
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_webhook_delivery_attempts_delivery_event_id "
        "ON webhook_delivery_attempts (delivery_event_id);"
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_webhook_delivery_attempts_webhook_id "
        "ON webhook_delivery_attempts (webhook_id);"
    )


def downgrade() -> None:
    # Children first due to FKs
    op.drop_table("webhook_delivery_attempts")
    op.drop_table("webhook_delivery_events")
    op.drop_table("webhooks")
    op.execute("DROP TYPE IF EXISTS delivery_event_status;")
