#!/usr/bin/env python3
"""Run Alembic migrations before starting the API, workers or beat.

Delivery state lives entirely in the database, so nothing should start
against a schema that is behind the code.
"""
import logging
import sys
import time
from pathlib import Path

from alembic import command
from alembic.config import Config
from alembic.script import ScriptDirectory
from sqlalchemy import create_engine, text
from sqlalchemy.exc import OperationalError

from hookline.core.config import get_settings

logger = logging.getLogger(__name__)
logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] %(levelname)s - %(message)s",
)


def wait_for_db(database_url: str, max_retries: int = 30, retry_interval: int = 2) -> bool:
    """Wait for database to become available.

    Args:
        database_url: SQLAlchemy database URL
        max_retries: Maximum number of connection attempts
        retry_interval: Seconds to wait between retries

    Returns:
        True if database is available, False otherwise
    """
    logger.info("Waiting for database to become available...")
    engine = create_engine(database_url, pool_pre_ping=True)
    try:
        for attempt in range(1, max_retries + 1):
            try:
                with engine.connect() as conn:
                    conn.execute(text("SELECT 1"))
                logger.info("Database connection established")
                return True
            except OperationalError as e:
                if attempt == max_retries:
                    logger.error(f"Failed to connect to database after {max_retries} attempts: {e}")
                    return False
                logger.warning(f"Attempt {attempt}/{max_retries} failed, retrying in {retry_interval}s...")
                time.sleep(retry_interval)
    finally:
        engine.dispose()
    return False


def run_migrations(database_url: str) -> bool:
    """Upgrade the database to the latest revision.

    Returns:
        True if migrations succeeded, False otherwise
    """
    alembic_ini_path = Path(__file__).parent.parent / "alembic.ini"
    if not alembic_ini_path.exists():
        logger.error(f"Alembic config not found at {alembic_ini_path}")
        return False

    alembic_cfg = Config(str(alembic_ini_path))
    alembic_cfg.set_main_option("sqlalchemy.url", database_url)

    script = ScriptDirectory.from_config(alembic_cfg)
    for rev in script.walk_revisions():
        logger.info(f"Available migration {rev.revision}: {rev.doc}")

    try:
        command.upgrade(alembic_cfg, "head")
    except Exception as e:
        logger.error(f"Migration failed: {e}", exc_info=True)
        return False

    logger.info("Migrations completed successfully")
    return True


def main() -> int:
    settings = get_settings()

    if not wait_for_db(settings.database_url):
        logger.error("Database is not available. Exiting.")
        return 1

    if not run_migrations(settings.database_url):
        logger.error("Migrations failed. Exiting.")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
