#!/usr/bin/env python3
"""
Run migrations (same process, same DATABASE_URL), then seed, then uvicorn.
Ensures the sheet table exists before seed and app start.
"""
import logging
import os
import sys
import time

from sqlalchemy.engine import make_url

from aquaflow.core.config import settings
from aquaflow.core.logging import configure_logging

logger = logging.getLogger("start_api")


def wait_for_db(url: str, timeout_s: int) -> None:
    """Poll Postgres until it accepts a connection; re-raise the last error after ``timeout_s``."""
    import psycopg2

    u = make_url(url)
    start = time.time()
    logger.info("waiting for Postgres at %s:%s db=%s (timeout=%ss)", u.host, u.port or 5432, u.database, timeout_s)
    while True:
        try:
            psycopg2.connect(
                host=u.host or "localhost",
                port=u.port or 5432,
                user=u.username,
                password=u.password,
                dbname=u.database,
            ).close()
            logger.info("Postgres is ready")
            return
        except psycopg2.OperationalError as e:
            if time.time() - start > timeout_s:
                logger.error("timed out waiting for Postgres: %s", e)
                raise
            time.sleep(1)


def main() -> None:
    configure_logging()

    # 1) Wait for DB (Postgres only; SQLite needs its data directory)
    if settings.DATABASE_URL.startswith("postgresql"):
        wait_for_db(settings.DATABASE_URL, settings.DB_WAIT_TIMEOUT_SECONDS)
    else:
        os.makedirs("data", exist_ok=True)

    # 2) Run migrations using the same settings as the app
    from alembic.config import Config
    from alembic import command

    alembic_cfg = Config(os.path.join(os.path.dirname(os.path.abspath(__file__)), "alembic.ini"))
    alembic_cfg.set_main_option("sqlalchemy.url", settings.DATABASE_URL)
    command.upgrade(alembic_cfg, "head")

    # 3) Seed default settings through the same store the API uses
    from aquaflow.seed import run as run_seed
    run_seed()

    # 4) Start uvicorn (replace current process). One worker: the store write lock is per process.
    logger.info("starting uvicorn on :8000")
    os.execv(
        sys.executable,
        [sys.executable, "-m", "uvicorn", "aquaflow.main:app", "--host", "0.0.0.0", "--port", "8000", "--workers", "1"],
    )


if __name__ == "__main__":
    main()
