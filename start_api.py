#!/usr/bin/env python3
"""Container entrypoint: wait for Postgres, migrate, seed the admin account, exec uvicorn."""
import logging
import os
import sys

import wait_for_db  # noqa: F401  blocks until the database accepts connections

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from servixing.core.config import settings
from servixing.core.log_config import configure_logging

logger = logging.getLogger("start_api")


def migrate() -> None:
    cfg = Config(os.path.join(os.path.dirname(os.path.abspath(__file__)), "alembic.ini"))
    cfg.set_main_option("sqlalchemy.url", settings.DATABASE_URL)
    command.upgrade(cfg, "head")
    logger.info("Migrations applied")


def seed() -> None:
    from servixing.seed import run

    # Fresh engine: the app engine may have been created before the tables existed.
    engine = create_engine(settings.DATABASE_URL, pool_pre_ping=True)
    try:
        run(sessionmaker(autoflush=False, bind=engine)())
    finally:
        engine.dispose()


def serve() -> None:
    port = os.getenv("PORT", "8000")
    logger.info("Starting uvicorn on port %s", port)
    os.execv(sys.executable, [sys.executable, "-m", "uvicorn", "servixing.main:app", "--host", "0.0.0.0", "--port", port])


if __name__ == "__main__":
    configure_logging(settings.LOG_LEVEL)
    migrate()
    seed()
    serve()
