"""Alembic environment for the letters database.

Revisions are imperative SQL with no bound metadata. The database URL is
taken from the caller (``services.migrations`` sets ``database_url``), then
``DATABASE_URL``, then ``alembic.ini``.
"""
from __future__ import annotations

import logging
import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool

config = context.config
# The app configures logging itself; only the CLI needs the ini handlers.
if config.config_file_name is not None and not logging.getLogger().handlers:
    fileConfig(config.config_file_name, disable_existing_loggers=False)


def database_url() -> str:
    url = (
        config.attributes.get("database_url")
        or os.environ.get("DATABASE_URL")
        or config.get_main_option("sqlalchemy.url")
    )
    if not url:
        raise RuntimeError("No database URL configured for migrations")
    # The service reaches SQLite through aiosqlite; migrations use the sync driver.
    return url.replace("sqlite+aiosqlite://", "sqlite://", 1)


def run_online() -> None:
    engine = create_engine(database_url(), poolclass=pool.NullPool)
    try:
        with engine.connect() as connection:
            context.configure(connection=connection, target_metadata=None)
            with context.begin_transaction():
                context.run_migrations()
    finally:
        engine.dispose()


if context.is_offline_mode():
    raise RuntimeError("Offline SQL generation is unsupported: revisions inspect the live schema")
run_online()
