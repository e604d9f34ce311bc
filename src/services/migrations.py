"""Alembic migration helpers for runtime initialization."""
from __future__ import annotations

import logging
from pathlib import Path

from alembic import command
from alembic.config import Config

logger = logging.getLogger(__name__)

_PROJECT_ROOT = Path(__file__).resolve().parents[2]


def run_migrations(database_path: Path) -> None:
    """Run Alembic migrations against the provided SQLite database."""

    config = Config(str(_PROJECT_ROOT / "alembic.ini"))
    config.set_main_option("script_location", str(_PROJECT_ROOT / "alembic"))
    config.attributes["database_url"] = f"sqlite:///{database_path}"
    command.upgrade(config, "head")
    logger.info("Database migrations complete for %s", database_path)
