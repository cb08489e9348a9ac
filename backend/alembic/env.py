"""Alembic environment configuration."""

from __future__ import annotations

import asyncio

import structlog
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config

import voiceops.db.models  # noqa: F401  # Ensure models are registered
from alembic import context
from voiceops.config import get_settings
from voiceops.db.base import Base
from voiceops.logging_config import configure_logging

config = context.config

configure_logging()
logger = structlog.get_logger("alembic")


def get_database_url() -> str:
    """Load database URL from settings, unless alembic.ini overrides it."""
    return config.get_main_option("sqlalchemy.url") or get_settings().database_url


target_metadata = Base.metadata


def _configure(database_url: str, **kwargs) -> None:
    context.configure(
        target_metadata=target_metadata,
        compare_type=True,
        # SQLite cannot ALTER most constraints in place
        render_as_batch=database_url.startswith("sqlite"),
        **kwargs,
    )


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode."""
    url = get_database_url()
    _configure(url, url=url, literal_binds=True, dialect_opts={"paramstyle": "named"})

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    """Run migrations with a provided connection."""
    _configure(str(connection.engine.url), connection=connection)

    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    """Run migrations in 'online' mode."""
    configuration = config.get_section(config.config_ini_section) or {}
    configuration["sqlalchemy.url"] = get_database_url()

    connectable = async_engine_from_config(
        configuration,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)

    await connectable.dispose()
    logger.info("migrations_applied", url=connectable.url.render_as_string(hide_password=True))


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
