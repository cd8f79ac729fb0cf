"""Alembic environment for the cycle count schema."""

from __future__ import annotations

import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine
from sqlalchemy.pool import NullPool

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

from cyclecount.db.base import Base  # noqa: E402
import cyclecount.models  # noqa: E402,F401

target_metadata = Base.metadata


def get_url() -> str:
    """
    Database URL, in order of precedence:
      1. sqlalchemy.url set on the Alembic config (tests, scripts)
      2. DATABASE_URL environment variable
      3. application settings
    """
    url = config.get_main_option("sqlalchemy.url") or os.getenv("DATABASE_URL")
    if not url:
        from cyclecount.core.config import settings
        url = settings.database_url
    return url.strip()


def run_migrations_offline() -> None:
    """Offline mode: emit SQL without connecting."""
    context.configure(
        url=get_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Online mode: run migrations against a live connection."""
    url = get_url()
    engine = create_engine(url, poolclass=NullPool)

    with engine.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            render_as_batch=url.startswith("sqlite"),
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
