"""
Alembic migration environment for Booking Sync.

The database URL always comes from DATABASE_URL via application settings;
the value in alembic.ini is only a placeholder.
"""

import logging
from logging.config import fileConfig

from sqlalchemy import engine_from_config, pool

from alembic import context

from booking_sync.config import get_settings
from booking_sync.models import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

logger = logging.getLogger("alembic.env")

database_url = get_settings().database_url
config.set_main_option("sqlalchemy.url", database_url)

# SQLite cannot ALTER most constraints in place
MIGRATION_OPTIONS = {
    "target_metadata": Base.metadata,
    "render_as_batch": database_url.lower().startswith("sqlite"),
    "compare_type": True,
}


def run_migrations_offline() -> None:
    """Emit the migration SQL to the script output without connecting."""
    context.configure(
        url=database_url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **MIGRATION_OPTIONS,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Apply migrations over a dedicated, unpooled connection."""
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(connection=connection, **MIGRATION_OPTIONS)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    logger.info(f"Generating migration SQL for {database_url}")
    run_migrations_offline()
else:
    logger.info("Running migrations online")
    run_migrations_online()
