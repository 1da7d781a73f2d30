"""Alembic environment for the consultancy CRM sync schema.

  alembic upgrade head

Runs synchronously against DATABASE_URL with the asyncpg driver stripped.
"""

from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool

from src.consultancy.config import get_settings
from src.consultancy.core.database import Base
import src.consultancy.integrations.models  # noqa: F401
import src.consultancy.orders.models  # noqa: F401
import src.consultancy.sync.models  # noqa: F401

# Alembic Config object
config = context.config

# Interpret the config file for Python logging
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode."""
    settings = get_settings()
    url = settings.DATABASE_URL.replace("+asyncpg", "")

    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode."""
    settings = get_settings()
    url = settings.DATABASE_URL.replace("+asyncpg", "")

    connectable = create_engine(url, poolclass=pool.NullPool)

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
