
"""Ambiente de migrações da ponte: tabelas `topic_mappings` e `bridge_filters`."""
from logging.config import fileConfig
from sqlalchemy import engine_from_config, pool
from alembic import context
import os

from ponte_bot.repo.models import Base

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Metadata dos modelos, usada pelo --autogenerate
target_metadata = Base.metadata


def database_url() -> str:
    """URL do banco: PB_DATABASE_URL ou o mesmo default das Settings."""
    return os.environ.get("PB_DATABASE_URL") or config.get_main_option("sqlalchemy.url") or "sqlite:///ponte.db"


def run_migrations_offline():
    context.configure(
        url=database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        render_as_batch=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online():
    connectable = engine_from_config({}, prefix="sqlalchemy.", poolclass=pool.NullPool, url=database_url())
    with connectable.connect() as connection:
        # SQLite não tem ALTER completo; batch mode recria a tabela
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            render_as_batch=connection.dialect.name == "sqlite",
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
