from __future__ import annotations

from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from pm_arb.config import settings

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Revisions are op.execute SQL: the active-arb and running-row keys are partial
# unique indexes (WHERE resolved_at IS NULL, WHERE status = 'running') that
# autogenerate cannot diff, so there is no target_metadata.
VERSION_TABLE = "pm_arb_alembic_version"


def get_url() -> str:
    # psycopg sync driver; DATABASE_URL_SYNC overrides via Settings
    return settings.database_url_sync


def run_migrations_offline() -> None:
    context.configure(
        url=get_url(), literal_binds=True, dialect_opts={"paramstyle": "named"}, version_table=VERSION_TABLE
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    section = config.get_section(config.config_ini_section) or {}
    section["sqlalchemy.url"] = get_url()
    connectable = engine_from_config(section, prefix="sqlalchemy.", poolclass=pool.NullPool)

    with connectable.connect() as connection:
        context.configure(connection=connection, version_table=VERSION_TABLE)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
