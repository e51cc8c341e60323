"""Alembic environment for the TC Booking Flow schema.

From backend/:
    alembic upgrade head                          # apply pending revisions
    alembic -x db_url=sqlite:///./other.db upgrade head
    alembic revision --autogenerate -m "..."      # new revision from the models
    alembic upgrade head --sql                    # print SQL, no connection

The target is ``settings.sync_db_url()`` (TCBF_DB_URL with the async driver
swapped for its sync counterpart) unless ``-x db_url=`` overrides it.
"""

from __future__ import annotations

import os
import sys
from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from tcbf.config import settings  # noqa: E402
from tcbf.db.models import Base  # noqa: E402

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

db_url = context.get_x_argument(as_dictionary=True).get("db_url") or settings.sync_db_url()
config.set_main_option("sqlalchemy.url", db_url)

# SQLite needs batch mode for ALTER TABLE.
_batch = db_url.startswith("sqlite")


def run_migrations_offline() -> None:
    context.configure(
        url=db_url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
        render_as_batch=_batch,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            render_as_batch=_batch,
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
