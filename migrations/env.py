"""Alembic environment for the helpdesk tables the history import writes to."""

import logging
from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool
from sqlalchemy.engine import make_url

from helpdesk.config import settings
from helpdesk.database import normalize_database_url
from helpdesk.models import Base

config = context.config

if config.config_file_name:
    fileConfig(config.config_file_name)

logger = logging.getLogger("alembic.env")


def _database_url() -> str:
    # An explicit -x url=... wins over DATABASE_URL, for migrating a scratch database.
    url = context.get_x_argument(as_dictionary=True).get("url") or settings.DATABASE_URL
    url = normalize_database_url(url or "")
    if not url:
        raise RuntimeError("DATABASE_URL is not set. Set it in .env or environment for migrations.")
    return url


def _configure(**kwargs) -> None:
    context.configure(target_metadata=Base.metadata, compare_type=True, **kwargs)
    with context.begin_transaction():
        context.run_migrations()


def run_migrations() -> None:
    url = _database_url()
    logger.info("Migrating %s", make_url(url).render_as_string(hide_password=True))
    if context.is_offline_mode():
        _configure(url=url, literal_binds=True, dialect_opts={"paramstyle": "named"})
        return
    engine = create_engine(url, poolclass=pool.NullPool)
    try:
        with engine.connect() as connection:
            _configure(connection=connection)
    finally:
        engine.dispose()


run_migrations()
