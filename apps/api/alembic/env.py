from logging.config import fileConfig
from typing import Any

from alembic import context
from sqlalchemy import create_engine, pool

from app.core.config import get_settings
from app.core.database import Base

# Registers CRM and activity tables on Base.metadata.
import app.crm.models  # noqa: F401
import app.platform.activity.models  # noqa: F401

alembic_config = context.config
if alembic_config.config_file_name is not None:
    fileConfig(alembic_config.config_file_name)

# DATABASE_URL drives migrations the same way it drives the API; alembic.ini is the fallback.
database_url = get_settings().database_url or alembic_config.get_main_option("sqlalchemy.url") or ""


def _configure(**kwargs: Any) -> None:
    context.configure(
        target_metadata=Base.metadata,
        compare_type=True,
        # SQLite needs table rebuilds for ALTER; harmless elsewhere.
        render_as_batch=database_url.startswith("sqlite"),
        **kwargs,
    )
    with context.begin_transaction():
        context.run_migrations()


if context.is_offline_mode():
    _configure(url=database_url, literal_binds=True, dialect_opts={"paramstyle": "named"})
else:
    engine = create_engine(database_url, poolclass=pool.NullPool)
    with engine.connect() as connection:
        _configure(connection=connection)
