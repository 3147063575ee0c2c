from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool

from servixing.core.config import settings
from servixing.db.session import Base
from servixing.models import audit_log, payment, user, work_order  # noqa: F401  register tables on Base.metadata

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# start_api.py passes the URL explicitly; plain `alembic upgrade head` falls back to settings.
url = config.get_main_option("sqlalchemy.url") or settings.DATABASE_URL
target_metadata = Base.metadata


def run_offline() -> None:
    context.configure(url=url, target_metadata=target_metadata, literal_binds=True,
                      dialect_opts={"paramstyle": "named"}, compare_type=True)
    with context.begin_transaction():
        context.run_migrations()


def run_online() -> None:
    engine = create_engine(url, poolclass=pool.NullPool)
    with engine.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata, compare_type=True,
                          render_as_batch=connection.dialect.name == "sqlite")
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_offline()
else:
    run_online()
