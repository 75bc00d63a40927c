# top2000_auth/alembic/env.py
import asyncio
import sys
from logging.config import fileConfig
from pathlib import Path

from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import create_async_engine

from alembic import context

# Sobe um nível (alembic/ -> raiz) para encontrar a pasta 'app'
sys.path.append(str(Path(__file__).resolve().parent.parent))

from app.db.base import Base
from app.models import user # noqa F401
from app.models import refresh_token # noqa F401
from app.core.config import settings

config = context.config

# Substitui o 'sqlalchemy.url' do alembic.ini pelo do nosso app (driver async)
db_url = settings.DATABASE_URL
if "postgresql+psycopg2" in db_url:
    db_url = db_url.replace("postgresql+psycopg2", "postgresql+asyncpg")
config.set_main_option("sqlalchemy.url", db_url)

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    """Gera o SQL sem conectar no banco."""
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    context.configure(connection=connection, target_metadata=target_metadata, compare_type=True)

    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    connectable = create_async_engine(
        config.get_main_option("sqlalchemy.url"),
        poolclass=pool.NullPool,
    )

    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)

    await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
