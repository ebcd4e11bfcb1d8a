from __future__ import annotations

import os
import sys
import importlib
from logging.config import fileConfig
from pathlib import Path

from alembic import context
from sqlalchemy import engine_from_config, pool

# ------------------------------------------------------------------------------
# PYTHONPATH
# ------------------------------------------------------------------------------
PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# ------------------------------------------------------------------------------
# Alembic config + логирование
# ------------------------------------------------------------------------------
config = context.config
if config.config_file_name and os.path.exists(config.config_file_name):
    fileConfig(config.config_file_name)

# ------------------------------------------------------------------------------
# Грузим Base и модули моделей явно
# ------------------------------------------------------------------------------
from unicornx.models.base import Base  # единый Base с naming_convention

MODEL_MODULES = [
    "unicornx.models.user",
    "unicornx.models.plan",
    "unicornx.models.subscription",
    "unicornx.models.bot",
    "unicornx.models.order",
    "unicornx.models.coupon",
]
for mod in MODEL_MODULES:
    importlib.import_module(mod)

tables = sorted(Base.metadata.tables.keys())
print("[env.py] tables in Base.metadata:", tables, flush=True)

# Если ключевые таблицы не видны, валимся громко
required = {"users", "plans", "subscriptions", "bots", "orders"}
missing = required.difference(tables)
if missing:
    raise RuntimeError(f"[env.py] Missing tables in Base.metadata: {missing}")

# ------------------------------------------------------------------------------
# DSN конверсия: приложение ходит async-драйвером, alembic синхронным
# ------------------------------------------------------------------------------
def _to_sync_dsn(dsn: str) -> str:
    if "+asyncpg" in dsn:
        return dsn.replace("+asyncpg", "+psycopg")
    if "+aiosqlite" in dsn:
        return dsn.replace("+aiosqlite", "")
    return dsn

env_url = os.getenv("DATABASE_URL") or os.getenv("POSTGRES_DSN")
if not env_url:
    env_url = config.get_main_option("sqlalchemy.url") or "sqlite:///./unicornx.db"
config.set_main_option("sqlalchemy.url", _to_sync_dsn(env_url))

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    url = config.get_main_option("sqlalchemy.url")
    print(f"[env.py] offline migrations, url={url}", flush=True)
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
        compare_server_default=True,
        render_as_batch=url.startswith("sqlite"),
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        print(f"[env.py] online migrations, dsn={connection.engine.url!r}", flush=True)
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            compare_server_default=True,
            render_as_batch=connection.dialect.name == "sqlite",
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
