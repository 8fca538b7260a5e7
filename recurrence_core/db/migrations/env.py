from alembic import context
from sqlalchemy import engine_from_config, pool

from recurrence_core.db.models import Base
from recurrence_core.db.session import build_database_url

config = context.config

# `alembic -x db_url=...` migrates another database than the configured one.
db_url = context.get_x_argument(as_dictionary=True).get("db_url") or build_database_url()
config.set_main_option("sqlalchemy.url", db_url)

target_metadata = Base.metadata


def _configure_options() -> dict:
    # SQLite cannot ALTER constraints in place; the recurrence_series_id FK
    # on tasks relies on batch mode.
    return {
        "target_metadata": target_metadata,
        "render_as_batch": True,
        "compare_type": True,
    }


def run_migrations_offline() -> None:
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_configure_options(),
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section) or {},
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(connection=connection, **_configure_options())

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
