"""
Окружение миграций журнала уведомлений.
URL базы берётся из настроек приложения (DATABASE_URL).
"""
from logging.config import fileConfig

from sqlalchemy import create_engine, pool

from alembic import context

from notifier.core.config import settings
from notifier.core.database import Base, _database_url
from notifier.models.notification import NotificationRecord  # noqa: F401

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def get_database_url() -> str:
    return _database_url(settings.DATABASE_URL)


def run_migrations_offline() -> None:
    """Генерация SQL без подключения к БД."""
    context.configure(
        url=get_database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = create_engine(get_database_url(), poolclass=pool.NullPool)
    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
