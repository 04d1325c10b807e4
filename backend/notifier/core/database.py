"""
Конфигурация базы данных SQLAlchemy 2.0 (хранилище журнала уведомлений).
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from notifier.core.config import settings


def _database_url(url: str) -> str:
    # Managed Postgres отдаёт postgres://, SQLAlchemy нужен postgresql+psycopg2://
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg2://", 1)
    return url


_engine_kwargs: dict = {"echo": False}

if _database_url(settings.DATABASE_URL).startswith("postgresql"):
    _engine_kwargs.update(
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,
        pool_recycle=3600,
    )
elif _database_url(settings.DATABASE_URL).startswith("sqlite"):
    # Сессия используется из потоков (asyncio.to_thread, threadpool FastAPI)
    _engine_kwargs["connect_args"] = {"check_same_thread": False}

engine = create_engine(_database_url(settings.DATABASE_URL), **_engine_kwargs)

SessionLocal = sessionmaker(bind=engine)


class Base(DeclarativeBase):
    """Базовый класс для всех моделей."""
    pass


def get_db():
    """Генератор сессий для FastAPI dependency injection."""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
