# database.py
# Async engine, session factory and declarative base for the servicing tables.

from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool

from .config import settings

SQLALCHEMY_DATABASE_URL = settings.DATABASE_URL


def get_alembic_db_url():
    """Get the synchronous database URL for Alembic migrations."""
    return settings.ALEMBIC_DATABASE_URL or settings.DATABASE_URL.replace("postgresql+asyncpg", "postgresql")


def _connect_args(url: str) -> dict:
    if url.startswith("postgresql+asyncpg"):
        return {
            "timeout": 30,
            "server_settings": {"application_name": "loanserve_payments"},
        }
    return {}


# NullPool: no pooling, a fresh connection per session (safest for async)
engine = create_async_engine(
    SQLALCHEMY_DATABASE_URL,
    echo=False,
    poolclass=NullPool,
    connect_args=_connect_args(SQLALCHEMY_DATABASE_URL),
)

SessionLocal = async_sessionmaker(
    bind=engine,
    autocommit=False,
    autoflush=False,
    expire_on_commit=False
)

Base = declarative_base()


def dialect_insert(session):
    """INSERT construct for the session's dialect, with ON CONFLICT support."""
    from sqlalchemy.dialects import postgresql, sqlite

    if session.get_bind().dialect.name == "sqlite":
        return sqlite.insert
    return postgresql.insert
