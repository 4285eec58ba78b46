"""Async SQLAlchemy engine, session factory and FastAPI dependency."""
import logging
import os

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from .config import settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


if settings.database_url.startswith("sqlite") and ":///" in settings.database_url:
    _db_path = settings.database_url.split(":///", 1)[1]
    if _db_path and _db_path != ":memory:":
        os.makedirs(os.path.dirname(_db_path) or ".", exist_ok=True)

engine = create_async_engine(settings.database_url, echo=False)
async_session_factory = async_sessionmaker(engine, expire_on_commit=False)


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """FastAPI dependency; tests override it with an in-memory database."""
    return async_session_factory


async def init_db():
    """Create tables if they don't exist."""
    from . import models  # noqa: F401  (register tables on Base.metadata)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables ready")
