from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool
from config import config


class Base(DeclarativeBase):
    pass


def build_engine(url: str = None, **overrides) -> AsyncEngine:
    """Движок БД с настройками пула под диалект (SQLite без пула PostgreSQL)."""
    url = url or config.DATABASE_URL
    engine_kwargs = {
        "echo": config.DEBUG,
        "pool_pre_ping": True,
    }
    if url.startswith("sqlite"):
        engine_kwargs.update(
            {
                "poolclass": NullPool,
                "connect_args": {"check_same_thread": False},
            }
        )
    else:
        engine_kwargs.update(
            {
                "pool_size": config.DB_POOL_SIZE,
                "max_overflow": config.DB_MAX_OVERFLOW,
                "pool_recycle": 3600,
            }
        )
    engine_kwargs.update(overrides)
    return create_async_engine(url, **engine_kwargs)


def build_session_maker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False
    )


engine = build_engine()
session_maker = build_session_maker(engine)
