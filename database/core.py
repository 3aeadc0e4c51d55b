from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession, AsyncEngine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool
from config import config


class Base(DeclarativeBase):
    pass


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    """Создать движок: для SQLite без пула, для PostgreSQL — с пулом из конфига."""
    engine_kwargs = {
        "echo": echo,
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
    return create_async_engine(url, **engine_kwargs)


engine = build_engine(config.DATABASE_URL, echo=config.DEBUG)

session_maker = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False
)


async def get_session() -> AsyncSession:
    """Генератор сессий (FastAPI dependency)."""
    async with session_maker() as session:
        yield session
