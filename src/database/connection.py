from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from src.utils.settings.database import DatabaseSettings


def build_session_factory(
    engine: AsyncEngine,
) -> async_sessionmaker[AsyncSession]:
    """Session factory shared by the app and the test suite."""
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


def build_engine(settings: DatabaseSettings | None = None) -> AsyncEngine:
    settings = settings or DatabaseSettings()
    return create_async_engine(
        settings.DATABASE_URL_ASYNC,
        echo=settings.DATABASE_ECHO,
        pool_pre_ping=True,
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
    )


async_engine = build_engine()
AsyncSessionLocal = build_session_factory(async_engine)
