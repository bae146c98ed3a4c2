from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from ambassador.app.core.settings import get_settings

settings = get_settings()

_engine_kwargs = {"echo": False, "pool_pre_ping": True}
if settings.db_url.startswith("postgresql"):
    # Pool sizing only applies to the queue pool used by asyncpg
    _engine_kwargs.update(
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_recycle=settings.DB_POOL_RECYCLE,
        pool_timeout=30,
    )

engine = create_async_engine(url=settings.db_url, **_engine_kwargs)
async_session = async_sessionmaker(engine, expire_on_commit=False)
