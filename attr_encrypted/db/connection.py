from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.engine import make_url

from attr_encrypted.config import get_settings


def build_engine(database_url: str | None = None):
    """Create an async engine for ``database_url`` (defaults to DATABASE_URL)."""
    settings = get_settings()
    url = make_url(database_url or settings.database_url)

    options = {"echo": settings.debug}
    if url.get_backend_name() != "sqlite":
        options.update(
            pool_pre_ping=True,
            pool_size=10,          # persistent connections in the pool
            max_overflow=20,       # additional connections under burst load
            pool_timeout=30,       # seconds to wait for a connection before erroring
            pool_recycle=1800,     # recycle connections after 30 min to avoid stale handles
        )
    return create_async_engine(url, **options)


def build_sessionmaker(engine) -> async_sessionmaker[AsyncSession]:
    # AsyncSession cannot lazy-load expired storage columns on attribute access
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db(sessionmaker: async_sessionmaker[AsyncSession]):
    """Yield an async session that commits on success and rolls back on error."""
    async with sessionmaker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
