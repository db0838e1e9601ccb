from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncEngine
from authz_records.core.config import settings
from typing import Optional
import asyncio


def build_engine(url: str) -> AsyncEngine:
    """Create an async engine; pool tuning only applies to server databases."""
    if make_url(url).get_backend_name() == "sqlite":
        return create_async_engine(url, echo=False)
    return create_async_engine(
        url,
        echo=False,
        pool_size=settings.POSTGRES_POOL_SIZE,
        max_overflow=settings.POSTGRES_MAX_OVERFLOW,
        pool_pre_ping=settings.POSTGRES_POOL_PRE_PING,
        pool_recycle=settings.POSTGRES_POOL_RECYCLE,
        pool_timeout=settings.POSTGRES_POOL_TIMEOUT,
    )


class DatabaseManager:
    def __init__(self):
        self._engine: Optional[AsyncEngine] = None
        self._sessionmaker = None
        self._loop_id = None
        self._url = None

    def _ensure_initialized(self):
        try:
            current_loop_id = id(asyncio.get_running_loop())
        except RuntimeError:
            current_loop_id = None

        url = settings.DATABASE_URL
        if self._engine is None or self._loop_id != current_loop_id or self._url != url:
            # An engine bound to a finished loop cannot be disposed from here; drop the reference.
            self._engine = build_engine(url)
            self._sessionmaker = async_sessionmaker(self._engine, expire_on_commit=False)
            self._loop_id = current_loop_id
            self._url = url

    @property
    def sessionmaker(self):
        self._ensure_initialized()
        return self._sessionmaker

    async def dispose(self):
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._sessionmaker = None
            self._loop_id = None

db_manager = DatabaseManager()

# Proxy for AsyncSessionLocal to ensure fresh sessionmaker is used
class SessionFactoryProxy:
    def __call__(self, *args, **kwargs):
        return db_manager.sessionmaker(*args, **kwargs)

AsyncSessionLocal = SessionFactoryProxy()