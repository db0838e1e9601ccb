from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Callable, Dict, List, Optional
import logging

from sqlalchemy import select, update, delete
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from authz_records.application.resolution import RecordQuery
from authz_records.core.database import AsyncSessionLocal
from authz_records.exceptions import ConflictError, UnexpectedError
from authz_records.models import AuthorizationRecord
from authz_records.storage.base import Lookup, NOT_FOUND, RecordStore

logger = logging.getLogger(__name__)


class SqlRecordStore(RecordStore):
    """Record store backed by SQLAlchemy async sessions.

    A new session is opened for every call. Integrity violations become
    ``ConflictError``; any other database failure becomes ``UnexpectedError``.
    """

    def __init__(self, session_factory: Optional[Callable[[], AsyncSession]] = None):
        self._session_factory = session_factory or AsyncSessionLocal

    @asynccontextmanager
    async def _session(self) -> AsyncGenerator[AsyncSession, None]:
        try:
            async with self._session_factory() as session:
                yield session
        except IntegrityError as e:
            logger.warning(f"Authorization identity conflict: {e.orig}")
            raise ConflictError(details={"constraint": "uq_authorizations_identity"}) from e
        except SQLAlchemyError as e:
            logger.error(f"Authorization storage failure: {e}")
            raise UnexpectedError("Storage failure") from e

    @staticmethod
    def _select(query: RecordQuery):
        stmt = select(AuthorizationRecord)
        if query.record_id is not None:
            stmt = stmt.where(AuthorizationRecord.id == query.record_id)
        for name, value in query.filters.items():
            stmt = stmt.where(getattr(AuthorizationRecord, name) == value)
        if query.live_only:
            stmt = stmt.where(AuthorizationRecord.deleted_at.is_(None))
        return stmt.order_by(AuthorizationRecord.id)

    async def find(self, query: RecordQuery) -> List[AuthorizationRecord]:
        async with self._session() as session:
            result = await session.execute(self._select(query))
            return list(result.scalars().all())

    async def lookup(self, query: RecordQuery) -> Lookup:
        async with self._session() as session:
            result = await session.execute(self._select(query).limit(1))
            record = result.scalars().first()
            if record is None:
                return NOT_FOUND
            return Lookup(found=True, record=record)

    async def insert(self, values: Dict[str, Any]) -> AuthorizationRecord:
        async with self._session() as session:
            record = AuthorizationRecord(**values)
            session.add(record)
            await session.commit()
            await session.refresh(record)
            return record

    async def update(self, record_id: int, values: Dict[str, Any], live_only: bool = True) -> Lookup:
        async with self._session() as session:
            stmt = update(AuthorizationRecord).where(AuthorizationRecord.id == record_id)
            if live_only:
                stmt = stmt.where(AuthorizationRecord.deleted_at.is_(None))
            stmt = stmt.values(**values).execution_options(synchronize_session=False)

            result = await session.execute(stmt)
            if result.rowcount == 0:
                await session.rollback()
                return NOT_FOUND
            await session.commit()

            record = await session.get(AuthorizationRecord, record_id, populate_existing=True)
            if record is None:
                return NOT_FOUND
            return Lookup(found=True, record=record)

    async def purge(self, record_id: int) -> bool:
        async with self._session() as session:
            result = await session.execute(
                delete(AuthorizationRecord).where(AuthorizationRecord.id == record_id)
            )
            await session.commit()
            return result.rowcount > 0

    async def create_schema(self):
        """Create the tables on the bound engine. Production uses the alembic migration."""
        from authz_records.models import Base
        async with self._session() as session:
            conn = await session.connection()
            await conn.run_sync(Base.metadata.create_all)
            await session.commit()
