from datetime import datetime, timezone
from typing import Callable, List, Optional
import logging

from authz_records.application.resolution import QueryShape, RecordQuery, identity_query, resolve
from authz_records.exceptions import ConflictError, DecodeError, NotFoundError
from authz_records.models import AuthorizationRecord, IDENTITY_FIELDS, PATCHABLE_FIELDS
from authz_records.schemas.authorization import AuthorizationInput
from authz_records.storage.base import RecordStore

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _not_found(query: RecordQuery) -> NotFoundError:
    if query.record_id is not None:
        return NotFoundError(details={"id": query.record_id})
    return NotFoundError(details=dict(query.filters))


class AuthorizationService:
    """Resolves, creates, merges and soft-deletes authorization records.

    The store is injected; the service keeps no state between calls and may be
    shared by concurrent requests.
    """

    def __init__(self, store: RecordStore, clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self._clock = clock or utcnow

    async def get(self, record_in: AuthorizationInput) -> AuthorizationRecord:
        # Soft-deleted rows are only reachable by explicit id
        live_only = not (record_in.include_deleted and record_in.has_id)
        query = identity_query(record_in, live_only=live_only)
        lookup = await self.store.lookup(query)
        if not lookup.found:
            raise _not_found(query)
        return lookup.record

    async def find(self, record_in: AuthorizationInput) -> List[AuthorizationRecord]:
        return await self.store.find(resolve(record_in))

    async def set(self, record_in: AuthorizationInput) -> AuthorizationRecord:
        """Create the record, or merge the patchable fields into the live one."""
        if not record_in.role:
            raise DecodeError("role is required", details={"missing": ["role"]})

        query = identity_query(record_in)
        lookup = await self.store.lookup(query)
        if lookup.found:
            return await self._merge(lookup.record, record_in)

        if query.shape is QueryShape.BY_ID:
            raise _not_found(query)

        try:
            return await self._create(record_in)
        except ConflictError:
            # A concurrent create for the same identity won; update its record instead
            lookup = await self.store.lookup(query)
            if not lookup.found:
                raise
            logger.info(f"Create raced for {query.filters}, updating record {lookup.record.id}")
            return await self._merge(lookup.record, record_in)

    async def delete(self, record_in: AuthorizationInput) -> None:
        query = identity_query(record_in)
        lookup = await self.store.lookup(query)
        if not lookup.found:
            raise _not_found(query)

        now = self._clock()
        stamped = await self.store.update(lookup.record.id, {"deleted_at": now, "updated_at": now})
        if not stamped.found:
            # Deleted by someone else between lookup and stamp
            raise _not_found(query)
        logger.info(f"Soft-deleted authorization {lookup.record.id}")

    async def purge(self, record_id: int) -> None:
        """Hard delete, live or not. Administrative use only."""
        if not await self.store.purge(record_id):
            raise NotFoundError(details={"id": record_id})
        logger.warning(f"Purged authorization {record_id}")

    async def _create(self, record_in: AuthorizationInput) -> AuthorizationRecord:
        now = self._clock()
        values = {name: getattr(record_in, name) for name in IDENTITY_FIELDS}
        values.update(role=record_in.role, created_at=now, updated_at=now)
        record = await self.store.insert(values)
        logger.info(f"Created authorization {record.id} ({record.user_id}, {record.resource_type}:{record.resource_id})")
        return record

    async def _merge(self, stored: AuthorizationRecord, record_in: AuthorizationInput) -> AuthorizationRecord:
        values = {name: getattr(record_in, name) for name in PATCHABLE_FIELDS}
        values["updated_at"] = self._clock()
        lookup = await self.store.update(stored.id, values)
        if not lookup.found:
            raise NotFoundError(details={"id": stored.id})
        logger.info(f"Updated authorization {stored.id}")
        return lookup.record
