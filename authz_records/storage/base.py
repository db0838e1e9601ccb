"""
Storage boundary for authorization records.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, NamedTuple, Optional

from authz_records.application.resolution import RecordQuery
from authz_records.models import AuthorizationRecord


class Lookup(NamedTuple):
    """Result of a single-record lookup. Check ``found``, not ``record``."""
    found: bool
    record: Optional[AuthorizationRecord] = None


NOT_FOUND = Lookup(found=False)


class RecordStore(ABC):
    """Interface the record engine persists through.

    Implementations must enforce identity uniqueness among live records
    themselves and raise ``ConflictError`` when an insert would break it.
    """

    @abstractmethod
    async def find(self, query: RecordQuery) -> List[AuthorizationRecord]:
        """All records matching the query, in insertion order."""
        pass

    @abstractmethod
    async def lookup(self, query: RecordQuery) -> Lookup:
        """First record matching the query."""
        pass

    @abstractmethod
    async def insert(self, values: Dict[str, Any]) -> AuthorizationRecord:
        """Persist a new record and return it with its assigned id."""
        pass

    @abstractmethod
    async def update(self, record_id: int, values: Dict[str, Any], live_only: bool = True) -> Lookup:
        """Apply ``values`` to one record.

        With ``live_only`` a soft-deleted row is left untouched and reported as
        not found.
        """
        pass

    @abstractmethod
    async def purge(self, record_id: int) -> bool:
        """Remove the row for good. Returns False when nothing was removed."""
        pass
