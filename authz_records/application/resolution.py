"""
Identity resolution: turn a partially populated input into a storage query.

Which selector fields a caller filled in decides the lookup. The supported
combinations are listed in ``SHAPE_RULES`` in priority order; the first rule
whose required fields are all populated and whose excluded fields are all
empty wins. Anything else is ``QueryShape.UNSUPPORTED`` and is rejected.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple

from authz_records.exceptions import InvalidQueryError
from authz_records.models import IDENTITY_FIELDS
from authz_records.schemas.authorization import AuthorizationInput


class QueryShape(str, Enum):
    BY_ID = "by_id"
    RESOURCE_GRANTS = "resource_grants"
    USER_TYPE_GRANTS = "user_type_grants"
    USER_RESOURCE_ROLES = "user_resource_roles"
    EXACT = "exact"
    TYPE_SCAN = "type_scan"
    IDENTITY = "identity"
    UNSUPPORTED = "unsupported"


@dataclass(frozen=True)
class ShapeRule:
    shape: QueryShape
    required: FrozenSet[str]
    empty: FrozenSet[str]
    filters: Tuple[str, ...]

    def matches(self, populated: FrozenSet[str]) -> bool:
        return self.required <= populated and not (self.empty & populated)


SHAPE_RULES: Tuple[ShapeRule, ...] = (
    # Everyone holding something on one resource
    ShapeRule(
        QueryShape.RESOURCE_GRANTS,
        required=frozenset({"resource_id", "resource_type"}),
        empty=frozenset({"user_id"}),
        filters=("resource_id", "resource_type"),
    ),
    # Everything a user holds on a resource type
    ShapeRule(
        QueryShape.USER_TYPE_GRANTS,
        required=frozenset({"user_id", "resource_type"}),
        empty=frozenset({"resource_id"}),
        filters=("user_id", "resource_type"),
    ),
    # Every role a user holds on one resource
    ShapeRule(
        QueryShape.USER_RESOURCE_ROLES,
        required=frozenset({"user_id", "resource_id", "resource_type"}),
        empty=frozenset({"role"}),
        filters=("user_id", "resource_id", "resource_type"),
    ),
    ShapeRule(
        QueryShape.EXACT,
        required=frozenset({"user_id", "resource_id", "resource_type", "role"}),
        empty=frozenset(),
        filters=("user_id", "resource_id", "resource_type", "role"),
    ),
    # Nothing but (optionally) a resource type
    ShapeRule(
        QueryShape.TYPE_SCAN,
        required=frozenset(),
        empty=frozenset({"user_id", "resource_id", "role"}),
        filters=("resource_type",),
    ),
)


@dataclass(frozen=True)
class RecordQuery:
    """A resolved lookup handed to the record store.

    ``filters`` are equality conditions ANDed together. ``live_only`` hides
    soft-deleted rows.
    """
    shape: QueryShape
    record_id: Optional[int] = None
    filters: Dict[str, str] = field(default_factory=dict)
    live_only: bool = True


def classify(record_in: AuthorizationInput) -> QueryShape:
    if record_in.has_id:
        return QueryShape.BY_ID
    populated = record_in.populated()
    for rule in SHAPE_RULES:
        if rule.matches(populated):
            return rule.shape
    return QueryShape.UNSUPPORTED


def resolve(record_in: AuthorizationInput) -> RecordQuery:
    """Build the query `find` runs for an input."""
    shape = classify(record_in)
    if shape is QueryShape.BY_ID:
        return RecordQuery(shape=shape, record_id=record_in.id)
    if shape is QueryShape.UNSUPPORTED:
        raise InvalidQueryError(details={"populated": sorted(record_in.populated())})

    rule = next(r for r in SHAPE_RULES if r.shape is shape)
    filters = {name: getattr(record_in, name) for name in rule.filters if getattr(record_in, name)}
    return RecordQuery(shape=shape, filters=filters)


def identity_query(record_in: AuthorizationInput, live_only: bool = True) -> RecordQuery:
    """Build the single-record lookup used by get, set and delete.

    By id when one is given, otherwise by the exact identity triple. The role
    never takes part.
    """
    if record_in.has_id:
        return RecordQuery(shape=QueryShape.BY_ID, record_id=record_in.id, live_only=live_only)

    missing = [name for name in IDENTITY_FIELDS if not getattr(record_in, name)]
    if missing:
        raise InvalidQueryError(
            "An id or the full user_id/resource_id/resource_type identity is required",
            details={"missing": missing},
        )
    return RecordQuery(
        shape=QueryShape.IDENTITY,
        filters={name: getattr(record_in, name) for name in IDENTITY_FIELDS},
        live_only=live_only,
    )
