import asyncio

import pytest

from authz_records.application.authorization_service import AuthorizationService
from authz_records.exceptions import ConflictError, DecodeError, InvalidQueryError, NotFoundError
from authz_records.schemas.authorization import AuthorizationInput
from tests.fakes import InMemoryRecordStore

GRANT = {"user_id": "u1", "resource_id": "r1", "resource_type": "doc"}


def grant(**overrides) -> AuthorizationInput:
    fields = dict(GRANT, role="editor")
    fields.update(overrides)
    return AuthorizationInput(**fields)


@pytest.mark.asyncio
async def test_set_creates_then_updates_role_only(service):
    created = await service.set(grant())
    assert created.id == 1
    assert created.role == "editor"
    assert created.created_at == created.updated_at

    updated = await service.set(grant(role="viewer"))

    assert updated.id == 1
    assert updated.role == "viewer"
    assert updated.created_at == created.created_at
    assert updated.updated_at > created.updated_at

    fetched = await service.get(AuthorizationInput(id=1))
    assert fetched.role == "viewer"
    assert (fetched.user_id, fetched.resource_id, fetched.resource_type) == ("u1", "r1", "doc")


@pytest.mark.asyncio
async def test_set_by_id_keeps_stored_identity(service):
    created = await service.set(grant())

    updated = await service.set(AuthorizationInput(
        id=created.id, user_id="someone-else", resource_id="r9", resource_type="folder", role="owner",
    ))

    assert updated.id == created.id
    assert updated.role == "owner"
    assert (updated.user_id, updated.resource_id, updated.resource_type) == ("u1", "r1", "doc")


@pytest.mark.asyncio
async def test_set_requires_role(service):
    with pytest.raises(DecodeError):
        await service.set(grant(role=""))


@pytest.mark.asyncio
async def test_set_requires_id_or_full_identity(service):
    with pytest.raises(InvalidQueryError):
        await service.set(AuthorizationInput(user_id="u1", resource_type="doc", role="editor"))


@pytest.mark.asyncio
async def test_set_with_unknown_id_is_not_found(service, memory_store):
    with pytest.raises(NotFoundError):
        await service.set(AuthorizationInput(id=99, role="editor"))

    assert memory_store.rows == {}


@pytest.mark.asyncio
async def test_persisted_record_found_once_by_full_tuple(service):
    await service.set(grant())
    await service.set(grant(resource_id="r2"))

    found = await service.find(grant())

    assert [r.id for r in found] == [1]


@pytest.mark.asyncio
async def test_delete_hides_record_and_second_delete_is_not_found(service, memory_store):
    await service.set(grant())

    await service.delete(AuthorizationInput(**GRANT))

    assert await service.find(AuthorizationInput(**GRANT)) == []
    with pytest.raises(NotFoundError):
        await service.delete(AuthorizationInput(**GRANT))
    with pytest.raises(NotFoundError):
        await service.delete(AuthorizationInput(id=1))

    # Soft delete keeps the row
    assert memory_store.rows[1].deleted_at is not None


@pytest.mark.asyncio
async def test_delete_ignores_role(service):
    await service.set(grant(role="editor"))

    await service.delete(grant(role="something-else"))

    assert await service.find(AuthorizationInput(resource_type="doc")) == []


@pytest.mark.asyncio
async def test_delete_stamps_once(service, memory_store, clock):
    await service.set(grant())
    await service.delete(AuthorizationInput(id=1))
    stamped = memory_store.rows[1].deleted_at

    with pytest.raises(NotFoundError):
        await service.delete(AuthorizationInput(id=1))

    assert memory_store.rows[1].deleted_at == stamped


@pytest.mark.asyncio
async def test_get_deleted_record_only_with_include_deleted_by_id(service):
    await service.set(grant())
    await service.delete(AuthorizationInput(id=1))

    with pytest.raises(NotFoundError):
        await service.get(AuthorizationInput(id=1))
    with pytest.raises(NotFoundError):
        await service.get(AuthorizationInput(include_deleted=True, **GRANT))

    record = await service.get(AuthorizationInput(id=1, include_deleted=True))
    assert record.id == 1
    assert record.deleted_at is not None


@pytest.mark.asyncio
async def test_set_after_delete_creates_new_record(service):
    await service.set(grant())
    await service.delete(AuthorizationInput(**GRANT))

    again = await service.set(grant(role="viewer"))

    assert again.id == 2
    assert [r.id for r in await service.find(AuthorizationInput(**GRANT))] == [2]


@pytest.mark.asyncio
async def test_find_by_resource_type_returns_every_live_record(service):
    await service.set(grant(user_id="u1", resource_id="r1"))
    await service.set(grant(user_id="u2", resource_id="r2"))
    await service.set(grant(user_id="u3", resource_id="r3", resource_type="folder"))
    await service.set(grant(user_id="u4", resource_id="r4"))
    await service.delete(AuthorizationInput(user_id="u4", resource_id="r4", resource_type="doc"))

    found = await service.find(AuthorizationInput(resource_type="doc"))

    assert [(r.user_id, r.resource_id) for r in found] == [("u1", "r1"), ("u2", "r2")]


@pytest.mark.asyncio
async def test_find_shapes(service):
    await service.set(grant(user_id="u1", resource_id="r1", role="editor"))
    await service.set(grant(user_id="u2", resource_id="r1", role="viewer"))
    await service.set(grant(user_id="u1", resource_id="r2", role="viewer"))

    on_resource = await service.find(AuthorizationInput(resource_id="r1", resource_type="doc"))
    assert {r.user_id for r in on_resource} == {"u1", "u2"}

    user_grants = await service.find(AuthorizationInput(user_id="u1", resource_type="doc"))
    assert {r.resource_id for r in user_grants} == {"r1", "r2"}

    exact = await service.find(AuthorizationInput(user_id="u1", resource_id="r2", resource_type="doc", role="editor"))
    assert exact == []

    everything = await service.find(AuthorizationInput())
    assert len(everything) == 3


@pytest.mark.asyncio
async def test_find_empty_is_not_an_error(service):
    assert await service.find(AuthorizationInput(resource_type="nothing")) == []


@pytest.mark.asyncio
async def test_find_unsupported_shape_raises(service):
    with pytest.raises(InvalidQueryError):
        await service.find(AuthorizationInput(user_id="u1"))


@pytest.mark.asyncio
async def test_concurrent_creates_leave_one_live_record(service, memory_store):
    results = await asyncio.gather(
        service.set(grant(role="editor")),
        service.set(grant(role="viewer")),
        service.set(grant(role="owner")),
    )

    assert {r.id for r in results} == {1}
    live = [r for r in memory_store.rows.values() if r.deleted_at is None]
    assert len(live) == 1


@pytest.mark.asyncio
async def test_conflict_surfaces_when_winner_is_not_visible(clock):
    class ConflictingStore(InMemoryRecordStore):
        async def insert(self, values):
            raise ConflictError()

    service = AuthorizationService(ConflictingStore(), clock=clock)

    with pytest.raises(ConflictError):
        await service.set(grant())


@pytest.mark.asyncio
async def test_purge_removes_row(service, memory_store):
    await service.set(grant())
    await service.delete(AuthorizationInput(id=1))

    await service.purge(1)

    assert memory_store.rows == {}
    with pytest.raises(NotFoundError):
        await service.purge(1)
