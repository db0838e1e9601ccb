import asyncio

import pytest

from authz_records.messaging.transport import RecordsClient
from authz_records.worker import RecordWorker
from tests.fakes import FakeRedis, InMemoryRecordStore


@pytest.mark.asyncio
async def test_worker_serves_every_subject_until_stopped():
    fake = FakeRedis()
    worker = RecordWorker(store=InMemoryRecordStore(), transport_client=fake, prefix="grants")

    registered = await worker.start()
    assert sorted(registered) == ["grants.del", "grants.find", "grants.get", "grants.set"]

    client = RecordsClient(client=fake, prefix="grants", timeout=2)
    created = await client.set(user_id="u1", resource_id="r1", resource_type="doc", role="editor")
    assert created["id"] == 1

    await worker.stop()
    assert worker.transport.subscribed == []
    assert worker.transport.running is False


@pytest.mark.asyncio
async def test_run_forever_stops_on_cancel():
    worker = RecordWorker(store=InMemoryRecordStore(), transport_client=FakeRedis())

    task = asyncio.create_task(worker.run_forever())
    await asyncio.sleep(0.05)
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)

    assert worker.transport.subscribed == []
