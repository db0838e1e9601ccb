import asyncio
import logging
from typing import Optional

from authz_records.application.authorization_service import AuthorizationService
from authz_records.core.config import settings
from authz_records.core.database import db_manager
from authz_records.core.redis import RedisClient
from authz_records.messaging.dispatcher import Dispatcher
from authz_records.messaging.transport import RedisTransport
from authz_records.storage.base import RecordStore
from authz_records.storage.sql import SqlRecordStore


logger = logging.getLogger(__name__)


def configure_logging(level: Optional[str] = None):
    logging.basicConfig(
        level=level or settings.LOG_LEVEL,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        force=True  # Remove any existing handlers to prevent duplicates
    )


class RecordWorker:
    """Wires store, service, dispatcher and transport for one process."""

    def __init__(self, store: Optional[RecordStore] = None, transport_client=None, prefix: Optional[str] = None):
        self.store = store or SqlRecordStore()
        self.service = AuthorizationService(self.store)
        self.dispatcher = Dispatcher(self.service, prefix=prefix or settings.SUBJECT_PREFIX)
        self.transport = RedisTransport(self.dispatcher, client=transport_client)

    async def start(self):
        logger.info("Starting authorization record worker...")
        registered = await self.transport.start()
        missing = set(self.dispatcher.subjects) - set(registered)
        if missing:
            logger.error(f"Serving without subjects: {sorted(missing)}")
        return registered

    async def stop(self):
        logger.info("Stopping authorization record worker...")
        await self.transport.stop()
        await RedisClient.close()
        await db_manager.dispose()

    async def run_forever(self):
        """
        Starts the transport and blocks until cancelled (for standalone usage).
        """
        await self.start()

        try:
            while True:
                await asyncio.sleep(100)
        except (KeyboardInterrupt, asyncio.CancelledError):
            await self.stop()

if __name__ == "__main__":
    configure_logging()
    worker = RecordWorker()
    asyncio.run(worker.run_forever())
