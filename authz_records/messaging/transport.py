"""
Request/reply over Redis lists.

A caller LPUSHes a JSON envelope ``{"reply_to": key, "data": payload}`` onto
the subject's list. One consumer task per subject BRPOPs requests, hands the
payload to the dispatcher and LPUSHes the reply onto ``reply_to``, which
expires after ``reply_ttl`` seconds.
"""
from typing import Any, Dict, Iterable, List, Optional, Set, Union
import asyncio
import functools
import json
import logging
import uuid

import redis.asyncio as redis
from pydantic import ValidationError
from redis.exceptions import RedisError

from authz_records.core.config import settings
from authz_records.core.redis import RedisClient
from authz_records.exceptions import RequestTimeoutError
from authz_records.messaging.dispatcher import Dispatcher, decode_reply
from authz_records.schemas.authorization import RequestEnvelope

logger = logging.getLogger(__name__)


class RedisTransport:
    def __init__(
        self,
        dispatcher: Dispatcher,
        client: Optional[redis.Redis] = None,
        poll_timeout: Optional[int] = None,
        reply_ttl: Optional[int] = None,
        max_inflight: Optional[int] = None,
        retry_delay: float = 1.0,
    ):
        self.dispatcher = dispatcher
        self._client = client
        self.poll_timeout = poll_timeout if poll_timeout is not None else settings.POLL_TIMEOUT
        self.reply_ttl = reply_ttl if reply_ttl is not None else settings.REPLY_TTL
        self.retry_delay = retry_delay
        self.running = False
        self._consumers: Dict[str, asyncio.Task] = {}
        self._inflight: Set[asyncio.Task] = set()
        # Held from BRPOP until the reply is sent; a full pool stops the consumers reading
        self._slots = asyncio.Semaphore(max_inflight or settings.MAX_INFLIGHT)

    @property
    def client(self) -> redis.Redis:
        return self._client or RedisClient.get_instance()

    @property
    def subscribed(self) -> List[str]:
        return list(self._consumers)

    def subscribe(self, subject: str) -> bool:
        """Start consuming one subject. Failures are logged and reported, never raised."""
        if subject in self._consumers:
            logger.warning(f"Already subscribed to {subject}")
            return True
        if subject not in self.dispatcher.handlers:
            logger.error(f"Error subscribing {subject}: no handler registered")
            return False
        try:
            task = asyncio.get_running_loop().create_task(self._consume(subject), name=f"consume:{subject}")
        except RuntimeError as e:
            logger.error(f"Error subscribing {subject}: {e}")
            return False
        task.add_done_callback(functools.partial(self._consumer_done, subject))
        self._consumers[subject] = task
        logger.info(f"Subscribed to {subject}")
        return True

    async def start(self, subjects: Optional[Iterable[str]] = None) -> List[str]:
        self.running = True
        if subjects is None:
            subjects = self.dispatcher.subjects
        return [subject for subject in subjects if self.subscribe(subject)]

    async def stop(self):
        self.running = False
        consumers = list(self._consumers.values())
        for task in consumers:
            task.cancel()
        await asyncio.gather(*consumers, return_exceptions=True)
        self._consumers.clear()

        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)
        logger.info("Transport stopped")

    async def _consume(self, subject: str):
        while self.running:
            await self._slots.acquire()
            try:
                item = await self._next(subject)
            except asyncio.CancelledError:
                self._slots.release()
                raise
            if not item:
                self._slots.release()
                continue

            _, raw = item
            task = asyncio.create_task(self.process(subject, raw))
            self._inflight.add(task)
            task.add_done_callback(functools.partial(self._request_done, subject))

    async def _next(self, subject: str):
        """One BRPOP. Read failures are logged and retried after ``retry_delay``."""
        try:
            return await self.client.brpop(subject, timeout=self.poll_timeout)
        except RedisError as e:
            logger.error(f"Error reading {subject}: {e}")
        except Exception:
            logger.exception(f"Unexpected error reading {subject}")
        await asyncio.sleep(self.retry_delay)
        return None

    def _consumer_done(self, subject: str, task: asyncio.Task):
        if self._consumers.get(subject) is task:
            del self._consumers[subject]
        if task.cancelled() or task.exception() is None:
            return
        logger.error(f"Consumer for {subject} stopped", exc_info=task.exception())

    def _request_done(self, subject: str, task: asyncio.Task):
        self._inflight.discard(task)
        self._slots.release()
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Error serving request on {subject}", exc_info=task.exception())

    async def process(self, subject: str, raw: Union[str, bytes]) -> bool:
        """Serve one queued request. Returns True once a reply was delivered."""
        try:
            envelope = RequestEnvelope.model_validate_json(raw)
        except ValidationError as e:
            # Nowhere to send a failure reply
            logger.warning(f"Dropping request on {subject} without a usable reply_to ({e.error_count()} errors)")
            return False

        reply = await self.dispatcher.handle(subject, envelope.data)
        try:
            await self.client.lpush(envelope.reply_to, reply)
            await self.client.expire(envelope.reply_to, self.reply_ttl)
        except RedisError as e:
            logger.error(f"Error replying to {envelope.reply_to} for {subject}: {e}")
            return False
        return True


class RecordsClient:
    """Caller side of the protocol."""

    def __init__(
        self,
        client: Optional[redis.Redis] = None,
        prefix: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self._client = client
        self.prefix = prefix or settings.SUBJECT_PREFIX
        self.timeout = timeout if timeout is not None else settings.REQUEST_TIMEOUT

    @property
    def client(self) -> redis.Redis:
        return self._client or RedisClient.get_instance()

    async def request(self, subject: str, payload: Union[str, Dict[str, Any]], timeout: Optional[float] = None) -> Any:
        """Send one request and wait for its reply.

        ``subject`` may be a bare operation (``get``) or a full subject.
        Failure replies are raised as the matching service error.
        """
        if "." not in subject:
            subject = f"{self.prefix}.{subject}"
        data = payload if isinstance(payload, str) else json.dumps(payload)
        reply_to = f"{subject}.reply.{uuid.uuid4().hex}"

        envelope = RequestEnvelope(reply_to=reply_to, data=data)
        await self.client.lpush(subject, envelope.model_dump_json())

        item = await self.client.brpop(reply_to, timeout=timeout if timeout is not None else self.timeout)
        if not item:
            raise RequestTimeoutError(details={"subject": subject})
        _, reply = item
        return decode_reply(reply)

    async def get(self, **fields) -> Dict[str, Any]:
        return await self.request("get", fields)

    async def find(self, **fields) -> List[Dict[str, Any]]:
        return await self.request("find", fields)

    async def set(self, **fields) -> Dict[str, Any]:
        return await self.request("set", fields)

    async def delete(self, **fields) -> Dict[str, Any]:
        return await self.request("del", fields)
