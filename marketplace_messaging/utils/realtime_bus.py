"""Live event fanout over ``user:<id>`` and ``thread:<conversationId>`` channels.

Publishing is fire-and-forget: nothing is persisted and a subscriber that is
not connected (or too slow to keep up) simply misses events. Clients
reconcile through the listing endpoints on reconnect.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Set, Tuple

import redis.asyncio as redis
from redis.exceptions import RedisError


logger = logging.getLogger(__name__)

Event = Tuple[str, Dict[str, Any]]

_CLOSED = object()


def user_channel(user_id: str) -> str:
    return f"user:{user_id}"


def thread_channel(conversation_id: str) -> str:
    return f"thread:{conversation_id}"


class _Subscription(ABC):

    channel: str

    def __aiter__(self):
        return self

    @abstractmethod
    async def __anext__(self) -> Event:
        ...

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.cancel()

    @abstractmethod
    async def cancel(self) -> None:
        ...


class _MemorySubscription(_Subscription):

    def __init__(self, bus: "InMemoryBus", channel: str, queue: asyncio.Queue) -> None:
        self.channel = channel
        self._bus = bus
        self._queue = queue
        self._closed = False

    async def __anext__(self) -> Event:
        if self._closed:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED or self._closed:
            raise StopAsyncIteration
        return item

    async def cancel(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._bus._unsubscribe(self.channel, self._queue)
        try:
            self._queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            pass


class InMemoryBus:
    """Single-process fanout, one bounded queue per subscriber."""

    def __init__(self, queue_size: int = 256) -> None:
        self._queue_size = queue_size
        self._channels: Dict[str, Set[asyncio.Queue]] = {}

    async def publish(self, channel: str, event: str, payload: Dict[str, Any]) -> int:
        delivered = 0
        for queue in list(self._channels.get(channel, ())):
            try:
                queue.put_nowait((event, payload))
                delivered += 1
            except asyncio.QueueFull:
                logger.warning("Dropping %s on %s: subscriber queue is full", event, channel)
        return delivered

    async def subscribe(self, channel: str) -> _MemorySubscription:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        self._channels.setdefault(channel, set()).add(queue)
        return _MemorySubscription(self, channel, queue)

    def _unsubscribe(self, channel: str, queue: asyncio.Queue) -> None:
        queues = self._channels.get(channel)
        if not queues:
            return
        queues.discard(queue)
        if not queues:
            del self._channels[channel]

    def subscriber_count(self, channel: str) -> int:
        return len(self._channels.get(channel, ()))

    async def close(self) -> None:
        for queues in list(self._channels.values()):
            for queue in list(queues):
                try:
                    queue.put_nowait(_CLOSED)
                except asyncio.QueueFull:
                    pass
        self._channels.clear()


class _RedisSubscription(_Subscription):

    def __init__(self, pubsub, channel: str) -> None:
        self.channel = channel
        self._pubsub = pubsub
        self._closed = False

    async def __anext__(self) -> Event:
        while not self._closed:
            try:
                msg = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
            except RedisError as exc:
                logger.warning("Redis subscription on %s failed: %s", self.channel, exc)
                await asyncio.sleep(0.5)
                continue
            if not msg or msg.get("type") != "message":
                continue
            data = msg.get("data")
            if isinstance(data, bytes):
                data = data.decode("utf-8")
            try:
                envelope = json.loads(data)
                return envelope["event"], envelope.get("payload") or {}
            except (ValueError, KeyError, TypeError):
                logger.warning("Ignoring malformed event on %s", self.channel)
        raise StopAsyncIteration

    async def cancel(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._pubsub.unsubscribe(self.channel)
            await self._pubsub.aclose()
        except RedisError as exc:
            logger.warning("Redis unsubscribe from %s failed: %s", self.channel, exc)


class RedisBus:
    """Multi-process fanout on Redis pub/sub."""

    def __init__(self, url: Optional[str] = None, client: Optional[redis.Redis] = None) -> None:
        if client is None and not url:
            raise ValueError("RedisBus needs a url or a client")
        self._redis = client if client is not None else redis.from_url(url)

    async def publish(self, channel: str, event: str, payload: Dict[str, Any]) -> int:
        message = json.dumps({"event": event, "payload": payload}, default=str)
        return await self._redis.publish(channel, message)

    async def subscribe(self, channel: str) -> _RedisSubscription:
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(channel)
        return _RedisSubscription(pubsub, channel)

    async def close(self) -> None:
        await self._redis.aclose()


def create_bus(redis_url: str = "", queue_size: int = 256):
    if redis_url:
        logger.info("Using Redis fanout")
        return RedisBus(redis_url)
    logger.info("Using in-process fanout")
    return InMemoryBus(queue_size=queue_size)
