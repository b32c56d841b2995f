"""Redis Streams change feed for coach conversations.

``subscribe(topic)`` yields change events (``message_created``) for one
conversation. The coach pipeline publishes to it best-effort and never
depends on anyone listening.
"""

from __future__ import annotations

import json
import time
from uuid import UUID

import redis.asyncio as aioredis

from app.config import get_settings

# ── Event types ──────────────────────────────────────────────────────

EVENT_MESSAGE_CREATED = "message_created"
EVENT_HEARTBEAT = "heartbeat"
EVENT_TIMEOUT = "timeout"


def conversation_topic(conversation_id: UUID | str) -> str:
    return f"coach:{conversation_id}"


class ChangeFeedPublisher:
    """Publishes change events to per-topic Redis Streams.

    Usage::

        feed = ChangeFeedPublisher(redis, ttl=3600)
        await feed.message_created(message)
    """

    def __init__(self, redis: aioredis.Redis, *, ttl: int = 3600, maxlen: int = 500) -> None:
        self._redis = redis
        self._ttl = ttl
        self._maxlen = maxlen

    async def publish(self, topic: str, event_type: str, payload: dict) -> str:
        """Append an event to ``topic``. Returns the Redis stream message ID."""
        fields = {
            "type": event_type,
            "ts": str(time.time()),
            "data": json.dumps(payload, default=str),
        }
        msg_id = await self._redis.xadd(
            topic,
            fields,
            maxlen=self._maxlen,
            approximate=True,
        )
        await self._redis.expire(topic, self._ttl)
        return msg_id

    async def message_created(self, message) -> str:
        return await self.publish(
            conversation_topic(message.conversation_id),
            EVENT_MESSAGE_CREATED,
            {
                "id": str(message.id),
                "conversation_id": str(message.conversation_id),
                "role": message.role,
                "created_at": message.created_at.isoformat() if message.created_at else None,
            },
        )


class ChangeFeedConsumer:
    """Async iterator over the events of one topic.

    Usage::

        async for event in subscribe(redis, conversation_topic(conv_id), last_id="$"):
            # event = {"id": "...", "type": "message_created", "ts": "...", "data": "{...}"}
            ...
    """

    def __init__(
        self,
        redis: aioredis.Redis,
        topic: str,
        *,
        last_id: str = "$",
        block_ms: int = 1000,
        heartbeat_interval: float = 15.0,
        hard_timeout: float = 900.0,
    ) -> None:
        self._redis = redis
        self._topic = topic
        self._last_id = last_id
        self._block_ms = block_ms
        self._heartbeat_interval = heartbeat_interval
        self._hard_timeout = hard_timeout

    def __aiter__(self):
        return self._consume()

    async def _consume(self):
        start_time = time.time()
        last_event_time = start_time

        while True:
            if time.time() - start_time > self._hard_timeout:
                yield {"id": "", "type": EVENT_TIMEOUT, "ts": str(time.time()), "data": "{}"}
                return

            result = await self._redis.xread(
                {self._topic: self._last_id},
                block=self._block_ms,
                count=50,
            )

            if not result:
                if time.time() - last_event_time >= self._heartbeat_interval:
                    yield {"id": "", "type": EVENT_HEARTBEAT, "ts": str(time.time()), "data": "{}"}
                    last_event_time = time.time()
                continue

            for _stream_name, messages in result:
                for msg_id, fields in messages:
                    msg_id = msg_id.decode() if isinstance(msg_id, bytes) else msg_id
                    self._last_id = msg_id
                    last_event_time = time.time()

                    decoded = {"id": msg_id}
                    for k, v in fields.items():
                        key = k.decode() if isinstance(k, bytes) else k
                        val = v.decode() if isinstance(v, bytes) else v
                        decoded[key] = val

                    yield decoded


def subscribe(redis: aioredis.Redis, topic: str, **kwargs) -> ChangeFeedConsumer:
    return ChangeFeedConsumer(redis, topic, **kwargs)


# ── Redis connection pool (singleton) ────────────────────────────────

_redis_pool: aioredis.Redis | None = None


async def get_redis() -> aioredis.Redis:
    """Get or create the shared async Redis connection pool."""
    global _redis_pool
    if _redis_pool is None:
        settings = get_settings()
        _redis_pool = aioredis.from_url(
            settings.redis_url,
            decode_responses=False,  # We handle decoding in consumer
        )
    return _redis_pool


async def close_redis() -> None:
    """Close the Redis connection pool (call on shutdown)."""
    global _redis_pool
    if _redis_pool is not None:
        await _redis_pool.aclose()
        _redis_pool = None
