"""
Redis Pub/Sub transport for saga events.

Request messages arrive on one channel and completion envelopes leave on
another, both as orjson-encoded JSON objects. Publishing retries transient
Redis failures; the subscriber hands messages to its handler one at a time
and can be stopped between polls.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

import orjson
import redis.asyncio as redis
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from utils.config import settings

logger = logging.getLogger(__name__)

MessageHandler = Callable[[str, dict[str, Any]], Awaitable[None]]

PUBLISH_ATTEMPTS = 3
POLL_TIMEOUT_SECONDS = 1.0


def create_client(redis_url: Optional[str] = None) -> redis.Redis:
    """Build a pooled client; bodies stay bytes and are decoded with orjson."""
    return redis.from_url(
        redis_url or settings.REDIS_URL,
        max_connections=settings.REDIS_MAX_CONNECTIONS,
        decode_responses=False,
    )


def decode_message(message: dict[str, Any]) -> tuple[str, dict[str, Any]]:
    """
    Turn a raw Pub/Sub delivery into (channel, document).

    Raises:
        ValueError: If the body is not a UTF-8 JSON object
    """
    try:
        channel = message["channel"].decode("utf-8")
        document = orjson.loads(message["data"])
    except (KeyError, UnicodeDecodeError, orjson.JSONDecodeError) as e:
        raise ValueError(f"undecodable message: {e}") from e

    if not isinstance(document, dict):
        raise ValueError(f"expected a JSON object, got {type(document).__name__}")
    return channel, document


class RedisPublisher:
    """Publishes JSON documents to Redis channels."""

    def __init__(self, redis_url: Optional[str] = None, client: Optional[redis.Redis] = None) -> None:
        """
        Args:
            redis_url: Connection URL, defaults to settings.REDIS_URL
            client: Ready client to publish through instead of opening one
        """
        self.redis_url = redis_url or settings.REDIS_URL
        self.client: Optional[redis.Redis] = client

    @retry(
        retry=retry_if_exception_type(redis.RedisError),
        stop=stop_after_attempt(PUBLISH_ATTEMPTS),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        reraise=True,
    )
    async def publish(self, channel: str, message: dict[str, Any]) -> int:
        """
        Serialize `message` and publish it on `channel`.

        Returns:
            Number of subscribers that received it

        Raises:
            redis.RedisError: If every attempt fails
        """
        if self.client is None:
            self.client = create_client(self.redis_url)

        receivers = await self.client.publish(channel, orjson.dumps(message))
        if not receivers:
            logger.warning("Event published with no active subscriber", extra={"channel": channel})
        return receivers

    async def close(self) -> None:
        client, self.client = self.client, None
        if client is not None:
            await client.aclose()


class RedisSubscriber:
    """
    Delivers messages from a set of channels to an async handler.

    The next message is not read until the handler for the previous one has
    returned, so handlers run strictly in arrival order.
    """

    def __init__(self, channels: list[str], redis_url: Optional[str] = None) -> None:
        self.redis_url = redis_url or settings.REDIS_URL
        self.channels = list(channels)
        self.client: Optional[redis.Redis] = None
        self.pubsub: Optional[redis.client.PubSub] = None
        self.delivered = 0
        self.skipped = 0
        self._stopping = asyncio.Event()

    async def connect(self) -> None:
        if self.client is None:
            self.client = create_client(self.redis_url)
        self.pubsub = self.client.pubsub()
        await self.pubsub.subscribe(*self.channels)

    async def _poll(self) -> Optional[dict[str, Any]]:
        try:
            return await asyncio.wait_for(
                self.pubsub.get_message(ignore_subscribe_messages=True, timeout=POLL_TIMEOUT_SECONDS),
                timeout=POLL_TIMEOUT_SECONDS * 2,
            )
        except asyncio.TimeoutError:
            return None

    async def subscribe(self, handler: MessageHandler) -> None:
        """
        Poll until stop() is called, passing each decoded message to `handler`.

        Undecodable messages are logged and skipped. Redis errors are logged
        and polling resumes after a short pause. Handler exceptions propagate.

        Args:
            handler: Async callback taking (channel, document)
        """
        if self.pubsub is None:
            await self.connect()

        while not self._stopping.is_set():
            try:
                message = await self._poll()
            except redis.RedisError as e:
                logger.error("Redis error while polling", extra={"error": str(e), "channels": self.channels})
                await asyncio.sleep(1)
                continue

            if not message or message.get("type") != "message":
                continue

            try:
                channel, document = decode_message(message)
            except ValueError as e:
                self.skipped += 1
                logger.warning("Skipping message", extra={"error": str(e), "raw_data": message.get("data")})
                continue

            self.delivered += 1
            await handler(channel, document)

        logger.info(
            "Subscription stopped",
            extra={"delivered": self.delivered, "skipped": self.skipped},
        )

    def stop(self) -> None:
        self._stopping.set()

    async def close(self) -> None:
        pubsub, self.pubsub = self.pubsub, None
        client, self.client = self.client, None
        try:
            if pubsub is not None:
                await pubsub.unsubscribe(*self.channels)
                await pubsub.aclose()
        finally:
            if client is not None:
                await client.aclose()
