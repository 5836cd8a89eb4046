"""
Event Publisher for the Review Ingestor

Publishes the saga's completion event to Redis Pub/Sub once every requested
country has been fetched and stored.

Features:
- Envelope carrying message id, saga id, routing key and app metadata
- Redis Pub/Sub integration via production wrapper
- Automatic connection management and retries
- Structured logging

Usage:
    publisher = CompletionPublisher()
    await publisher.publish_completed(event, ctx)
"""

import logging
from typing import Any, Optional

from apps.ingestor.context import SagaContext
from apps.ingestor.errors import PublishError, SagaCancelledError
from utils.config import settings
from utils.logging import log_event, start_timer
from utils.mq import RedisPublisher
from utils.schemas import CompletionEvent, Envelope, EnvelopeMeta

logger = logging.getLogger(__name__)

COMPLETED_EVENT_TYPE = "pipeline.extract_completed"


def build_envelope(event: CompletionEvent) -> Envelope:
    """Wrap a completion event; the saga id is both correlation id and routing key."""
    return Envelope(
        type=COMPLETED_EVENT_TYPE,
        saga_id=event.saga_id,
        key=event.saga_id,
        meta=EnvelopeMeta(
            app_id=event.original_request.app_id,
            service=settings.APP_NAME,
            version=settings.APP_VERSION,
        ),
        payload=event.model_dump(mode="json"),
    )


class CompletionPublisher:
    """Publishes completion events to the configured channel."""

    def __init__(self, publisher: Optional[RedisPublisher] = None, channel: Optional[str] = None) -> None:
        self.publisher = publisher or RedisPublisher()
        self.channel = channel or settings.REDIS_CHANNEL_COMPLETED

    async def publish_completed(self, event: CompletionEvent, ctx: SagaContext) -> Envelope:
        """
        Publish the completion event for a saga.

        Args:
            event: Completion event carrying the original request and total count
            ctx: Saga context for correlation

        Returns:
            The envelope that was published

        Raises:
            PublishError: If publishing fails
            SagaCancelledError: If the saga is cancelled while publishing
        """
        timer = start_timer()
        envelope = build_envelope(event)
        message: dict[str, Any] = envelope.model_dump(mode="json")

        logger.debug("Publishing event: message_id=%s", envelope.message_id, extra=ctx.log_fields())

        try:
            await ctx.run(self.publisher.publish(self.channel, message))
        except SagaCancelledError:
            log_event(logger, "producer.event.published", "failed", ctx=ctx, latency=timer(),
                      level=logging.WARNING, channel=self.channel, published_message_id=envelope.message_id,
                      error="cancelled")
            raise
        except Exception as e:
            log_event(logger, "producer.event.published", "failed", ctx=ctx, latency=timer(),
                      level=logging.ERROR, channel=self.channel, published_message_id=envelope.message_id,
                      error=str(e))
            raise PublishError(f"failed to publish completion event: {e}") from e

        log_event(logger, "producer.event.published", "success", ctx=ctx, latency=timer(),
                  channel=self.channel, published_message_id=envelope.message_id,
                  total_count=event.total_count)
        return envelope

    async def close(self) -> None:
        await self.publisher.close()
