"""
Ingest Consumer - Redis Pub/Sub Extract Request Handler

Consumes extract requests from Redis Pub/Sub and runs each one as a saga
through the ingest orchestrator. Messages are processed one at a time.

Features:
- Redis Pub/Sub subscription via production wrapper
- Request validation and filtering
- Per-message deadline that cancels the running saga
- Graceful shutdown handling that cancels the running saga
- Structured logging with saga correlation ids

Usage:
    # Consumer mode (default)
    python -m apps.ingestor

    # For development/testing
    RUN_ONCE=true python -m apps.ingestor
"""

import asyncio
import logging
import signal
import sys
from typing import Any, Dict, Optional

from pydantic import ValidationError

from apps.ingestor.context import SagaContext
from apps.ingestor.errors import IngestError
from apps.ingestor.fetcher import ReviewFetcher
from apps.ingestor.publisher import CompletionPublisher
from apps.ingestor.repository import ReviewRepository
from apps.ingestor.service import IngestOrchestrator
from apps.ingestor.token_extractor import TokenExtractor
from utils.config import settings
from utils.http import HttpClient
from utils.logging import log_event, setup_logging
from utils.mq import RedisSubscriber
from utils.schemas import InboundMessage

logger = logging.getLogger(__name__)


class IngestConsumer:
    """
    Consumer for extract request events from Redis Pub/Sub.

    Handles:
    - Redis subscription management
    - Message decoding into saga requests
    - Saga deadline and shutdown cancellation
    - Signal handling for graceful shutdown
    """

    def __init__(
        self,
        orchestrator: Optional[IngestOrchestrator] = None,
        run_once: bool = False,
        message_timeout: Optional[float] = None,
    ) -> None:
        """
        Initialize ingest consumer.

        Args:
            orchestrator: Saga orchestrator, built from settings on start() when omitted
            run_once: If True, process one event and exit (for testing)
            message_timeout: Per-saga deadline in seconds, defaults to settings.MESSAGE_TIMEOUT_SECONDS
        """
        self.orchestrator = orchestrator
        self.run_once = run_once
        self.message_timeout = message_timeout or settings.MESSAGE_TIMEOUT_SECONDS
        self.subscriber: RedisSubscriber | None = None
        self.shutdown_event = asyncio.Event()
        self.current_saga: SagaContext | None = None
        self._processed_count = 0
        self._failed_count = 0
        self._resources: list[Any] = []

        logger.info(
            "IngestConsumer initialized",
            extra={
                "run_once": run_once,
                "target_channel": settings.REDIS_CHANNEL_REQUEST,
            },
        )

    def _build_orchestrator(self) -> IngestOrchestrator:
        http = HttpClient()
        repository = ReviewRepository()
        publisher = CompletionPublisher()
        self._resources = [http, repository, publisher]

        return IngestOrchestrator(
            extractor=TokenExtractor(http),
            fetcher=ReviewFetcher(http),
            repository=repository,
            publisher=publisher,
        )

    async def handle_message(self, channel: str, message: Dict[str, Any]) -> None:
        """
        Handle incoming Redis Pub/Sub message.

        Decodes the extract request and runs it as a saga. A saga failure is
        logged as that saga's outcome; the consumer keeps running.

        Args:
            channel: Redis channel name
            message: Decoded message payload
        """
        try:
            inbound = InboundMessage(**message)
        except ValidationError as e:
            logger.warning(
                "Invalid event payload",
                extra={"channel": channel, "error": str(e).split("\n")[0]},
            )
            return

        request = inbound.request
        if inbound.payload.saga_id and inbound.payload.saga_id != inbound.saga_id:
            logger.warning(
                "Payload saga_id differs from message saga_id, using message saga_id",
                extra={"saga_id": inbound.saga_id, "payload_saga_id": inbound.payload.saga_id},
            )

        ctx = SagaContext(saga_id=inbound.saga_id, app_id=request.app_id, message_id=inbound.message_id)
        log_event(logger, "message.decoded", "success", ctx=ctx, channel=channel)

        loop = asyncio.get_running_loop()
        deadline = loop.call_later(self.message_timeout, ctx.cancel, "message deadline exceeded")
        self.current_saga = ctx

        try:
            await self.orchestrator.handle(request, ctx)
            self._processed_count += 1
            log_event(logger, "message.processed", "success", ctx=ctx)

        except IngestError as e:
            self._failed_count += 1
            log_event(logger, "message.processed", "failed", ctx=ctx, level=logging.ERROR,
                      error=str(e), error_type=type(e).__name__)

        except Exception as e:
            logger.error(
                "Failed to process message",
                extra={**ctx.log_fields(), "channel": channel, "error": str(e)},
                exc_info=True,
            )
            raise

        finally:
            deadline.cancel()
            self.current_saga = None

            # Signal shutdown if run_once mode
            if self.run_once:
                logger.info("RUN_ONCE mode: signaling shutdown after processing event")
                self.shutdown_event.set()

    def request_shutdown(self) -> None:
        self.shutdown_event.set()
        if self.current_saga is not None:
            self.current_saga.cancel("shutdown")

    def setup_signal_handlers(self) -> None:
        """Setup handlers for graceful shutdown on SIGINT/SIGTERM."""

        def signal_handler(signum: int, frame: object) -> None:
            logger.info("Received signal %d, initiating graceful shutdown", signum)
            self.request_shutdown()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    async def start(self) -> None:
        """
        Start consumer and process messages until shutdown signal.

        Builds the orchestrator, connects to Redis, subscribes to the request
        channel, and processes messages until graceful shutdown is requested.
        """
        self.setup_signal_handlers()

        logger.info("Starting ingest consumer")

        if self.orchestrator is None:
            self.orchestrator = self._build_orchestrator()

        self.subscriber = RedisSubscriber(channels=[settings.REDIS_CHANNEL_REQUEST])

        try:
            await self.subscriber.connect()
            logger.info(
                "Connected to Redis and subscribed to channel",
                extra={"channel": settings.REDIS_CHANNEL_REQUEST},
            )

            subscription_task = asyncio.create_task(
                self.subscriber.subscribe(self.handle_message)
            )

            logger.info("Consumer started, waiting for messages...")

            # Wait for shutdown signal or subscription completion
            done, pending = await asyncio.wait(
                [
                    asyncio.create_task(self.shutdown_event.wait()),
                    subscription_task,
                ],
                return_when=asyncio.FIRST_COMPLETED,
            )

            # Let an in-flight saga wind down through its cancellation signal
            if subscription_task in pending:
                self.subscriber.stop()
                try:
                    await asyncio.wait_for(asyncio.shield(subscription_task), timeout=30.0)
                except asyncio.TimeoutError:
                    logger.warning("Subscription did not stop in time, cancelling")

            for task in pending:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

            for task in done:
                if task is subscription_task and task.exception() is not None:
                    raise task.exception()

            logger.info(
                "Consumer shutdown complete",
                extra={"processed_events": self._processed_count, "failed_events": self._failed_count},
            )

        except Exception as e:
            logger.error("Consumer failed", extra={"error": str(e)}, exc_info=True)
            raise

        finally:
            # Graceful cleanup
            if self.subscriber:
                self.subscriber.stop()
                await self.subscriber.close()
                logger.info("Redis subscriber connection closed")

            for resource in self._resources:
                result = resource.close()
                if asyncio.iscoroutine(result):
                    await result


async def main() -> None:
    """Main entry point for ingest consumer."""
    setup_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)

    consumer = IngestConsumer(run_once=settings.RUN_ONCE)

    try:
        await consumer.start()
    except Exception as e:
        logger.error("Consumer failed", extra={"error": str(e)}, exc_info=True)
        sys.exit(1)


def run() -> None:
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    asyncio.run(main())
