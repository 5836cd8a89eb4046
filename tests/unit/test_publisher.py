"""
Unit tests for the completion event envelope and CompletionPublisher.
"""

import asyncio
from unittest.mock import AsyncMock

import orjson
import pytest

from apps.ingestor.context import SagaContext
from apps.ingestor.errors import PublishError, SagaCancelledError
from apps.ingestor.publisher import COMPLETED_EVENT_TYPE, CompletionPublisher, build_envelope
from utils.config import settings
from utils.mq import RedisPublisher
from utils.schemas import CompletionEvent, FetchRequest


def make_event(total_count=25):
    request = FetchRequest(saga_id="s1", app_id="553834731", countries=["us", "gb"], limit=25)
    return CompletionEvent(saga_id="s1", original_request=request, total_count=total_count)


def test_build_envelope():
    envelope = build_envelope(make_event())

    assert envelope.type == COMPLETED_EVENT_TYPE
    assert envelope.saga_id == "s1"
    assert envelope.key == "s1"
    assert envelope.message_id
    assert envelope.occurred_at.tzinfo is not None
    assert envelope.meta.app_id == "553834731"
    assert envelope.meta.service == settings.APP_NAME
    assert envelope.payload["total_count"] == 25
    assert envelope.payload["original_request"]["countries"] == ["us", "gb"]


def test_envelopes_get_distinct_message_ids():
    assert build_envelope(make_event()).message_id != build_envelope(make_event()).message_id


def test_publish_completed_sends_envelope_to_channel():
    client = AsyncMock()
    client.publish.return_value = 1
    publisher = CompletionPublisher(RedisPublisher(client=client), channel="test.completed")

    async def scenario():
        ctx = SagaContext(saga_id="s1")
        envelope = await publisher.publish_completed(make_event(), ctx)
        await publisher.close()
        return envelope

    envelope = asyncio.run(scenario())

    client.publish.assert_awaited_once()
    channel, data = client.publish.await_args.args
    assert channel == "test.completed"
    message = orjson.loads(data)
    assert message["message_id"] == envelope.message_id
    assert message["type"] == "pipeline.extract_completed"
    assert message["key"] == "s1"
    assert message["payload"]["saga_id"] == "s1"
    assert message["payload"]["total_count"] == 25
    client.aclose.assert_awaited_once()


def test_publish_failure_raises_publish_error():
    broken = AsyncMock()
    broken.publish.side_effect = ConnectionError("connection reset by peer")
    publisher = CompletionPublisher(broken, channel="test.completed")

    async def scenario():
        ctx = SagaContext(saga_id="s1")
        await publisher.publish_completed(make_event(), ctx)

    with pytest.raises(PublishError) as exc_info:
        asyncio.run(scenario())

    assert isinstance(exc_info.value.__cause__, ConnectionError)


def test_publish_is_interrupted_by_cancellation():
    async def hang(channel, message):
        await asyncio.sleep(30)

    stalled = AsyncMock()
    stalled.publish.side_effect = hang
    publisher = CompletionPublisher(stalled, channel="test.completed")

    async def scenario():
        ctx = SagaContext(saga_id="s1")
        asyncio.get_running_loop().call_later(0.05, ctx.cancel, "shutdown")
        await publisher.publish_completed(make_event(), ctx)

    with pytest.raises(SagaCancelledError):
        asyncio.run(asyncio.wait_for(scenario(), timeout=5))
