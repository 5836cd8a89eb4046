"""
Unit tests for IngestConsumer message handling.

The orchestrator is replaced by a scripted stand-in; no Redis connection is made.
"""

import asyncio

import pytest

from apps.ingestor.consumer import IngestConsumer
from apps.ingestor.errors import FetchAbortedError

MESSAGE = {
    "saga_id": "s1",
    "message_id": "m-1",
    "payload": {"app_id": "553834731", "app_name": "Candy Crush", "countries": ["us"], "limit": 25},
}


class ScriptedOrchestrator:
    def __init__(self, action=None):
        self.calls = []
        self.action = action

    async def handle(self, request, ctx):
        self.calls.append((request, ctx))
        if self.action is not None:
            await self.action(ctx)


def handle(message, orchestrator, **consumer_options):
    async def scenario():
        consumer = IngestConsumer(orchestrator=orchestrator, **consumer_options)
        await consumer.handle_message("pipeline.extract_request", message)
        return consumer

    return asyncio.run(scenario())


def test_invalid_payload_is_skipped():
    orchestrator = ScriptedOrchestrator()

    consumer = handle({"saga_id": "s1", "payload": {"countries": ["us"]}}, orchestrator)

    assert orchestrator.calls == []
    assert consumer._processed_count == 0
    assert consumer._failed_count == 0


def test_message_runs_saga_with_wrapper_saga_id():
    orchestrator = ScriptedOrchestrator()

    consumer = handle(MESSAGE, orchestrator)

    request, ctx = orchestrator.calls[0]
    assert request.saga_id == "s1"
    assert request.limit == 25
    assert ctx.saga_id == "s1"
    assert ctx.app_id == "553834731"
    assert ctx.message_id == "m-1"
    assert consumer._processed_count == 1
    assert consumer.current_saga is None


def test_saga_failure_is_absorbed():
    async def fail(ctx):
        raise FetchAbortedError("us", [])

    consumer = handle(MESSAGE, ScriptedOrchestrator(fail))

    assert consumer._failed_count == 1
    assert consumer._processed_count == 0


def test_unexpected_error_propagates():
    async def crash(ctx):
        raise RuntimeError("bug")

    with pytest.raises(RuntimeError, match="bug"):
        handle(MESSAGE, ScriptedOrchestrator(crash))


def test_deadline_cancels_running_saga():
    async def wait_forever(ctx):
        await ctx.sleep(30)

    orchestrator = ScriptedOrchestrator(wait_forever)

    consumer = handle(MESSAGE, orchestrator, message_timeout=0.01)

    _, ctx = orchestrator.calls[0]
    assert ctx.cancelled
    assert ctx.cancel_reason == "message deadline exceeded"
    assert consumer._failed_count == 1


def test_shutdown_cancels_running_saga():
    consumers = []

    async def shut_down(ctx):
        consumers[0].request_shutdown()
        ctx.raise_if_cancelled()

    async def scenario():
        orchestrator = ScriptedOrchestrator(shut_down)
        consumer = IngestConsumer(orchestrator=orchestrator)
        consumers.append(consumer)
        await consumer.handle_message("pipeline.extract_request", MESSAGE)
        return consumer, orchestrator

    consumer, orchestrator = asyncio.run(scenario())

    _, ctx = orchestrator.calls[0]
    assert ctx.cancel_reason == "shutdown"
    assert consumer.shutdown_event.is_set()
    assert consumer._failed_count == 1


def test_run_once_signals_shutdown_after_message():
    consumer = handle(MESSAGE, ScriptedOrchestrator(), run_once=True)

    assert consumer.shutdown_event.is_set()


def test_consumer_keeps_running_without_run_once():
    consumer = handle(MESSAGE, ScriptedOrchestrator())

    assert not consumer.shutdown_event.is_set()


def test_message_saga_id_overrides_payload_saga_id():
    orchestrator = ScriptedOrchestrator()
    message = {**MESSAGE, "payload": {**MESSAGE["payload"], "saga_id": "other"}}

    handle(message, orchestrator)

    request, ctx = orchestrator.calls[0]
    assert request.saga_id == "s1"
    assert ctx.saga_id == "s1"
