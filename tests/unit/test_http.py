"""
Unit tests for the HTTP GET primitive and its retries.
"""

import asyncio

import httpx
import pytest

from tests.fakes import SleepRecorder
from utils.http import HttpClient


class ScriptedServer:
    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0

    def handler(self, request):
        outcome = self.outcomes[min(self.calls, len(self.outcomes) - 1)]
        self.calls += 1
        if isinstance(outcome, Exception):
            raise outcome
        status, body = outcome
        return httpx.Response(status, text=body)


def get(server, recorder, max_retries=2):
    async def scenario():
        client = HttpClient(
            timeout=5.0,
            max_retries=max_retries,
            backoff_initial=0.5,
            backoff_max=1.0,
            transport=httpx.MockTransport(server.handler),
            sleep=recorder,
        )
        try:
            return await client.get("https://example.test/page", params={"q": "1"})
        finally:
            await client.close()

    return asyncio.run(scenario())


def test_get_returns_status_and_body():
    server = ScriptedServer((200, "hello"))
    recorder = SleepRecorder()

    response = get(server, recorder)

    assert response.status == 200
    assert response.text == "hello"
    assert response.body == b"hello"
    assert server.calls == 1
    assert recorder.delays == []


def test_client_errors_are_not_retried():
    server = ScriptedServer((404, "missing"))

    response = get(server, SleepRecorder())

    assert response.status == 404
    assert server.calls == 1


def test_server_errors_are_retried_then_returned():
    server = ScriptedServer((503, "busy"))
    recorder = SleepRecorder()

    response = get(server, recorder)

    assert response.status == 503
    assert response.text == "busy"
    assert server.calls == 3
    assert recorder.delays == [0.5, 1.0]


def test_server_error_recovers():
    server = ScriptedServer((502, "bad gateway"), (200, "ok"))

    response = get(server, SleepRecorder())

    assert response.status == 200
    assert server.calls == 2


def test_transport_errors_are_retried_then_raised():
    server = ScriptedServer(httpx.ConnectError("connection refused"))
    recorder = SleepRecorder()

    with pytest.raises(httpx.ConnectError):
        get(server, recorder)

    assert server.calls == 3
    assert len(recorder.delays) == 2


def test_rate_limited_server_error_is_returned_without_retry():
    server = ScriptedServer((503, "Too Many Requests"))
    recorder = SleepRecorder()

    response = get(server, recorder)

    assert response.status == 503
    assert server.calls == 1
    assert recorder.delays == []


def test_per_call_sleep_overrides_client_sleep():
    server = ScriptedServer((500, "oops"), (200, "ok"))
    client_sleep = SleepRecorder()
    call_sleep = SleepRecorder()

    async def scenario():
        client = HttpClient(
            timeout=5.0,
            max_retries=1,
            backoff_initial=0.5,
            transport=httpx.MockTransport(server.handler),
            sleep=client_sleep,
        )
        try:
            return await client.get("https://example.test/page", sleep=call_sleep)
        finally:
            await client.close()

    response = asyncio.run(scenario())

    assert response.status == 200
    assert call_sleep.delays == [0.5]
    assert client_sleep.delays == []
