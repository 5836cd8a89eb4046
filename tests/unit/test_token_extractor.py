"""
Unit tests for TokenExtractor against a scripted landing page.
"""

import asyncio

import httpx
import pytest

from apps.ingestor.context import SagaContext
from apps.ingestor.errors import SagaCancelledError, TokenNotFoundError, TransportError, UnexpectedStatusError
from apps.ingestor.token_extractor import TokenExtractor
from tests.fakes import USER_AGENTS
from utils.http import HttpClient

LANDING_HTML = '<script>{"MEDIA_API": {"token": "eyJ.landing"}}</script>'


def extract(extractor, country="us", app_name="Candy Crush Saga", app_id="553834731"):
    async def scenario():
        ctx = SagaContext(saga_id="s1", app_id=app_id)
        return await extractor.extract_token(country, app_name, app_id, ctx)

    return asyncio.run(scenario())


def test_extract_token_returns_token(app_store, http_factory):
    app_store.landing_html = LANDING_HTML
    extractor = TokenExtractor(http_factory(), user_agents=USER_AGENTS)

    assert extract(extractor) == "eyJ.landing"

    request = app_store.requests[0]
    assert request.url.path == "/us/app/candy-crush-saga/id553834731"
    assert request.headers["User-Agent"] in USER_AGENTS


def test_extract_token_not_found(app_store, http_factory):
    app_store.landing_html = "<html></html>"
    extractor = TokenExtractor(http_factory(), user_agents=USER_AGENTS)

    with pytest.raises(TokenNotFoundError) as exc_info:
        extract(extractor, country="de")

    assert exc_info.value.country == "de"


def test_extract_token_non_200(app_store, http_factory):
    app_store.landing_status = 403
    app_store.landing_html = LANDING_HTML
    extractor = TokenExtractor(http_factory(), user_agents=USER_AGENTS)

    with pytest.raises(UnexpectedStatusError) as exc_info:
        extract(extractor)

    assert exc_info.value.status == 403


def test_extract_token_transport_failure():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    http = HttpClient(timeout=5.0, max_retries=0, transport=httpx.MockTransport(handler))
    extractor = TokenExtractor(http, user_agents=USER_AGENTS)

    with pytest.raises(TransportError) as exc_info:
        extract(extractor)

    assert isinstance(exc_info.value.__cause__, httpx.ConnectError)


def test_extract_token_is_interrupted_by_cancellation():
    async def slow_landing(request):
        await asyncio.sleep(30)
        return httpx.Response(200, text=LANDING_HTML)

    http = HttpClient(timeout=60.0, max_retries=0, transport=httpx.MockTransport(slow_landing))
    extractor = TokenExtractor(http, user_agents=USER_AGENTS)

    async def scenario():
        ctx = SagaContext(saga_id="s1", app_id="553834731")
        asyncio.get_running_loop().call_later(0.05, ctx.cancel, "message deadline exceeded")
        await extractor.extract_token("us", "Candy Crush Saga", "553834731", ctx)

    # the landing page takes 30s; wait_for would time out if the request were not cut short
    with pytest.raises(SagaCancelledError, match="message deadline exceeded"):
        asyncio.run(asyncio.wait_for(scenario(), timeout=5))
