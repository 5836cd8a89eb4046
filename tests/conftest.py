"""
Shared pytest fixtures.

SQLite runs in a temporary directory; HTTP goes through FakeAppStore.
"""

from typing import Any, Callable

import httpx
import pytest

from apps.ingestor.fetcher import ReviewFetcher
from apps.ingestor.repository import ReviewRepository
from tests.fakes import USER_AGENTS, FakeAppStore, SleepRecorder
from utils.http import HttpClient


@pytest.fixture
def app_store() -> FakeAppStore:
    return FakeAppStore()


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def http_factory(app_store: FakeAppStore) -> Callable[[], HttpClient]:
    def factory() -> HttpClient:
        return HttpClient(
            timeout=5.0,
            max_retries=0,
            transport=httpx.MockTransport(app_store.handler),
        )

    return factory


@pytest.fixture
def fetcher_factory(http_factory, sleep_recorder) -> Callable[..., ReviewFetcher]:
    def factory(**overrides: Any) -> ReviewFetcher:
        options: dict[str, Any] = {
            "api_host": "https://amp-api.test",
            "api_path": "/v1/catalog/{country}/apps/{app_id}/reviews",
            "referrer": "https://apps.apple.com/",
            "user_agents": USER_AGENTS,
            "max_retries": 5,
            "backoff_initial": 1.0,
            "backoff_max": 60.0,
            "sleep": sleep_recorder,
        }
        http = overrides.pop("http", None) or http_factory()
        options.update(overrides)
        return ReviewFetcher(http, **options)

    return factory


@pytest.fixture
def repository(tmp_path):
    repo = ReviewRepository(path=str(tmp_path / "db" / "reviews.db"))
    yield repo
    repo.close()
