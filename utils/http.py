"""
HTTP Client Utilities

Thin async GET primitive over httpx with connection pooling and retries on
transport failures and 5xx responses. A 5xx whose body reports rate limiting
is returned without retry. Callers only see a status code and a body; status
interpretation (404, 429, ...) belongs to them.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    before_sleep_log,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
)

from utils.config import settings

logger = logging.getLogger(__name__)


@dataclass
class HttpResponse:
    """Status and raw body of a completed request."""

    status: int
    body: bytes
    headers: Mapping[str, str] = field(default_factory=dict)

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


RATE_LIMIT_MARKER = b"too many"


def is_rate_limit_body(body: bytes) -> bool:
    return RATE_LIMIT_MARKER in body.lower()


def _is_server_error(response: HttpResponse) -> bool:
    # Rate-limit responses go back to the caller, whose backoff owns them.
    return response.status >= 500 and not is_rate_limit_body(response.body)


def _last_outcome(retry_state: RetryCallState) -> HttpResponse:
    # Hands back the final 5xx response, or re-raises the final transport error.
    return retry_state.outcome.result()


class HttpClient:
    """Async HTTP client for GET requests with bounded retries."""

    def __init__(
        self,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        backoff_initial: Optional[float] = None,
        backoff_max: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ) -> None:
        """Initialize HTTP client.

        Args:
            timeout: Per-request timeout in seconds, defaults to settings.HTTP_TIMEOUT_SECONDS
            max_retries: Retries after the first attempt, defaults to settings.HTTP_MAX_RETRIES
            backoff_initial: First retry delay, defaults to settings.HTTP_BACKOFF_INITIAL_SECONDS
            backoff_max: Retry delay cap, defaults to settings.HTTP_BACKOFF_MAX_SECONDS
            transport: Optional httpx transport (used by tests)
            sleep: Optional async sleep used between retries
        """
        self.timeout = timeout if timeout is not None else settings.HTTP_TIMEOUT_SECONDS
        self.max_retries = max_retries if max_retries is not None else settings.HTTP_MAX_RETRIES
        self.backoff_initial = (
            backoff_initial if backoff_initial is not None else settings.HTTP_BACKOFF_INITIAL_SECONDS
        )
        self.backoff_max = backoff_max if backoff_max is not None else settings.HTTP_BACKOFF_MAX_SECONDS
        self._sleep = sleep or asyncio.sleep
        self.client = httpx.AsyncClient(
            timeout=self.timeout,
            transport=transport,
            follow_redirects=True,
        )

    async def _get_once(
        self,
        url: str,
        params: Optional[Mapping[str, Any]],
        headers: Optional[Mapping[str, str]],
    ) -> HttpResponse:
        response = await self.client.get(url, params=params, headers=headers)
        return HttpResponse(
            status=response.status_code,
            body=response.content,
            headers=dict(response.headers),
        )

    async def get(
        self,
        url: str,
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ) -> HttpResponse:
        """Issue a GET request.

        Args:
            url: Absolute request URL
            params: Optional query parameters
            headers: Optional request headers
            sleep: Async sleep for this call's retry waits, overriding the client's

        Returns:
            HttpResponse with status and body (including non-2xx responses)

        Raises:
            httpx.TransportError: If the request fails at transport level after retries
        """
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(httpx.TransportError) | retry_if_result(_is_server_error),
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=self.backoff_initial, max=self.backoff_max),
            sleep=sleep or self._sleep,
            before_sleep=before_sleep_log(logger, logging.WARNING),
            retry_error_callback=_last_outcome,
        )
        return await retrying(self._get_once, url, params, headers)

    async def close(self) -> None:
        """Close the underlying connection pool."""
        await self.client.aclose()
