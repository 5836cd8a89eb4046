"""
App Store Review Fetcher - Paginated Extraction With Rate-Limit Backoff

Walks the reviews listing of one app in one country, page by page, following
the offset carried in each page's "next" link.

Features:
- Bearer token passed explicitly on every call
- Rotating user agent per request
- Bounded exponential backoff on rate limiting (tenacity), reset per page
- Date window filtering with early stop once pages fall behind the window
- Total limit short-circuit
- Cancellation that keeps the reviews gathered so far

Usage:
    fetcher = ReviewFetcher(http)
    opts = FetchOptions(after_date=datetime(2025, 1, 1, tzinfo=timezone.utc), max_total=500)
    reviews = await fetcher.fetch_all_reviews(token, "us", "310633997", opts, ctx)
"""

import logging
import random
import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional
from urllib.parse import quote

import httpx
import orjson
from pydantic import ValidationError
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from apps.ingestor.context import SagaContext
from apps.ingestor.errors import (
    AppNotAvailableError,
    FetchAbortedError,
    IngestError,
    RateLimitedError,
    ResponseParseError,
    RetriesExhaustedError,
    TransportError,
    UnexpectedStatusError,
    UpstreamError,
)
from utils.config import settings
from utils.http import HttpClient, is_rate_limit_body
from utils.logging import log_event, start_timer
from utils.schemas import DeveloperResponse, RawReview, Review, ReviewsPage

logger = logging.getLogger(__name__)

REVIEW_DATE_FORMAT = "%Y-%m-%dT%H:%M:%SZ"
OFFSET_RE = re.compile(r"offset=(\d+)")

Sleep = Callable[[float], Awaitable[Any]]


@dataclass
class FetchOptions:
    """Pagination state and filters for one country's fetch."""

    page_size: int = 20
    offset: int = 0
    after_date: Optional[datetime] = None
    before_date: Optional[datetime] = None
    max_total: Optional[int] = None
    inter_page_delay: Optional[float] = None


@dataclass
class PageResult:
    next_url: Optional[str]
    items: list[dict[str, Any]] = field(default_factory=list)


def parse_review_date(value: Any) -> Optional[datetime]:
    """Parse the listing's fixed timestamp format into an aware UTC datetime."""
    try:
        return datetime.strptime(value, REVIEW_DATE_FORMAT).replace(tzinfo=timezone.utc)
    except (TypeError, ValueError):
        return None


def parse_offset(next_url: str) -> Optional[int]:
    match = OFFSET_RE.search(next_url)
    if not match:
        return None
    return int(match.group(1))


def is_rate_limited(exc: BaseException) -> bool:
    if isinstance(exc, RateLimitedError):
        return True
    return isinstance(exc, UpstreamError) and "too many" in str(exc).lower()


def normalize_review(raw: dict[str, Any], app_id: str, country: str) -> Optional[Review]:
    """
    Convert a raw listing item into a Review.

    Returns None when the item cannot be used: malformed structure, an
    unparsable date, or a rating outside 1..5.
    """
    try:
        item = RawReview(**raw)
    except (ValidationError, TypeError) as e:
        logger.debug("Skipping malformed review item: %s", str(e).split("\n")[0])
        return None

    reviewed_at = parse_review_date(item.attributes.date)
    if reviewed_at is None:
        logger.info(
            "Skipping review with unparsable date: id=%s, date=%r",
            item.id, item.attributes.date,
        )
        return None

    developer_response = None
    if item.attributes.developerResponse is not None:
        developer_response = DeveloperResponse(
            content=item.attributes.developerResponse.body,
            responded_at=parse_review_date(item.attributes.developerResponse.modified),
        )

    try:
        return Review(
            id=item.id,
            app_id=app_id,
            country=country,
            rating=item.attributes.rating,
            title=item.attributes.title,
            content=item.attributes.review,
            reviewed_at=reviewed_at,
            developer_response=developer_response,
        )
    except ValidationError as e:
        logger.debug("Skipping invalid review id=%s: %s", item.id, str(e).split("\n")[0])
        return None


class ReviewFetcher:
    """
    Client for the App Store reviews listing.

    The instance holds no per-saga state: the token travels with each call,
    so one fetcher can serve consecutive sagas.
    """

    def __init__(
        self,
        http: HttpClient,
        api_host: Optional[str] = None,
        api_path: Optional[str] = None,
        referrer: Optional[str] = None,
        user_agents: Optional[list[str]] = None,
        max_retries: Optional[int] = None,
        backoff_initial: Optional[float] = None,
        backoff_max: Optional[float] = None,
        sleep: Optional[Sleep] = None,
    ) -> None:
        """
        Initialize review fetcher.

        Args:
            http: HTTP client used for GET requests
            api_host: Reviews API host, defaults to settings.APP_STORE_API_HOST
            api_path: Path template with {country} and {app_id}, defaults to settings.APP_STORE_API_PATH
            referrer: Referer header, defaults to settings.APP_STORE_REFERRER
            user_agents: User agent pool, defaults to settings.HTTP_USER_AGENTS
            max_retries: Rate-limit retries per page, defaults to settings.RATE_LIMIT_MAX_RETRIES
            backoff_initial: First rate-limit delay, defaults to settings.RATE_LIMIT_BACKOFF_INITIAL_SECONDS
            backoff_max: Rate-limit delay cap, defaults to settings.RATE_LIMIT_BACKOFF_MAX_SECONDS
            sleep: Async sleep override; the saga context's cancellable sleep otherwise
        """
        self.http = http
        self.api_host = (api_host or settings.APP_STORE_API_HOST).rstrip("/")
        self.api_path = api_path or settings.APP_STORE_API_PATH
        self.referrer = referrer or settings.APP_STORE_REFERRER
        self.user_agents = user_agents or settings.HTTP_USER_AGENTS
        self.max_retries = max_retries if max_retries is not None else settings.RATE_LIMIT_MAX_RETRIES
        self.backoff_initial = (
            backoff_initial if backoff_initial is not None else settings.RATE_LIMIT_BACKOFF_INITIAL_SECONDS
        )
        self.backoff_max = backoff_max if backoff_max is not None else settings.RATE_LIMIT_BACKOFF_MAX_SECONDS
        self._sleep = sleep

    def build_request(
        self, token: str, country: str, app_id: str, opts: FetchOptions
    ) -> tuple[str, dict[str, str], dict[str, str]]:
        """Return (url, query params, headers) for one page request."""
        path = (
            self.api_path
            .replace("{country}", quote(country.lower(), safe=""))
            .replace("{app_id}", quote(app_id, safe=""))
            .lstrip("/")
        )
        url = f"{self.api_host}/{path}"

        params = {
            "l": "en-GB",
            "offset": str(opts.offset),
            "sort": "recent",
            "limit": str(opts.page_size),
            "platform": "web",
            "additionalPlatforms": "appletv,ipad,iphone,mac",
            "meta": "robots",
        }

        authorization = token if token.lower().startswith("bearer ") else f"bearer {token}"
        headers = {
            "accept": "*/*",
            "accept-language": "en-US,en;q=0.9",
            "Authorization": authorization,
            "origin": "https://apps.apple.com",
            "referer": self.referrer,
            "sec-ch-ua": '"Not(A:Brand";v="99", "Google Chrome";v="133", "Chromium";v="133"',
            "sec-ch-ua-mobile": "?1",
            "sec-ch-ua-platform": '"Android"',
            "sec-fetch-dest": "empty",
            "sec-fetch-mode": "cors",
            "sec-fetch-site": "same-site",
            "User-Agent": random.choice(self.user_agents),
        }

        return url, params, headers

    async def fetch_reviews(
        self, token: str, country: str, app_id: str, opts: FetchOptions, ctx: SagaContext
    ) -> PageResult:
        """
        Fetch a single page of reviews.

        Raises:
            TransportError: If the request cannot be completed
            SagaCancelledError: If the saga is cancelled mid-request
            AppNotAvailableError: On 404
            RateLimitedError: On 429 or a "too many" marker in an error body
            UnexpectedStatusError: On any other non-200 status
            ResponseParseError: If the body is not a reviews page
        """
        event = "appstore.reviews.request"
        timer = start_timer()
        url, params, headers = self.build_request(token, country, app_id, opts)

        logger.debug(
            "Fetching reviews from App Store: country=%s, limit=%d, offset=%d",
            country, opts.page_size, opts.offset,
            extra=ctx.log_fields(),
        )

        try:
            response = await ctx.run(
                self.http.get(url, params=params, headers=headers, sleep=ctx.sleep)
            )
        except httpx.HTTPError as e:
            log_event(logger, event, "failed", ctx=ctx, latency=timer(), country=country,
                      error="http_request_failed")
            raise TransportError(f"failed to fetch reviews: {e}") from e

        if response.status != 200:
            log_event(logger, event, "failed", ctx=ctx, latency=timer(), country=country,
                      status_code=response.status)
            if response.status == 404:
                raise AppNotAvailableError(country)
            if response.status == 429 or is_rate_limit_body(response.body):
                raise RateLimitedError(response.status)
            raise UnexpectedStatusError(response.status)

        try:
            page = ReviewsPage(**orjson.loads(response.body))
        except (orjson.JSONDecodeError, ValidationError, TypeError) as e:
            log_event(logger, event, "failed", ctx=ctx, latency=timer(), country=country,
                      error="json_parse_failed")
            raise ResponseParseError(f"failed to parse reviews response: {e}") from e

        log_event(logger, event, "success", ctx=ctx, latency=timer(), country=country,
                  reviews_count=len(page.data))
        return PageResult(next_url=page.next or None, items=page.data)

    def _log_rate_limited(self, ctx: SagaContext, country: str) -> Callable[[RetryCallState], None]:
        def before_sleep(retry_state: RetryCallState) -> None:
            log_event(
                logger, "appstore.rate_limited", "retrying", ctx=ctx, level=logging.WARNING,
                country=country,
                attempt=retry_state.attempt_number,
                max_retries=self.max_retries,
                backoff_delay=retry_state.next_action.sleep if retry_state.next_action else None,
            )

        return before_sleep

    async def _fetch_page_with_backoff(
        self, token: str, country: str, app_id: str, opts: FetchOptions, ctx: SagaContext, sleep: Sleep
    ) -> PageResult:
        # A fresh controller per page: a successful page clears the failure streak.
        retrying = AsyncRetrying(
            retry=retry_if_exception(is_rate_limited),
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=self.backoff_initial, max=self.backoff_max),
            sleep=sleep,
            before_sleep=self._log_rate_limited(ctx, country),
        )

        try:
            async for attempt in retrying:
                with attempt:
                    return await self.fetch_reviews(token, country, app_id, opts, ctx)
        except RetryError as e:
            attempts = e.last_attempt.attempt_number
            log_event(logger, "appstore.retry.backoff", "failed", ctx=ctx, level=logging.WARNING,
                      country=country, attempt=attempts, max_retries=self.max_retries)
            raise RetriesExhaustedError(attempts) from e.last_attempt.exception()

        raise AssertionError("unreachable: retry loop exited without outcome")

    async def fetch_all_reviews(
        self, token: str, country: str, app_id: str, opts: Optional[FetchOptions], ctx: SagaContext
    ) -> list[Review]:
        """
        Fetch every review that satisfies the options' date window and limit.

        Pages are requested strictly in cursor order. Rate limiting is retried
        at the same offset with bounded exponential backoff; any other error
        aborts.

        Args:
            token: Bearer token for the reviews endpoint
            country: Two-letter country code
            app_id: App Store app id
            opts: Fetch options, defaults to FetchOptions()
            ctx: Saga context for correlation and cancellation

        Returns:
            Qualifying reviews in listing order

        Raises:
            FetchAbortedError: On cancellation, exhausted retries, or any other
                fetch error. Carries the reviews gathered so far; the
                triggering error is chained as its cause.
        """
        opts = opts or FetchOptions()
        sleep = self._sleep or ctx.sleep
        timer = start_timer()

        reviews: list[Review] = []
        offset = opts.offset
        pages = 0

        while True:
            try:
                ctx.raise_if_cancelled()
                page = await self._fetch_page_with_backoff(
                    token, country, app_id, replace(opts, offset=offset), ctx, sleep
                )
            except IngestError as e:
                log_event(logger, "appstore.reviews.fetched", "failed", ctx=ctx, latency=timer(),
                          country=country, reviews_count=len(reviews), pages=pages, error=str(e))
                raise FetchAbortedError(country, reviews) from e

            pages += 1
            recent_in_page = 0

            for raw in page.items:
                review = normalize_review(raw, app_id, country)
                if review is None:
                    continue

                if opts.after_date is not None and review.reviewed_at < opts.after_date:
                    continue
                recent_in_page += 1

                if opts.before_date is not None and review.reviewed_at > opts.before_date:
                    continue

                reviews.append(review)

                if opts.max_total and opts.max_total > 0 and len(reviews) >= opts.max_total:
                    log_event(logger, "appstore.reviews.fetched", "success", ctx=ctx, latency=timer(),
                              country=country, reviews_count=len(reviews), pages=pages, reason="limit")
                    return reviews

            if not page.next_url:
                break

            # Listing is newest first: a page wholly older than the window ends it.
            if opts.after_date is not None and recent_in_page == 0:
                logger.debug("Page older than date window, stopping: country=%s", country,
                             extra=ctx.log_fields())
                break

            next_offset = parse_offset(page.next_url)
            if next_offset is None:
                logger.warning("Offset not found in next link, stopping: next=%s", page.next_url,
                               extra=ctx.log_fields())
                break
            offset = next_offset

            if opts.inter_page_delay:
                try:
                    await sleep(opts.inter_page_delay)
                except IngestError as e:
                    raise FetchAbortedError(country, reviews) from e

        log_event(logger, "appstore.reviews.fetched", "success", ctx=ctx, latency=timer(),
                  country=country, reviews_count=len(reviews), pages=pages)
        return reviews
