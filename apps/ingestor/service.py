"""
Ingest Orchestrator - One Saga Step From Request to Completion Event

Received -> Validated -> TokenAcquired -> PerCountry(0..n) -> Aggregated
-> Published -> Done, with any step able to fail the saga.

Countries are processed strictly in request order. A fetch failure aborts
the saga before anything is published; a failed save only loses that one
review. The completion event is published at most once per call.
"""

import logging
import re
from datetime import datetime, time, timezone
from typing import Optional, Protocol

from apps.ingestor.context import SagaContext
from apps.ingestor.errors import FetchAbortedError, IngestError, PersistenceError, RequestValidationError
from apps.ingestor.fetcher import FetchOptions
from utils.config import settings
from utils.logging import log_event, start_timer
from utils.schemas import CompletionEvent, FetchRequest, Review

logger = logging.getLogger(__name__)

REQUEST_DATE_FORMAT = "%Y-%m-%d"
COUNTRY_RE = re.compile(r"^[A-Za-z]{2}$")


class TokenSource(Protocol):
    async def extract_token(self, country: str, app_name: str, app_id: str, ctx: SagaContext) -> str: ...


class ReviewSource(Protocol):
    async def fetch_all_reviews(
        self, token: str, country: str, app_id: str, opts: Optional[FetchOptions], ctx: SagaContext
    ) -> list[Review]: ...


class ReviewSink(Protocol):
    def save_raw_review(self, review: Review) -> None: ...


class EventSink(Protocol):
    async def publish_completed(self, event: CompletionEvent, ctx: SagaContext) -> object: ...


def validate_request(request: FetchRequest) -> None:
    """
    Check the request's invariants.

    Raises:
        RequestValidationError: If the saga id or app id is blank, no country
            is given, or a country is not a two-letter code
    """
    if not request.saga_id.strip():
        raise RequestValidationError("saga_id is required")
    if not request.app_id.strip():
        raise RequestValidationError("app_id is required")
    if not request.countries:
        raise RequestValidationError("at least one country is required")

    invalid = [country for country in request.countries if not COUNTRY_RE.match(country)]
    if invalid:
        raise RequestValidationError(f"invalid country codes: {', '.join(invalid)}")


def parse_request_date(value: Optional[str], end_of_day: bool = False) -> Optional[datetime]:
    """Parse a YYYY-MM-DD bound into an aware UTC datetime; None if absent or unparsable."""
    if not value:
        return None
    try:
        day = datetime.strptime(value.strip(), REQUEST_DATE_FORMAT).date()
    except ValueError:
        return None
    return datetime.combine(day, time.max if end_of_day else time.min, tzinfo=timezone.utc)


class IngestOrchestrator:
    """Runs one extract request through token, fetch, persist and publish."""

    def __init__(
        self,
        extractor: TokenSource,
        fetcher: ReviewSource,
        repository: ReviewSink,
        publisher: EventSink,
        max_total: Optional[int] = None,
        page_size: Optional[int] = None,
        inter_page_delay: Optional[float] = None,
    ) -> None:
        self.extractor = extractor
        self.fetcher = fetcher
        self.repository = repository
        self.publisher = publisher
        self.max_total = max_total or settings.APP_STORE_LIMIT
        self.page_size = page_size or settings.APP_STORE_PAGE_SIZE
        self.inter_page_delay = (
            inter_page_delay if inter_page_delay is not None else settings.APP_STORE_PAGE_DELAY_SECONDS
        )

    async def handle(self, request: FetchRequest, ctx: SagaContext) -> CompletionEvent:
        """
        Process one extract request end to end.

        Args:
            request: Validated-by-schema extract request
            ctx: Saga context for correlation and cancellation

        Returns:
            The completion event that was published

        Raises:
            RequestValidationError: Before any side effect
            UpstreamError: If the token cannot be extracted
            FetchAbortedError: If fetching any country fails
            PublishError: If the completion event cannot be published
        """
        timer = start_timer()

        try:
            validate_request(request)
            log_event(logger, "saga.validated", "success", ctx=ctx, countries=request.countries)

            token_country = request.countries[0]
            token = await self.extractor.extract_token(token_country, request.app_name, request.app_id, ctx)

            total_count = 0
            for country in request.countries:
                total_count += await self._process_country(request, country, token, ctx)

            event = CompletionEvent(saga_id=request.saga_id, original_request=request, total_count=total_count)
            await self.publisher.publish_completed(event, ctx)

        except IngestError as e:
            log_event(logger, "saga.failed", "failed", ctx=ctx, latency=timer(), level=logging.ERROR,
                      error=str(e), cause=str(e.__cause__) if e.__cause__ else None,
                      error_type=type(e).__name__)
            raise

        log_event(logger, "saga.completed", "success", ctx=ctx, latency=timer(), total_count=total_count)
        return event

    def _fetch_options(self, request: FetchRequest, ctx: SagaContext) -> FetchOptions:
        after_date = parse_request_date(request.date_from)
        if request.date_from and after_date is None:
            logger.warning("Unparsable date_from=%r, fetching without lower bound", request.date_from,
                           extra=ctx.log_fields())

        before_date = parse_request_date(request.date_to, end_of_day=True)
        if request.date_to and before_date is None:
            logger.warning("Unparsable date_to=%r, fetching without upper bound", request.date_to,
                           extra=ctx.log_fields())

        return FetchOptions(
            page_size=self.page_size,
            offset=0,
            after_date=after_date,
            before_date=before_date,
            max_total=request.limit or self.max_total,
            inter_page_delay=self.inter_page_delay or None,
        )

    async def _process_country(self, request: FetchRequest, country: str, token: str, ctx: SagaContext) -> int:
        timer = start_timer()
        logger.info("Processing country: %s for app: %s", country, request.app_id, extra=ctx.log_fields())

        opts = self._fetch_options(request, ctx)
        try:
            reviews = await self.fetcher.fetch_all_reviews(token, country, request.app_id, opts, ctx)
        except FetchAbortedError as e:
            log_event(logger, "saga.country.processed", "failed", ctx=ctx, latency=timer(),
                      country=country, fetched_before_abort=len(e.reviews))
            raise

        saved = 0
        for review in reviews:
            try:
                self.repository.save_raw_review(review)
                saved += 1
            except PersistenceError as e:
                logger.warning("Failed to save review %s: %s", review.id, str(e), extra=ctx.log_fields())

        log_event(logger, "saga.country.processed", "success", ctx=ctx, latency=timer(),
                  country=country, fetched=len(reviews), saved=saved)
        return len(reviews)
