"""
Bearer token extraction from the App Store landing page.

No retries here: transport-level retries live in the HTTP client and
resubmitting the saga is the retry for a missing token.
"""

import logging
import random
from typing import Optional

import httpx

from apps.ingestor.context import SagaContext
from apps.ingestor.errors import TokenNotFoundError, TransportError, UnexpectedStatusError
from apps.ingestor.landing import build_landing_url, extract_bearer_token
from utils.config import settings
from utils.http import HttpClient
from utils.logging import log_event, start_timer

logger = logging.getLogger(__name__)

EVENT = "appstore.token.extracted"


class TokenExtractor:
    """Fetches an app's landing page and reads the bearer token from it."""

    def __init__(self, http: HttpClient, user_agents: Optional[list[str]] = None) -> None:
        self.http = http
        self.user_agents = user_agents or settings.HTTP_USER_AGENTS

    async def extract_token(self, country: str, app_name: str, app_id: str, ctx: SagaContext) -> str:
        """
        Extract the bearer token for an app.

        Args:
            country: Two-letter country code of the landing page
            app_name: App name, used for the URL slug
            app_id: App Store app id
            ctx: Saga context for correlation

        Returns:
            Bearer token string

        Raises:
            TransportError: If the landing page cannot be fetched
            SagaCancelledError: If the saga is cancelled mid-request
            UnexpectedStatusError: If the landing page does not answer 200
            TokenNotFoundError: If the page carries no token
        """
        timer = start_timer()
        url = build_landing_url(country, app_name, app_id)

        logger.debug("Extracting token from App Store: url=%s", url, extra=ctx.log_fields())

        headers = {"User-Agent": random.choice(self.user_agents)}
        try:
            response = await ctx.run(self.http.get(url, headers=headers, sleep=ctx.sleep))
        except httpx.HTTPError as e:
            log_event(logger, EVENT, "failed", ctx=ctx, latency=timer(), country=country,
                      error="http_request_failed")
            raise TransportError(f"extract token failed: {e}") from e

        if response.status != 200:
            log_event(logger, EVENT, "failed", ctx=ctx, latency=timer(), country=country,
                      status_code=response.status)
            raise UnexpectedStatusError(response.status)

        token = extract_bearer_token(response.text)
        if not token:
            log_event(logger, EVENT, "failed", ctx=ctx, latency=timer(), country=country,
                      error="token_not_found")
            raise TokenNotFoundError(country)

        log_event(logger, EVENT, "success", ctx=ctx, latency=timer(), country=country)
        return token
