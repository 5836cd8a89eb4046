"""
Error taxonomy for the review ingestor.

Upstream and fetch errors abort a saga; persistence errors are absorbed per
review; publish errors escalate after reviews were already stored.
"""

from typing import Optional, Sequence


class IngestError(Exception):
    """Base class for all ingestor errors."""


class RequestValidationError(IngestError):
    """Malformed or incomplete extract request. Never retried."""


class UpstreamError(IngestError):
    """Failure talking to the App Store."""


class TransportError(UpstreamError):
    """The HTTP request could not be completed."""


class UnexpectedStatusError(UpstreamError):
    def __init__(self, status: int, message: Optional[str] = None) -> None:
        self.status = status
        super().__init__(message or f"unexpected status code: {status}")


class AppNotAvailableError(UnexpectedStatusError):
    def __init__(self, country: str) -> None:
        self.country = country
        super().__init__(404, f"app not found or not available in country {country}")


class RateLimitedError(UnexpectedStatusError):
    def __init__(self, status: int = 429) -> None:
        super().__init__(status, f"rate limited: too many requests (status {status})")


class TokenNotFoundError(UpstreamError):
    """Landing page had no bearer token. Resubmitting the request may succeed."""

    def __init__(self, country: str) -> None:
        self.country = country
        super().__init__(f"token not found on landing page for country {country}")


class ResponseParseError(UpstreamError):
    """Reviews endpoint returned a body that is not a reviews page."""


class RetriesExhaustedError(UpstreamError):
    def __init__(self, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(f"maximum retry attempts exceeded after {attempts} attempts")


class SagaCancelledError(IngestError):
    """The saga's cancellation signal fired."""


class FetchAbortedError(IngestError):
    """Fetching stopped on an error; carries the reviews gathered before it.

    The triggering error is available as ``__cause__``.
    """

    def __init__(self, country: str, reviews: Sequence = ()) -> None:
        self.country = country
        self.reviews = list(reviews)
        super().__init__(
            f"fetch aborted for country {country} after {len(self.reviews)} reviews"
        )


class PersistenceError(IngestError):
    def __init__(self, review_id: str, message: str) -> None:
        self.review_id = review_id
        super().__init__(f"failed to save review {review_id}: {message}")


class PublishError(IngestError):
    """Completion event could not be published."""
