"""
Pydantic Schemas - Data Validation Models

Defines all Pydantic schemas for data validation throughout the pipeline:
- Inbound extract requests and their message wrapper
- Raw App Store review payloads
- Normalized review rows
- Completion events and their outbound envelope

Usage:
    from utils.schemas import InboundMessage

    message = InboundMessage(**decoded)
    request = message.request
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class FetchRequest(BaseModel):
    """Request to fetch reviews for one app across a set of countries.

    Dates travel as YYYY-MM-DD strings and are interpreted by the
    orchestrator, so an unparsable date does not reject the whole message.
    """

    saga_id: str = Field(default="", description="Saga correlation id")
    app_id: str = Field(..., description="App Store numeric app id")
    app_name: str = Field(default="", description="App name used for the landing page slug")
    countries: list[str] = Field(..., description="Ordered two-letter country codes")
    date_from: Optional[str] = Field(default=None, description="Lower date bound (YYYY-MM-DD)")
    date_to: Optional[str] = Field(default=None, description="Upper date bound (YYYY-MM-DD)")
    limit: Optional[int] = Field(default=None, ge=1, description="Max reviews per country")

    @field_validator("countries")
    @classmethod
    def strip_countries(cls, v: list[str]) -> list[str]:
        """Trim whitespace around each country code."""
        return [country.strip() for country in v]


class InboundMessage(BaseModel):
    """Message consumed from the request channel.

    {
        "saga_id": "s1",
        "message_id": "6b1c...",
        "payload": {"app_id": "...", "countries": ["us"], ...}
    }
    """

    saga_id: str = Field(..., description="Saga correlation id")
    message_id: Optional[str] = Field(default=None, description="Producer message id")
    payload: FetchRequest

    @property
    def request(self) -> FetchRequest:
        """Return the payload carrying the wrapper's saga id, which always wins."""
        if self.payload.saga_id == self.saga_id:
            return self.payload
        return self.payload.model_copy(update={"saga_id": self.saga_id})


class RawDeveloperResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    body: str = ""
    modified: str = ""


class RawReviewAttributes(BaseModel):
    model_config = ConfigDict(extra="ignore")

    date: str
    rating: int
    review: str = ""
    title: str = ""
    developerResponse: Optional[RawDeveloperResponse] = None


class RawReview(BaseModel):
    """Review item as returned by the App Store reviews endpoint."""

    model_config = ConfigDict(extra="ignore")

    id: str
    attributes: RawReviewAttributes


class ReviewsPage(BaseModel):
    """One page of the reviews listing: {next?: str, data: [...]}."""

    model_config = ConfigDict(extra="ignore")

    next: Optional[str] = None
    data: list[dict[str, Any]] = Field(default_factory=list)


class DeveloperResponse(BaseModel):
    content: str
    responded_at: Optional[datetime] = None


class Review(BaseModel):
    """Normalized review, one row of the raw_reviews table."""

    id: str = Field(..., min_length=1)
    app_id: str
    country: str
    rating: int = Field(..., ge=1, le=5)
    title: str = ""
    content: str = ""
    reviewed_at: datetime
    developer_response: Optional[DeveloperResponse] = None


class CompletionEvent(BaseModel):
    """Business payload published once per saga."""

    saga_id: str
    original_request: FetchRequest
    total_count: int = Field(..., ge=0)


class EnvelopeMeta(BaseModel):
    app_id: str = ""
    service: str = ""
    version: str = ""


class Envelope(BaseModel):
    """Outer wrapper around a published event.

    Carries routing and correlation metadata distinct from the payload:
    `key` is the routing key, `saga_id` the correlation id.
    """

    message_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    type: str
    saga_id: str
    key: str
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    meta: EnvelopeMeta = Field(default_factory=EnvelopeMeta)
    payload: dict[str, Any]
