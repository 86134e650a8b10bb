"""Pydantic models for broker message bodies exchanged with the crawl workers."""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class ResultStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


class CrawlRequestBody(BaseModel):
    """Body of a message on the crawl request topic."""

    fingerprint: str = Field(..., min_length=1)
    query: str = Field(..., min_length=1, max_length=255)
    url: str = Field(..., min_length=1)


class CrawlResultBody(BaseModel):
    """
    Body of a message on the crawl response topic.

    The result (or error) lives here; correlation metadata lives in the headers.
    """

    model_config = ConfigDict(extra="ignore")

    success: bool
    scraped_data: Optional[Any] = None
    error_message: Optional[str] = None
