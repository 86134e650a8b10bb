"""Pydantic models for API request/response schemas and WebSocket frames."""
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, EmailStr, Field, TypeAdapter


class WebCrawlRequest(BaseModel):
    """
    Request to crawl one page on behalf of a client.

    The result is pushed to the WebSocket connection authenticated as
    ``user_email`` once a worker reports back.
    """
    user_email: EmailStr = Field(..., description="Identity that receives the result")
    query: str = Field(..., min_length=1, max_length=255, description="What to look for on the page")
    original_url: str = Field(..., min_length=1, description="URL to crawl")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "user_email": "ana@example.com",
                "query": "pricing",
                "original_url": "https://example.com/pricing",
            }
        }
    )


class WebCrawlResponse(BaseModel):
    """Acknowledgement of an accepted crawl request."""
    status: str = Field(..., description="Always 'accepted'")
    message: str
    fingerprint: str = Field(..., description="Correlation id echoed in the result frame")


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = Field(..., description="Overall health status")
    redis: str = Field(..., description="Correlation store status")
    broker: str = Field(..., description="Broker connection status")
    consumers: Dict[str, str] = Field(default_factory=dict, description="Consumer state per topic")


class ConsumerStatusResponse(BaseModel):
    """Consumer states plus the configured topic set."""
    topics: List[str]
    consumers: Dict[str, str]
    paused_topics: List[str] = Field(default_factory=list)
    failed: List[str] = Field(default_factory=list, description="Topics the last operation could not apply to")


class ErrorResponse(BaseModel):
    """Standard error response."""
    detail: str = Field(..., description="Error message")


# ---------------------------------------------------------------------------
# WebSocket frames
# ---------------------------------------------------------------------------

class AuthData(BaseModel):
    user_email: EmailStr


class SubmitCrawlData(BaseModel):
    query: str = Field(..., min_length=1, max_length=255)
    original_url: str = Field(..., min_length=1)


class AuthFrame(BaseModel):
    event: Literal["auth"]
    data: AuthData


class SubmitCrawlFrame(BaseModel):
    event: Literal["submit_crawl"]
    data: SubmitCrawlData


InboundFrame = Annotated[Union[AuthFrame, SubmitCrawlFrame], Field(discriminator="event")]

inbound_frame_adapter: TypeAdapter[Any] = TypeAdapter(InboundFrame)


def error_frame(message: str, detail: Optional[Any] = None) -> Dict[str, Any]:
    frame: Dict[str, Any] = {"event": "error", "data": {"message": message}}
    if detail is not None:
        frame["data"]["detail"] = detail
    return frame
