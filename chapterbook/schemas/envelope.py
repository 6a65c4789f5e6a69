from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class ResponseMeta(BaseModel):
    api_version: str = "1.0"
    processing_time_ms: int
    timestamp: datetime
    warnings: list[str] = Field(default_factory=list)


class ErrorLocation(BaseModel):
    field: str | None = None
    index: int | None = None
    chapter: str | None = None


class ErrorInfo(BaseModel):
    code: str
    message: str
    details: str | None = None  # Diagnostic text, already scrubbed of host paths
    location: ErrorLocation | None = None
    retryable: bool = False
    suggested_fix: str | None = None


class EnvelopeResponse(BaseModel):
    request_id: str
    data: Any | None = None
    error: ErrorInfo | None = None
    meta: ResponseMeta
