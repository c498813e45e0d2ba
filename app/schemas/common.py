from pydantic import BaseModel, ConfigDict, Field, HttpUrl
from datetime import datetime
from typing import Literal


class ErrorResponse(BaseModel):
    error: str
    detail: str | None = None
    field: str | None = None
    retryable: bool = False
    timestamp: datetime


class Attachment(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(..., min_length=1, max_length=64)
    filename: str = Field(..., min_length=1, max_length=255)
    url: HttpUrl
    type: Literal["image", "code", "document", "other"]
    mime_type: str = Field(..., min_length=1, max_length=100)
    size: int = Field(..., gt=0)
    uploaded_at: datetime
