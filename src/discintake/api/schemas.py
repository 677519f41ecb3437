"""Pydantic request/response schemas for the discintake API."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SignUploadRequest(_CamelModel):
    """Request body for a pre-signed upload ticket."""

    bucket: str | None = None
    content_type: str = Field(default="image/jpeg", pattern=r"^image/[\w.+-]+$")


class SignUploadResponse(_CamelModel):
    """A one-time upload ticket for a single object key."""

    key: str = Field(description="Storage object key, scoped under the caller's id")
    token: str = Field(description="One-time upload token")
    upload_url: str = Field(description="URL to PUT the object bytes to")
    public_url: str | None = None
    content_type: str
    bucket: str


class BlurResponse(BaseModel):
    """Blurred placeholder for a public image."""

    base64: str = Field(description="data: URL of a tiny WebP rendition")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    storage: str
    bucket: str
    blur_cache_entries: int


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
