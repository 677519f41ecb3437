"""API route definitions."""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status

from discintake.api.middleware import require_owner_id, verify_api_key
from discintake.api.schemas import (
    BlurResponse,
    ErrorResponse,
    HealthResponse,
    SignUploadRequest,
    SignUploadResponse,
)
from discintake.errors import StorageError
from discintake.upload.keys import build_object_key

if TYPE_CHECKING:
    from discintake.config import Settings
    from discintake.imaging.blur import BlurPlaceholderCache
    from discintake.upload.storage import ObjectStorage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])

BLUR_CACHE_CONTROL = "public, s-maxage=31536000, stale-while-revalidate=86400, max-age=31536000"


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_storage(request: Request) -> ObjectStorage:
    storage: ObjectStorage = request.app.state.storage
    return storage


def _get_blur_cache(request: Request) -> BlurPlaceholderCache:
    cache: BlurPlaceholderCache = request.app.state.blur_cache
    return cache


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = _get_settings(request)
    storage = _get_storage(request)
    return HealthResponse(
        status="ok",
        storage=type(storage).__name__,
        bucket=settings.bucket,
        blur_cache_entries=len(_get_blur_cache(request)),
    )


@router.post(
    "/storage/sign-upload",
    response_model=SignUploadResponse,
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
        status.HTTP_401_UNAUTHORIZED: {"model": ErrorResponse},
    },
    summary="Create a pre-signed upload ticket",
)
async def sign_upload(
    request: Request,
    response: Response,
    owner_id: Annotated[str, Depends(require_owner_id)],
    body: SignUploadRequest | None = None,
) -> SignUploadResponse:
    """Issue a one-time upload ticket for a fresh key under the caller's folder."""
    response.headers["Cache-Control"] = "no-store"
    settings = _get_settings(request)
    storage = _get_storage(request)
    body = body or SignUploadRequest()

    bucket = body.bucket or settings.bucket
    if bucket != storage.bucket:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown bucket: {bucket}")

    key = build_object_key(owner_id, datetime.now(UTC))
    try:
        ticket = await asyncio.to_thread(storage.create_signed_upload_ticket, key, body.content_type)
    except StorageError as exc:
        logger.warning("sign-upload failed for %s: %s", owner_id, exc)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    return SignUploadResponse(
        key=ticket.path,
        token=ticket.token,
        upload_url=ticket.url,
        public_url=storage.get_public_url(ticket.path),
        content_type=body.content_type,
        bucket=bucket,
    )


@router.get(
    "/blur",
    response_model=BlurResponse,
    responses={status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse}},
    summary="Blurred placeholder for a public image",
)
async def blur(
    request: Request,
    response: Response,
    url: Annotated[str | None, Query()] = None,
) -> BlurResponse:
    """Return a tiny base64 rendition of ``url`` for use as a loading placeholder."""
    if not url:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing ?url")
    placeholder = await _get_blur_cache(request).get(url)
    response.headers["Cache-Control"] = BLUR_CACHE_CONTROL
    return BlurResponse(base64=placeholder or "")
