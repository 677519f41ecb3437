"""
Object storage abstraction: S3-compatible buckets and in-memory testing.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol
from urllib.parse import quote, urlsplit

import boto3
import httpx
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from discintake.errors import StorageError

if TYPE_CHECKING:
    from discintake.config import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UploadTicket:
    """One-time credential for a direct write of a single object."""

    path: str
    token: str
    url: str


class ObjectStorage(Protocol):
    """Defines the operations the upload pipeline needs from object storage.

    Implementations should raise :class:`StorageError`, but the upload
    coordinator treats any exception from these calls as a failed transport.
    """

    bucket: str

    def put_object(self, key: str, data: bytes, content_type: str, cache_control: str) -> None:
        ...

    def get_public_url(self, key: str) -> str:
        ...

    def create_signed_upload_ticket(self, key: str, content_type: str = "image/jpeg") -> UploadTicket:
        ...

    def put_via_ticket(self, ticket: UploadTicket, data: bytes, content_type: str) -> None:
        ...


@dataclass
class StoredObject:
    data: bytes = field(repr=False)
    content_type: str
    cache_control: str | None = None


@dataclass
class InMemoryObjectStorage:
    """Test double for storage interactions.

    ``primary_failures`` and ``fallback_failures`` make the next N calls of
    the respective transport fail; a negative value fails every call.
    ``delay`` makes ``put_object`` block, to exercise timeouts.
    """

    bucket: str = "listing-images"
    base_url: str = "https://example.test/storage/v1/object/public"
    primary_failures: int = 0
    fallback_failures: int = 0
    delay: float = 0.0
    objects: dict[str, StoredObject] = field(default_factory=dict)
    tickets: dict[str, UploadTicket] = field(default_factory=dict)
    calls: list[tuple[str, str]] = field(default_factory=list)

    def __post_init__(self) -> None:
        self._lock = threading.Lock()

    def put_object(self, key: str, data: bytes, content_type: str, cache_control: str) -> None:
        with self._lock:
            self.calls.append(("put_object", key))
            fail = self._consume("primary_failures")
        if self.delay:
            time.sleep(self.delay)
        if fail:
            raise StorageError(f"put_object failed for {key}")
        with self._lock:
            if key in self.objects:
                raise StorageError(f"Object already exists: {key}")
            self.objects[key] = StoredObject(data=bytes(data), content_type=content_type, cache_control=cache_control)

    def get_public_url(self, key: str) -> str:
        return f"{self.base_url}/{self.bucket}/{quote(key)}"

    def create_signed_upload_ticket(self, key: str, content_type: str = "image/jpeg") -> UploadTicket:
        with self._lock:
            self.calls.append(("create_signed_upload_ticket", key))
            token = f"token-{len(self.tickets) + 1}"
            url = f"{self.base_url}/upload/sign/{self.bucket}/{key}?token={token}"
            ticket = UploadTicket(path=key, token=token, url=url)
            self.tickets[token] = ticket
            return ticket

    def put_via_ticket(self, ticket: UploadTicket, data: bytes, content_type: str) -> None:
        with self._lock:
            self.calls.append(("put_via_ticket", ticket.path))
            if self._consume("fallback_failures"):
                raise StorageError(f"Signed upload failed for {ticket.path}")
            if self.tickets.pop(ticket.token, None) is None:
                raise StorageError("Upload ticket is invalid or already used")
            self.objects[ticket.path] = StoredObject(data=bytes(data), content_type=content_type)

    def _consume(self, counter: str) -> bool:
        remaining = getattr(self, counter)
        if remaining == 0:
            return False
        if remaining > 0:
            setattr(self, counter, remaining - 1)
        return True


@dataclass
class S3ObjectStorage:
    """
    S3-compatible storage client.

    Tickets are pre-signed PUT URLs; the token is their signed query string.
    """

    bucket: str
    region: str
    endpoint: str
    access_key_id: str
    secret_access_key: str
    public_base_url: str | None = None
    signed_url_ttl: int = 3600
    http_timeout: float = 30.0

    def __post_init__(self) -> None:
        config = Config(
            s3={"addressing_style": "virtual"},
            signature_version="s3v4",
        )
        self._client = boto3.client(
            "s3",
            endpoint_url=self.endpoint,
            region_name=self.region,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
            config=config,
        )

    def put_object(self, key: str, data: bytes, content_type: str, cache_control: str) -> None:
        try:
            self._client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                CacheControl=cache_control,
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"put_object failed for {key}: {exc}") from exc

    def get_public_url(self, key: str) -> str:
        base = self.public_base_url or f"{self.endpoint.rstrip('/')}/{self.bucket}"
        return f"{base.rstrip('/')}/{quote(key)}"

    def create_signed_upload_ticket(self, key: str, content_type: str = "image/jpeg") -> UploadTicket:
        try:
            url = self._client.generate_presigned_url(
                ClientMethod="put_object",
                Params={"Bucket": self.bucket, "Key": key, "ContentType": content_type},
                ExpiresIn=self.signed_url_ttl,
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Could not sign upload for {key}: {exc}") from exc
        return UploadTicket(path=key, token=urlsplit(url).query, url=url)

    def put_via_ticket(self, ticket: UploadTicket, data: bytes, content_type: str) -> None:
        try:
            response = httpx.put(
                ticket.url,
                content=data,
                headers={"Content-Type": content_type},
                timeout=self.http_timeout,
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise StorageError(f"Signed upload failed for {ticket.path}: {exc}") from exc


def get_storage_client(settings: Settings) -> ObjectStorage:
    """
    Returns a storage client based on settings.

    Uses the in-memory backend when requested, otherwise requires the full
    S3 configuration.
    """
    if settings.use_in_memory_storage:
        logger.info("Using in-memory object storage")
        return InMemoryObjectStorage(bucket=settings.bucket)
    if settings.s3_endpoint and settings.s3_region and settings.aws_access_key_id and settings.aws_secret_access_key:
        return S3ObjectStorage(
            bucket=settings.bucket,
            region=settings.s3_region,
            endpoint=settings.s3_endpoint,
            access_key_id=settings.aws_access_key_id,
            secret_access_key=settings.aws_secret_access_key,
            public_base_url=settings.public_base_url,
            signed_url_ttl=settings.signed_url_ttl,
            http_timeout=settings.upload_timeout,
        )
    raise RuntimeError(
        "No object storage configured. Set DISCINTAKE_S3_* settings or DISCINTAKE_USE_IN_MEMORY_STORAGE=true."
    )
