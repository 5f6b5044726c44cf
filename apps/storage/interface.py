from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional, Protocol

import httpx

from apps.filesystem.errors import StorageError, UnsupportedOperationError
from apps.storage.schema import BlobMetadata, DeleteResult
from config.settings import STORAGE_TIMEOUT

DEFAULT_EXPIRES_IN = 3600


class BlobStore(Protocol):
    """Uniform interface over the blob backends.

    Only `delete` distinguishes a missing object from a failure: it returns
    DeleteResult.NOT_FOUND for the former and raises StorageError for the
    latter. The garbage collectors rely on that difference.
    """

    supports_upload_urls: bool

    async def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> None:
        ...

    async def get(self, key: str) -> Optional[bytes]:
        ...

    async def head(self, key: str) -> Optional[BlobMetadata]:
        ...

    async def exists(self, key: str) -> bool:
        ...

    async def delete(self, key: str) -> DeleteResult:
        ...

    async def generate_upload_url(self, key: str, expires_in: int = DEFAULT_EXPIRES_IN) -> str:
        ...

    async def generate_download_url(
        self,
        key: str,
        expires_in: int = DEFAULT_EXPIRES_IN,
        extra_params: Optional[Dict[str, str]] = None,
    ) -> str:
        ...


def unsupported_upload_urls(backend: str) -> UnsupportedOperationError:
    return UnsupportedOperationError(
        f"{backend} storage does not support presigned upload URLs. "
        "Upload through the proxy endpoint instead."
    )


@asynccontextmanager
async def storage_client(timeout: Optional[float] = None) -> AsyncIterator[httpx.AsyncClient]:
    """httpx client with a bounded timeout; transport failures become StorageError."""
    try:
        async with httpx.AsyncClient(timeout=timeout or STORAGE_TIMEOUT) as client:
            yield client
    except httpx.TimeoutException as e:
        raise StorageError(f"Storage request timed out: {e}") from e
    except httpx.HTTPError as e:
        raise StorageError(f"Storage request failed: {e}") from e


def raise_for_storage_status(resp, action: str, ok=(200, 201, 204)) -> None:
    if resp.status_code not in ok:
        text = getattr(resp, "text", "")
        raise StorageError(f"{action} failed: {resp.status_code} {text}", status_code=resp.status_code)
