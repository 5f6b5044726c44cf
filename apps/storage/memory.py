from typing import Dict, Optional, Tuple

from apps.storage.bunny import sorted_query_string
from apps.storage.interface import DEFAULT_EXPIRES_IN, unsupported_upload_urls
from apps.storage.schema import BlobMetadata, DeleteResult


class MemoryStorage:
    """Process wide in-memory store for tests. Not for production use."""

    supports_upload_urls = False

    # Shared store across instances so the background jobs see what the request path wrote
    _shared_store: Dict[str, Tuple[bytes, str]] = {}

    @classmethod
    def reset(cls) -> None:
        cls._shared_store.clear()

    async def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> None:
        MemoryStorage._shared_store[key] = (bytes(data), content_type)

    async def get(self, key: str) -> Optional[bytes]:
        stored = MemoryStorage._shared_store.get(key)
        if stored is None:
            return None
        return stored[0]

    async def head(self, key: str) -> Optional[BlobMetadata]:
        stored = MemoryStorage._shared_store.get(key)
        if stored is None:
            return None
        return BlobMetadata(content_length=len(stored[0]), content_type=stored[1])

    async def exists(self, key: str) -> bool:
        return key in MemoryStorage._shared_store

    async def delete(self, key: str) -> DeleteResult:
        if MemoryStorage._shared_store.pop(key, None) is None:
            return DeleteResult.NOT_FOUND
        return DeleteResult.DELETED

    async def generate_upload_url(self, key: str, expires_in: int = DEFAULT_EXPIRES_IN) -> str:
        raise unsupported_upload_urls("Test")

    async def generate_download_url(
        self,
        key: str,
        expires_in: int = DEFAULT_EXPIRES_IN,
        extra_params: Optional[Dict[str, str]] = None,
    ) -> str:
        query_string = sorted_query_string(extra_params)
        return f"test://{key}?{query_string}" if query_string else f"test://{key}"
