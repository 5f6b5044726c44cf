import json
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, Optional

from apps.filesystem.errors import StorageError
from apps.storage.bunny import sorted_query_string
from apps.storage.interface import DEFAULT_EXPIRES_IN, unsupported_upload_urls
from apps.storage.schema import BlobMetadata, DeleteResult


@contextmanager
def _disk_errors(action: str, blob_id: str) -> Iterator[None]:
    """Filesystem faults other than a missing file become StorageError."""
    try:
        yield
    except OSError as e:
        raise StorageError(f"Local {action} of {blob_id} failed: {e}") from e


class LocalStorage:
    """Blobs as files under base_path, content type kept in a sidecar file."""

    supports_upload_urls = False

    def __init__(self, base_path: str):
        self.base_path = base_path
        os.makedirs(self.base_path, exist_ok=True)

    def _path(self, blob_id: str) -> str:
        return os.path.join(self.base_path, blob_id)

    def _meta_path(self, blob_id: str) -> str:
        return self._path(blob_id) + ".meta"

    async def put(self, blob_id: str, data: bytes, content_type: str = "application/octet-stream") -> None:
        path = self._path(blob_id)
        dirpath = os.path.dirname(path)
        with _disk_errors("PUT", blob_id):
            if dirpath:
                os.makedirs(dirpath, exist_ok=True)
            with open(path, 'wb') as f:
                f.write(data)
            with open(self._meta_path(blob_id), 'w') as f:
                json.dump({"content_type": content_type}, f)

    async def get(self, blob_id: str) -> Optional[bytes]:
        with _disk_errors("GET", blob_id):
            try:
                with open(self._path(blob_id), 'rb') as f:
                    return f.read()
            except FileNotFoundError:
                return None

    async def head(self, blob_id: str) -> Optional[BlobMetadata]:
        with _disk_errors("HEAD", blob_id):
            try:
                with open(self._path(blob_id), 'rb') as f:
                    size = os.fstat(f.fileno()).st_size
            except FileNotFoundError:
                return None
            content_type = None
            try:
                with open(self._meta_path(blob_id)) as f:
                    content_type = json.load(f).get("content_type")
            except FileNotFoundError:
                pass
        return BlobMetadata(content_length=size, content_type=content_type)

    async def exists(self, blob_id: str) -> bool:
        return await self.head(blob_id) is not None

    async def delete(self, blob_id: str) -> DeleteResult:
        with _disk_errors("DELETE", blob_id):
            try:
                os.remove(self._path(blob_id))
            except FileNotFoundError:
                return DeleteResult.NOT_FOUND
            try:
                os.remove(self._meta_path(blob_id))
            except FileNotFoundError:
                pass
        return DeleteResult.DELETED

    async def generate_upload_url(self, blob_id: str, expires_in: int = DEFAULT_EXPIRES_IN) -> str:
        raise unsupported_upload_urls("Local")

    async def generate_download_url(
        self,
        blob_id: str,
        expires_in: int = DEFAULT_EXPIRES_IN,
        extra_params: Optional[Dict[str, str]] = None,
    ) -> str:
        url = Path(self._path(blob_id)).resolve().as_uri()
        query_string = sorted_query_string(extra_params)
        return f"{url}?{query_string}" if query_string else url
