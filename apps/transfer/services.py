"""Moving bytes in and out of the configured blob store."""
import logging
import uuid
from datetime import timedelta
from typing import Dict, Optional

from tortoise.transactions import in_transaction

from apps.filesystem.config_store import ensure_config_stored
from apps.filesystem.errors import PreconditionError
from apps.filesystem.helpers import utcnow
from apps.filesystem.models import Upload
from apps.filesystem.ops import stat
from apps.filesystem.schema import (
    DEFAULT_URL_TTL,
    Config,
    FileCommit,
    FileContents,
    UploadTicket,
)
from apps.filesystem.transact import commit_files
from apps.storage.factory import create_blob_store
from apps.storage.interface import unsupported_upload_urls

logger = logging.getLogger(__name__)

MAX_UPLOAD_SIZE = 16 * 1024 * 1024
DEFAULT_CONTENT_TYPE = "application/octet-stream"


def _upload_ttl(config: Config) -> int:
    return config.upload_url_ttl or DEFAULT_URL_TTL


def _download_ttl(config: Config) -> int:
    return config.download_url_ttl or DEFAULT_URL_TTL


async def prepare_upload(config: Config) -> UploadTicket:
    """Issue a presigned upload URL for a fresh blob id."""
    store = create_blob_store(config.storage)
    if not store.supports_upload_urls:
        raise unsupported_upload_urls(config.storage.type)

    await ensure_config_stored(config)
    blob_id = str(uuid.uuid4())
    ttl = _upload_ttl(config)
    await Upload.create(blob_id=blob_id, expires_at=utcnow() + timedelta(seconds=ttl))
    url = await store.generate_upload_url(blob_id, ttl)
    return UploadTicket(url=url, blob_id=blob_id)


async def register_pending_upload(
    config: Config,
    blob_id: str,
    content_type: Optional[str] = None,
    size: Optional[int] = None,
) -> None:
    """Record the metadata of a finished direct upload so it can be committed.

    Only blob ids issued by prepare_upload are accepted. Size and content type
    come from the backend; a caller supplied size must agree with it.
    """
    await ensure_config_stored(config)
    if not await Upload.filter(blob_id=blob_id).exists():
        raise PreconditionError(f"No pending upload for blob {blob_id}")

    meta = await create_blob_store(config.storage).head(blob_id)
    if meta is None:
        raise PreconditionError(f"Blob {blob_id} has not been uploaded")
    if size is not None and size != meta.content_length:
        raise PreconditionError(
            f"Size mismatch for blob {blob_id}: expected {size}, stored {meta.content_length}"
        )

    async with in_transaction():
        upload = await Upload.filter(blob_id=blob_id).select_for_update().first()
        if upload is None:
            raise PreconditionError(f"No pending upload for blob {blob_id}")
        upload.content_type = meta.content_type or content_type or DEFAULT_CONTENT_TYPE
        upload.size = meta.content_length
        await upload.save(update_fields=["content_type", "size"])


async def upload_blob(config: Config, data: bytes, content_type: Optional[str] = None) -> str:
    """Store bytes through the server and return the new blob id."""
    if len(data) > MAX_UPLOAD_SIZE:
        raise PreconditionError(f"File too large: {len(data)} bytes (max {MAX_UPLOAD_SIZE} bytes)")

    content_type = content_type or DEFAULT_CONTENT_TYPE
    await ensure_config_stored(config)
    blob_id = str(uuid.uuid4())
    # the record exists before the bytes so upload GC can reclaim a failed put
    upload = await Upload.create(
        blob_id=blob_id,
        expires_at=utcnow() + timedelta(seconds=_upload_ttl(config)),
    )
    store = create_blob_store(config.storage)
    await store.put(blob_id, data, content_type)

    upload.content_type = content_type
    upload.size = len(data)
    await upload.save(update_fields=["content_type", "size"])
    logger.debug("Uploaded blob %s (%d bytes)", blob_id, len(data))
    return blob_id


async def get_download_url(
    config: Config,
    blob_id: str,
    ttl: Optional[int] = None,
    extra_params: Optional[Dict[str, str]] = None,
) -> str:
    store = create_blob_store(config.storage)
    return await store.generate_download_url(blob_id, ttl or _download_ttl(config), extra_params)


async def get_blob(config: Config, blob_id: str) -> Optional[bytes]:
    store = create_blob_store(config.storage)
    return await store.get(blob_id)


async def get_file(config: Config, path: str) -> Optional[FileContents]:
    metadata = await stat(path)
    if metadata is None:
        return None
    data = await get_blob(config, metadata.blob_id)
    if data is None:
        return None
    return FileContents(data=data, content_type=metadata.content_type, size=metadata.size)


async def write_file(config: Config, path: str, data: bytes, content_type: Optional[str] = None) -> str:
    """Upload and commit in one step, overwriting whatever is at path."""
    blob_id = await upload_blob(config, data, content_type)
    await commit_files([FileCommit(path=path, blob_id=blob_id)])
    return blob_id
