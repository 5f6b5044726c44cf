"""Row level helpers shared by the transaction engine, the query ops and the GC jobs.

Callers are expected to be inside `in_transaction()` whenever they mutate.
"""
from datetime import datetime, timezone
from typing import Optional

from tortoise.expressions import F

from apps.filesystem.errors import InvariantViolation
from apps.filesystem.models import Blob, File
from apps.filesystem.schema import FileAttributes, FileMetadata


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def get_file(path: str, for_update: bool = False) -> Optional[File]:
    query = File.filter(path=path)
    if for_update:
        query = query.select_for_update()
    return await query.first()


async def adjust_ref_count(blob_id: str, delta: int, now: datetime) -> None:
    updated = await Blob.filter(blob_id=blob_id).update(
        ref_count=F("ref_count") + delta,
        updated_at=now,
    )
    if not updated:
        raise InvariantViolation(f'Invariant violation: blob record not found for blobId "{blob_id}"')


async def delete_file_and_decref(file: File, now: datetime) -> None:
    """Remove a path; the blob itself is left for blob GC once unreferenced."""
    await file.delete()
    await adjust_ref_count(file.blob_id, -1, now)


def file_attributes(file: File) -> Optional[FileAttributes]:
    if file.expires_at is None:
        return None
    return FileAttributes(expires_at=file.expires_at)


def to_metadata(file: File, blob: Optional[Blob]) -> FileMetadata:
    if blob is None:
        raise InvariantViolation(
            f'Invariant violation: blob not found for blobId "{file.blob_id}" (path: "{file.path}")'
        )
    return FileMetadata(
        path=file.path,
        blob_id=file.blob_id,
        content_type=blob.content_type,
        size=blob.size,
        attributes=file_attributes(file),
    )
