import logging
from typing import Optional

from tortoise.transactions import in_transaction

from apps.filesystem.config_store import get_stored_config
from apps.filesystem.errors import ConflictCode, ConflictError, PreconditionError
from apps.filesystem.helpers import adjust_ref_count, get_file, to_metadata, utcnow
from apps.filesystem.models import Blob, File
from apps.filesystem.schema import (
    CopyOp,
    DeleteOp,
    Dest,
    FileMetadata,
    MoveOp,
    Page,
    PaginationOpts,
)
from apps.filesystem.transact import transact
from apps.filesystem.tristate import CLEAR

logger = logging.getLogger(__name__)

# upper bound for prefix range scans: every path starting with p sorts below p + MAX_CHAR
MAX_CHAR = "\uffff"
CLEAR_BATCH_SIZE = 100


async def stat(path: str) -> Optional[FileMetadata]:
    file = await File.filter(path=path).first()
    if file is None:
        return None
    blob = await Blob.filter(blob_id=file.blob_id).first()
    return to_metadata(file, blob)


async def list_files(prefix: Optional[str] = None, pagination: Optional[PaginationOpts] = None) -> Page:
    """Files in ascending path order, optionally restricted to a path prefix."""
    opts = pagination or PaginationOpts()
    query = File.all()
    if prefix:
        query = query.filter(path__gte=prefix, path__lt=prefix + MAX_CHAR)
    if opts.cursor:
        query = query.filter(path__gt=opts.cursor)
    rows = await query.order_by("path").limit(opts.num_items + 1)

    is_done = len(rows) <= opts.num_items
    rows = rows[:opts.num_items]

    blobs = {}
    if rows:
        blob_ids = list({row.blob_id for row in rows})
        blobs = {blob.blob_id: blob for blob in await Blob.filter(blob_id__in=blob_ids)}

    return Page(
        page=[to_metadata(row, blobs.get(row.blob_id)) for row in rows],
        continue_cursor=rows[-1].path if rows else (opts.cursor or ""),
        is_done=is_done,
    )


async def _require(path: str) -> FileMetadata:
    metadata = await stat(path)
    if metadata is None:
        raise PreconditionError(f'Source file not found: "{path}"')
    return metadata


async def copy_by_path(source_path: str, dest_path: str) -> None:
    """Copy a file, failing if the destination exists.

    Not race safe: the source is read before the transaction starts. Callers
    that care should build the op from a fresh stat and call transact.
    """
    source = await _require(source_path)
    await transact([CopyOp(source=source, dest=Dest(path=dest_path, basis=CLEAR))])


async def move_by_path(source_path: str, dest_path: str) -> None:
    """Move a file, failing if the destination exists."""
    source = await _require(source_path)
    await transact([MoveOp(source=source, dest=Dest(path=dest_path, basis=CLEAR))])


async def delete_by_path(path: str) -> None:
    """Delete a file. Deleting a missing path is a no-op."""
    source = await stat(path)
    if source is None:
        return
    await transact([DeleteOp(source=source)])


async def restore(blob_id: str, path: str) -> FileMetadata:
    """Point an empty path back at a blob that still exists, e.g. one awaiting GC."""
    now = utcnow()
    async with in_transaction():
        blob = await Blob.filter(blob_id=blob_id).select_for_update().first()
        if blob is None:
            raise PreconditionError(f'Blob not found: "{blob_id}" (it may have been garbage collected)')
        current = await get_file(path, for_update=True)
        if current is not None:
            raise ConflictError(
                ConflictCode.DEST_EXISTS,
                f'Destination already exists: "{path}"',
                path=path,
                expected=None,
                found=current.blob_id,
            )
        await adjust_ref_count(blob_id, 1, now)
        file = await File.create(path=path, blob_id=blob_id)
    logger.info("Restored blob %s at %s", blob_id, path)
    return to_metadata(file, blob)


async def clear_all_files(batch_size: int = CLEAR_BATCH_SIZE) -> int:
    """Delete every file. Requires the operator flag allow_clear_all_files."""
    stored = await get_stored_config()
    if stored is None or not stored.allow_clear_all_files:
        raise PreconditionError(
            "clear_all_files is disabled. Set allow_clear_all_files on the stored config to enable it."
        )

    total = 0
    while True:
        result = await list_files(pagination=PaginationOpts(num_items=batch_size))
        if not result.page:
            break
        await transact([DeleteOp(source=file) for file in result.page])
        total += len(result.page)
        if result.is_done:
            break

    logger.warning("Cleared %d file(s)", total)
    return total
