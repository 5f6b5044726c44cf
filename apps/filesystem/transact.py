"""Atomic multi-operation mutations of the path namespace.

Every call runs inside a single `in_transaction()` block: either all of its
operations are applied or, on the first error, none are.
"""
import logging
from collections import Counter
from datetime import datetime
from typing import Optional, Sequence

from tortoise.transactions import in_transaction

from apps.filesystem.errors import ConflictCode, ConflictError, PreconditionError
from apps.filesystem.helpers import adjust_ref_count, delete_file_and_decref, get_file, utcnow
from apps.filesystem.models import Blob, File, Upload
from apps.filesystem.schema import CopyOp, DeleteOp, Dest, FileCommit, MoveOp, Op, SetAttributesOp
from apps.filesystem.tristate import Clear, Keep, SetTo, expected_value

logger = logging.getLogger(__name__)


async def commit_files(files: Sequence[FileCommit]) -> None:
    """Turn finished uploads into blobs and point paths at them."""
    if not files:
        return

    duplicates = [blob_id for blob_id, count in Counter(f.blob_id for f in files).items() if count > 1]
    if duplicates:
        raise PreconditionError(f"Each upload can only be committed once: {', '.join(duplicates)}")

    now = utcnow()
    async with in_transaction():
        blob_ids = [f.blob_id for f in files]
        uploads = {u.blob_id: u for u in await Upload.filter(blob_id__in=blob_ids).select_for_update()}
        missing = [
            blob_id for blob_id in blob_ids
            if blob_id not in uploads
            or uploads[blob_id].content_type is None
            or uploads[blob_id].size is None
        ]
        if missing:
            raise PreconditionError(f"Upload metadata not found for blobs: {', '.join(missing)}")

        # compare-and-swap checks run before anything is written
        for entry in files:
            if isinstance(entry.basis, Keep):
                continue
            current = await get_file(entry.path, for_update=True)
            found = current.blob_id if current else None
            expected = expected_value(entry.basis)
            if found != expected:
                raise ConflictError(
                    ConflictCode.CAS_CONFLICT,
                    f'Compare-and-swap failed for "{entry.path}": expected {expected!r}, found {found!r}',
                    path=entry.path,
                    expected=expected,
                    found=found,
                )

        for entry in files:
            upload = uploads[entry.blob_id]
            await Blob.create(
                blob_id=entry.blob_id,
                content_type=upload.content_type,
                size=upload.size,
                ref_count=1,
                updated_at=now,
            )
            expires_at = entry.attributes.expires_at if entry.attributes else None
            existing = await get_file(entry.path, for_update=True)
            if existing is not None:
                previous = existing.blob_id
                existing.blob_id = entry.blob_id
                existing.expires_at = expires_at
                await existing.save(update_fields=["blob_id", "expires_at"])
                await adjust_ref_count(previous, -1, now)
            else:
                await File.create(path=entry.path, blob_id=entry.blob_id, expires_at=expires_at)
            await upload.delete()

    logger.debug("Committed %d file(s)", len(files))


async def transact(ops: Sequence[Op]) -> None:
    """Apply ops in order; the first failure rolls back the whole batch."""
    if not ops:
        return
    now = utcnow()
    async with in_transaction():
        for index, op in enumerate(ops, start=1):
            await apply_operation(op, index, now)
    logger.debug("Applied %d operation(s)", len(ops))


async def _check_source(op: Op, index: int) -> File:
    source = op.source
    current = await get_file(source.path, for_update=True)
    if current is None:
        raise ConflictError(
            ConflictCode.SOURCE_NOT_FOUND,
            f'Source file not found: "{source.path}"',
            path=source.path,
            expected=source.blob_id,
            found=None,
            operation_index=index,
        )
    if current.blob_id != source.blob_id:
        raise ConflictError(
            ConflictCode.SOURCE_CHANGED,
            f'Source file changed: "{source.path}"',
            path=source.path,
            expected=source.blob_id,
            found=current.blob_id,
            operation_index=index,
        )
    return current


async def _check_dest(dest: Dest, index: int) -> Optional[File]:
    current = await get_file(dest.path, for_update=True)
    found = current.blob_id if current else None
    match dest.basis:
        case Keep():
            return current
        case Clear():
            if current is not None:
                raise ConflictError(
                    ConflictCode.DEST_EXISTS,
                    f'Destination already exists: "{dest.path}"',
                    path=dest.path,
                    expected=None,
                    found=found,
                    operation_index=index,
                )
        case SetTo(value=expected):
            if current is None:
                raise ConflictError(
                    ConflictCode.DEST_NOT_FOUND,
                    f'Destination not found: "{dest.path}"',
                    path=dest.path,
                    expected=expected,
                    found=None,
                    operation_index=index,
                )
            if found != expected:
                raise ConflictError(
                    ConflictCode.DEST_CHANGED,
                    f'Destination changed: "{dest.path}"',
                    path=dest.path,
                    expected=expected,
                    found=found,
                    operation_index=index,
                )
    return current


async def apply_operation(op: Op, index: int, now: Optional[datetime] = None) -> None:
    """Validate and apply one op. Callers provide the surrounding transaction."""
    now = now or utcnow()
    source = await _check_source(op, index)

    match op:
        case DeleteOp():
            await delete_file_and_decref(source, now)

        case MoveOp(dest=dest):
            target = await _check_dest(dest, index)
            if target is not None and target.pk != source.pk:
                await delete_file_and_decref(target, now)
            # moved files drop their attributes
            source.path = dest.path
            source.expires_at = None
            await source.save(update_fields=["path", "expires_at"])

        case CopyOp(dest=dest):
            target = await _check_dest(dest, index)
            await adjust_ref_count(source.blob_id, 1, now)
            if target is not None:
                previous = target.blob_id
                target.blob_id = source.blob_id
                target.expires_at = None
                await target.save(update_fields=["blob_id", "expires_at"])
                await adjust_ref_count(previous, -1, now)
            else:
                await File.create(path=dest.path, blob_id=source.blob_id)

        case SetAttributesOp(attributes=attributes):
            match attributes.expires_at:
                case SetTo(value=value):
                    source.expires_at = value
                case Clear():
                    source.expires_at = None
                case Keep():
                    return
            await source.save(update_fields=["expires_at"])

        case _:
            raise TypeError(f"Unknown operation: {op!r}")
