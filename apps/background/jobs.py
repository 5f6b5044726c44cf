"""Garbage collection of uploads, orphaned blobs and expired files.

Each job handles one bounded batch and reports whether another batch is
likely waiting. Backend deletes happen outside of a transaction and before
the metadata record goes away, so a crash never leaves bytes without a
record. It can leave a record whose bytes are already gone, which the next
pass counts as not_found and removes.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Set

from tortoise.transactions import in_transaction

from apps.filesystem.config_store import StoredSettings, get_stored_config
from apps.filesystem.errors import StorageError
from apps.filesystem.helpers import delete_file_and_decref, utcnow
from apps.filesystem.models import Blob, File, Upload
from apps.filesystem.schema import DEFAULT_BLOB_GRACE_PERIOD
from apps.storage.factory import create_blob_store
from apps.storage.interface import BlobStore
from apps.storage.schema import DeleteResult

logger = logging.getLogger(__name__)

BATCH_SIZE = 100
UPLOAD_GRACE_PERIOD = timedelta(hours=1)


@dataclass
class GCReport:
    job: str
    batch_size: int = BATCH_SIZE
    found: int = 0
    deleted: int = 0
    not_found: int = 0
    errors: int = 0
    skipped: Optional[str] = None

    @property
    def should_continue(self) -> bool:
        # a full, clean batch means there is probably more; errors back off until the next run
        return self.skipped is None and self.found >= self.batch_size and self.errors == 0


async def _load_settings(report: GCReport, respect_freeze: bool) -> Optional[StoredSettings]:
    stored = await get_stored_config()
    if stored is None:
        report.skipped = "no stored config"
        return None
    if respect_freeze and stored.freeze_gc:
        logger.warning("%s: skipped, freeze_gc is set", report.job)
        report.skipped = "freeze_gc"
        return None
    return stored


async def _delete_from_store(store: BlobStore, blob_ids: Iterable[str], report: GCReport) -> Set[str]:
    """Delete bytes; return the ids that are now confirmed gone."""
    gone = set()
    for blob_id in blob_ids:
        try:
            result = await store.delete(blob_id)
        except StorageError as e:
            report.errors += 1
            logger.warning("%s: failed to delete blob %s: %s", report.job, blob_id, e)
            continue
        if result is DeleteResult.DELETED:
            report.deleted += 1
        else:
            report.not_found += 1
        gone.add(blob_id)
    return gone


def _log_report(report: GCReport) -> None:
    logger.info(
        "%s: found=%d deleted=%d not_found=%d errors=%d",
        report.job, report.found, report.deleted, report.not_found, report.errors,
    )


async def find_expired_uploads(threshold: datetime, limit: int = BATCH_SIZE) -> List[Upload]:
    return await Upload.filter(expires_at__lt=threshold).order_by("expires_at").limit(limit)


async def delete_upload_records(ids: List[int]) -> int:
    async with in_transaction():
        return await Upload.filter(id__in=ids).delete()


async def gc_expired_uploads(now: Optional[datetime] = None, batch_size: int = BATCH_SIZE) -> GCReport:
    """Reclaim uploads that were never committed."""
    now = now or utcnow()
    report = GCReport("upload-gc", batch_size)
    stored = await _load_settings(report, respect_freeze=True)
    if stored is None:
        return report

    uploads = await find_expired_uploads(now - UPLOAD_GRACE_PERIOD, batch_size)
    report.found = len(uploads)
    if not uploads:
        return report

    store = create_blob_store(stored.config.storage)
    gone = await _delete_from_store(store, [u.blob_id for u in uploads], report)
    ids = [u.id for u in uploads if u.blob_id in gone]
    if ids:
        await delete_upload_records(ids)
    _log_report(report)
    return report


async def find_orphaned_blobs(threshold: datetime, limit: int = BATCH_SIZE) -> List[Blob]:
    return await Blob.filter(ref_count=0, updated_at__lt=threshold).order_by("updated_at").limit(limit)


async def delete_blob_records(ids: List[int]) -> int:
    async with in_transaction():
        # a restore may have revived the blob since it was found
        return await Blob.filter(id__in=ids, ref_count=0).delete()


async def gc_orphaned_blobs(now: Optional[datetime] = None, batch_size: int = BATCH_SIZE) -> GCReport:
    """Reclaim blobs no file has referenced for the grace period."""
    now = now or utcnow()
    report = GCReport("blob-gc", batch_size)
    stored = await _load_settings(report, respect_freeze=True)
    if stored is None:
        return report

    grace = stored.config.blob_grace_period
    if grace is None:
        grace = DEFAULT_BLOB_GRACE_PERIOD
    blobs = await find_orphaned_blobs(now - timedelta(seconds=grace), batch_size)
    report.found = len(blobs)
    if not blobs:
        return report

    store = create_blob_store(stored.config.storage)
    gone = await _delete_from_store(store, [b.blob_id for b in blobs], report)
    ids = [b.id for b in blobs if b.blob_id in gone]
    if ids:
        await delete_blob_records(ids)
    _log_report(report)
    return report


async def find_expired_files(threshold: datetime, limit: int = BATCH_SIZE) -> List[File]:
    return await File.filter(expires_at__lt=threshold).order_by("expires_at").limit(limit)


async def delete_expired_files(files: List[File], now: datetime) -> int:
    deleted = 0
    async with in_transaction():
        for found in files:
            # skip files that were repointed, renamed or given a new expiry since the find
            current = await File.filter(
                id=found.id, blob_id=found.blob_id, expires_at__lt=now,
            ).select_for_update().first()
            if current is None:
                continue
            await delete_file_and_decref(current, now)
            deleted += 1
    return deleted


async def gc_expired_files(now: Optional[datetime] = None, batch_size: int = BATCH_SIZE) -> GCReport:
    """Delete files past their expires_at. Metadata only; runs even when GC is frozen."""
    now = now or utcnow()
    report = GCReport("file-gc", batch_size)
    stored = await _load_settings(report, respect_freeze=False)
    if stored is None:
        return report

    files = await find_expired_files(now, batch_size)
    report.found = len(files)
    if not files:
        return report

    report.deleted = await delete_expired_files(files, now)
    _log_report(report)
    return report
