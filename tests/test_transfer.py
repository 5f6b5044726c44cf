from datetime import timedelta
from urllib.parse import urlsplit

import pytest

from apps.filesystem.errors import PreconditionError, UnsupportedOperationError
from apps.filesystem.helpers import utcnow
from apps.filesystem.models import Upload
from apps.filesystem.ops import stat
from apps.filesystem.schema import Config, FileCommit
from apps.filesystem.transact import commit_files
from apps.storage.memory import MemoryStorage
from apps.storage.s3 import S3HTTPStorage
from apps.storage.schema import BlobMetadata
from apps.transfer.services import (
    MAX_UPLOAD_SIZE,
    get_blob,
    get_download_url,
    get_file,
    prepare_upload,
    register_pending_upload,
    upload_blob,
    write_file,
)

S3_CONFIG = Config(
    storage={'type': 's3', 'endpoint': 'https://s3.example.com', 'bucket': 'files',
             'access_key': 'AK', 'secret_key': 'SK'},
    upload_url_ttl=900,
)


def test_prepare_upload_issues_presigned_url(run_db):
    async def body():
        ticket = await prepare_upload(S3_CONFIG)
        parts = urlsplit(ticket.url)
        assert parts.path == f'/files/{ticket.blob_id}'
        assert 'X-Amz-Expires=900' in parts.query

        upload = await Upload.get(blob_id=ticket.blob_id)
        assert upload.content_type is None
        assert upload.size is None

    run_db(body)


def test_prepare_upload_requires_presign_capable_backend(run_db, config):
    async def body():
        with pytest.raises(UnsupportedOperationError):
            await prepare_upload(config)
        assert await Upload.all().count() == 0

    run_db(body)


def test_register_then_commit_direct_upload(run_db, monkeypatch):
    async def landed(self, blob_id):
        return BlobMetadata(content_length=1234, content_type='image/png')

    monkeypatch.setattr(S3HTTPStorage, 'head', landed)

    async def body():
        ticket = await prepare_upload(S3_CONFIG)
        await register_pending_upload(S3_CONFIG, ticket.blob_id, 'image/png', 1234)
        await commit_files([FileCommit(path='img.png', blob_id=ticket.blob_id)])

        meta = await stat('img.png')
        assert meta.content_type == 'image/png'
        assert meta.size == 1234

        with pytest.raises(PreconditionError):
            await register_pending_upload(S3_CONFIG, ticket.blob_id, 'image/png', 1234)

    run_db(body)


def test_upload_blob_rejects_oversized_payload(run_db, config):
    async def body():
        with pytest.raises(PreconditionError):
            await upload_blob(config, b'x' * (MAX_UPLOAD_SIZE + 1))
        assert MemoryStorage._shared_store == {}

    run_db(body)


def test_upload_blob_records_metadata(run_db, config):
    async def body():
        blob_id = await upload_blob(config, b'{}', 'application/json')
        upload = await Upload.get(blob_id=blob_id)
        assert upload.content_type == 'application/json'
        assert upload.size == 2
        assert await get_blob(config, blob_id) == b'{}'

    run_db(body)


def test_write_and_read_file(run_db, config):
    async def body():
        blob_id = await write_file(config, 'notes/today.md', b'# hi', 'text/markdown')
        contents = await get_file(config, 'notes/today.md')
        assert contents.data == b'# hi'
        assert contents.content_type == 'text/markdown'
        assert contents.size == 4
        assert await get_file(config, 'notes/missing.md') is None
        assert await get_download_url(config, blob_id) == f'test://{blob_id}'

    run_db(body)


def test_register_rejects_blob_ids_that_were_never_issued(run_db, config):
    async def body():
        await MemoryStorage().put('someone-elses-object', b'not ours', 'text/plain')
        with pytest.raises(PreconditionError):
            await register_pending_upload(config, 'someone-elses-object', 'text/plain', 8)
        with pytest.raises(PreconditionError):
            await commit_files([FileCommit(path='stolen', blob_id='someone-elses-object')])

        assert await Upload.all().count() == 0
        assert 'someone-elses-object' in MemoryStorage._shared_store

    run_db(body)


def test_register_takes_metadata_from_backend(run_db, config):
    async def body():
        await Upload.create(blob_id='direct', expires_at=utcnow() + timedelta(minutes=10))
        with pytest.raises(PreconditionError):
            await register_pending_upload(config, 'direct')

        await MemoryStorage().put('direct', b'abc', 'text/csv')
        with pytest.raises(PreconditionError):
            await register_pending_upload(config, 'direct', size=99)
        assert (await Upload.get(blob_id='direct')).size is None

        await register_pending_upload(config, 'direct', 'application/json')
        upload = await Upload.get(blob_id='direct')
        assert upload.content_type == 'text/csv'
        assert upload.size == 3

    run_db(body)
