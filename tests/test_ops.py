import pytest

from apps.filesystem.config_store import (
    ensure_config_stored,
    get_stored_config,
    set_operator_flags,
)
from apps.filesystem.errors import ConflictCode, ConflictError, InvariantViolation, PreconditionError
from apps.filesystem.models import Blob, File
from apps.filesystem.ops import clear_all_files, delete_by_path, list_files, restore, stat
from apps.filesystem.schema import Config, PaginationOpts
from apps.transfer.services import write_file


def test_stat_missing_path(run_db):
    async def body():
        assert await stat('nothing/here') is None

    run_db(body)


def test_stat_raises_when_blob_record_is_missing(run_db):
    async def body():
        await File.create(path='broken', blob_id='ghost')
        with pytest.raises(InvariantViolation):
            await stat('broken')

    run_db(body)


def test_list_pages_in_path_order(run_db, config):
    paths = ['b/2', 'a/1', 'c', 'a/3', 'b/1', 'a/2', 'ab']

    async def body():
        for path in paths:
            await write_file(config, path, path.encode())

        seen = []
        cursor = None
        pages = 0
        while True:
            result = await list_files(pagination=PaginationOpts(num_items=3, cursor=cursor))
            seen.extend(f.path for f in result.page)
            cursor = result.continue_cursor
            pages += 1
            if result.is_done:
                break
        assert seen == sorted(paths)
        assert pages == 3

    run_db(body)


def test_list_exact_page_boundary(run_db, config):
    async def body():
        for path in ['a', 'b', 'c']:
            await write_file(config, path, b'x')
        result = await list_files(pagination=PaginationOpts(num_items=3))
        assert [f.path for f in result.page] == ['a', 'b', 'c']
        assert result.is_done
        assert result.continue_cursor == 'c'

    run_db(body)


def test_list_with_prefix(run_db, config):
    async def body():
        for path in ['a/1', 'a/2', 'ab', 'b/1', 'a']:
            await write_file(config, path, b'x')
        result = await list_files('a/')
        assert [f.path for f in result.page] == ['a/1', 'a/2']
        assert result.is_done

        page = (await list_files('a/', PaginationOpts(num_items=1))).page
        assert [f.path for f in page] == ['a/1']

    run_db(body)


def test_list_empty(run_db):
    async def body():
        result = await list_files()
        assert result.page == []
        assert result.is_done
        assert result.continue_cursor == ''

    run_db(body)


def test_restore_relinks_orphaned_blob(run_db, config):
    async def body():
        blob_id = await write_file(config, 'a', b'keep me')
        await delete_by_path('a')
        assert (await Blob.get(blob_id=blob_id)).ref_count == 0

        meta = await restore(blob_id, 'restored')
        assert meta.path == 'restored'
        assert meta.size == 7
        assert (await Blob.get(blob_id=blob_id)).ref_count == 1

        with pytest.raises(ConflictError) as exc:
            await restore(blob_id, 'restored')
        assert exc.value.code == ConflictCode.DEST_EXISTS

        with pytest.raises(PreconditionError):
            await restore('gone', 'elsewhere')

    run_db(body)


def test_clear_all_files_requires_opt_in(run_db, config):
    async def body():
        for i in range(5):
            await write_file(config, f'f{i}', b'x')

        with pytest.raises(PreconditionError):
            await clear_all_files()

        await set_operator_flags(allow_clear_all_files=True)
        assert await clear_all_files(batch_size=2) == 5
        assert await File.all().count() == 0
        assert await Blob.filter(ref_count__gt=0).count() == 0

    run_db(body)


def test_config_store_is_checksummed_and_preserves_operator_flags(run_db, config):
    async def body():
        assert await get_stored_config() is None
        assert await ensure_config_stored(config) is True
        assert await ensure_config_stored(config) is False
        assert (await get_stored_config()).version == 1

        await set_operator_flags(freeze_gc=True, allow_clear_all_files=True)

        changed = Config(storage={'type': 'test'}, blob_grace_period=60)
        assert await ensure_config_stored(changed) is True
        stored = await get_stored_config()
        assert stored.config.blob_grace_period == 60
        assert stored.freeze_gc is True
        assert stored.allow_clear_all_files is True
        assert stored.version == 3

    run_db(body)
