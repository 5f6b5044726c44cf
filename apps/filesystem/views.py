from typing import Optional

from fastapi import Query

from apps.filesystem.ops import delete_by_path, list_files, stat
from apps.filesystem.schema import CommitRequest, DeleteRequest, PaginationOpts, TransactRequest
from apps.filesystem.transact import commit_files, transact

# Conflict, precondition and storage errors are mapped to responses by the app's exception handlers


async def stat_file(path: str):
    return await stat(path)


async def list_directory(
    prefix: Optional[str] = None,
    num_items: int = Query(100, ge=1, le=1000, alias="numItems"),
    cursor: Optional[str] = None,
):
    return await list_files(prefix, PaginationOpts(num_items=num_items, cursor=cursor))


async def commit(data: CommitRequest):
    await commit_files(data.files)
    return {"committed": len(data.files)}


async def apply_transaction(data: TransactRequest):
    await transact(data.ops)
    return {"applied": len(data.ops)}


async def delete_file(data: DeleteRequest):
    await delete_by_path(data.path)
    return {"path": data.path}
