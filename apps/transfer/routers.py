# transfer/routers.py
from typing import Optional

from fastapi import APIRouter, Request

from apps.filesystem.schema import UploadResult
from config.settings import FS_PATH_PREFIX
from .views import AuthCallback, download_redirect, upload_proxy


def build_router(path_prefix: str = FS_PATH_PREFIX, auth: Optional[AuthCallback] = None) -> APIRouter:
    """Upload proxy and download redirect routes mounted under path_prefix."""
    router = APIRouter(prefix=path_prefix.rstrip("/"))

    async def download(request: Request, blob_id: str):
        return await download_redirect(request, blob_id, auth)

    router.post("/upload", response_model=UploadResult)(upload_proxy)
    router.get("/blobs/{blob_id}")(download)
    return router
