import logging
from typing import Awaitable, Callable, Optional

from fastapi import HTTPException, Request
from fastapi.responses import RedirectResponse

from apps.filesystem.errors import PreconditionError, StorageError
from apps.filesystem.schema import DEFAULT_URL_TTL, Config, UploadResult
from apps.transfer.services import DEFAULT_CONTENT_TYPE, MAX_UPLOAD_SIZE, get_download_url, upload_blob
from apps.transfer.urls import PATH_PARAM
from config.settings import settings

logger = logging.getLogger(__name__)

AuthCallback = Callable[[Request, str], Awaitable[bool]]

# CDN caches the redirect; stop caching before the signed URL expires
CDN_CACHE_MARGIN = 300


def get_client_config(request: Request) -> Config:
    config = getattr(request.app.state, "fs_config", None)
    if config is None:
        config = settings.client_config()
    return config


def cache_control(config: Config) -> str:
    if config.storage.type == "bunny":
        ttl = config.download_url_ttl or DEFAULT_URL_TTL
        return f"private, max-age={max(0, ttl - CDN_CACHE_MARGIN)}"
    return "no-store"


def _too_large(size: int) -> HTTPException:
    return HTTPException(
        status_code=413,
        detail=f"File too large: {size} bytes (max {MAX_UPLOAD_SIZE} bytes)",
    )


async def upload_proxy(request: Request) -> UploadResult:
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > MAX_UPLOAD_SIZE:
        raise _too_large(int(declared))
    data = await request.body()
    if len(data) > MAX_UPLOAD_SIZE:
        raise _too_large(len(data))

    content_type = request.headers.get("content-type") or DEFAULT_CONTENT_TYPE
    blob_id = await upload_blob(get_client_config(request), data, content_type)
    return UploadResult(blob_id=blob_id)


async def download_redirect(request: Request, blob_id: str, auth: Optional[AuthCallback] = None):
    if auth is not None:
        try:
            allowed = await auth(request, blob_id)
        except Exception:
            logger.warning("Auth callback failed for blob %s", blob_id, exc_info=True)
            allowed = False
        if not allowed:
            raise HTTPException(status_code=403, detail="Forbidden")

    config = get_client_config(request)
    extra_params = {k: v for k, v in request.query_params.items() if k != PATH_PARAM}
    try:
        url = await get_download_url(config, blob_id, extra_params=extra_params or None)
    except (PreconditionError, StorageError) as e:
        logger.warning("No download URL for blob %s: %s", blob_id, e)
        raise HTTPException(status_code=404, detail="Not found")

    return RedirectResponse(url, status_code=302, headers={"Cache-Control": cache_control(config)})
