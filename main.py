import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from apps.background.scheduler import GCScheduler
from apps.filesystem.errors import ConflictError, InvariantViolation, PreconditionError, StorageError
from apps.filesystem.routers import router as fs_router
from apps.filesystem.schema import Config
from apps.transfer.routers import build_router
from apps.transfer.views import AuthCallback
from config.db import register_db
from config.middleware import RequestLoggingMiddleware
from config.settings import FS_PATH_PREFIX, GC_ENABLED, LOG_LEVEL, settings

logger = logging.getLogger(__name__)


def configure_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def register_exception_handlers(app: FastAPI) -> None:

    @app.exception_handler(ConflictError)
    async def _conflict(request: Request, exc: ConflictError):
        return JSONResponse(exc.to_dict(), status_code=409)

    @app.exception_handler(PreconditionError)
    async def _precondition(request: Request, exc: PreconditionError):
        return JSONResponse({"detail": str(exc)}, status_code=400)

    @app.exception_handler(StorageError)
    async def _storage(request: Request, exc: StorageError):
        logger.warning("Storage backend error on %s: %s", request.url.path, exc)
        return JSONResponse({"detail": str(exc)}, status_code=502)

    @app.exception_handler(InvariantViolation)
    async def _invariant(request: Request, exc: InvariantViolation):
        logger.error("Invariant violation on %s: %s", request.url.path, exc)
        return JSONResponse({"detail": "internal error"}, status_code=500)


def create_app(
    config: Optional[Config] = None,
    auth: Optional[AuthCallback] = None,
    path_prefix: str = FS_PATH_PREFIX,
    db_url: Optional[str] = None,
    gc_enabled: bool = GC_ENABLED,
) -> FastAPI:

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        async with register_db(app, db_url):
            scheduler = GCScheduler() if gc_enabled else None
            if scheduler:
                scheduler.start()
            try:
                yield
            finally:
                if scheduler:
                    await scheduler.stop()

    app = FastAPI(title="Path Filesystem Service", lifespan=lifespan)
    app.state.fs_config = config or settings.client_config()
    app.add_middleware(RequestLoggingMiddleware)
    register_exception_handlers(app)
    app.include_router(build_router(path_prefix, auth))
    app.include_router(fs_router)
    return app


configure_logging()
app = create_app()
