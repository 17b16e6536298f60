from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import Settings, get_settings
from .routers import files, upload
from .services.file_serving import FileServingHandler
from .services.path_resolver import PathResolver
from .services.upload import UploadHandler

logger = structlog.get_logger()

_SECURITY_HEADERS = {
    'Content-Security-Policy': "default-src 'none'; img-src 'self'; media-src 'self'; style-src 'unsafe-inline'",
    'X-Frame-Options': 'DENY',
    'X-Content-Type-Options': 'nosniff',
    'Referrer-Policy': 'strict-origin-when-cross-origin',
}


def _apply_security_headers(response):
    for key, value in _SECURITY_HEADERS.items():
        response.headers[key] = value
    return response


async def security_middleware(request: Request, call_next):
    response = await call_next(request)
    return _apply_security_headers(response)


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return PlainTextResponse(str(exc.detail), status_code=exc.status_code, headers=exc.headers)


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception('unhandled_exception', method=request.method, path=request.url.path, exc_info=exc)
    return _apply_security_headers(PlainTextResponse('Internal Server Error', status_code=500))


@asynccontextmanager
async def lifespan(app: FastAPI):
    root = app.state.resolver.root
    root.mkdir(parents=True, exist_ok=True)
    logger.info('fileserve_started', root=str(root), upload_max_bytes=app.state.upload_handler.max_bytes)
    yield
    logger.info('fileserve_stopped')


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()

    # Every path below / belongs to the served tree, so no docs routes.
    app = FastAPI(title=settings.app_name, lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)

    resolver = PathResolver(settings.files_root)
    app.state.settings = settings
    app.state.resolver = resolver
    app.state.file_handler = FileServingHandler(resolver)
    app.state.upload_handler = UploadHandler(resolver, max_bytes=settings.upload_max_bytes)

    app.middleware('http')(security_middleware)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # /upload must be registered ahead of the catch-all file routes.
    app.include_router(upload.router)
    app.include_router(files.router)
    return app
