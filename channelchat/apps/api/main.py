from __future__ import annotations

from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from channelchat.apps.api.errors import (
    DOMAIN_ERROR_TYPES,
    domain_exception_handler,
    http_exception_handler,
    starlette_http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from channelchat.apps.api.response import API_VERSION
from channelchat.apps.api.routes.admin import router as admin_router
from channelchat.apps.api.routes.catalog import router as catalog_router
from channelchat.apps.api.routes.health import router as health_router
from channelchat.apps.api.routes.sessions import router as sessions_router
from channelchat.core.config import get_settings
from channelchat.core.logging import configure_logging


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title=get_settings().app_name)

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    @app.exception_handler(StarletteHTTPException)
    async def _starlette_http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await starlette_http_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return await validation_exception_handler(request, exc)

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException):
        return await http_exception_handler(request, exc)

    for error_type in DOMAIN_ERROR_TYPES:
        app.add_exception_handler(error_type, domain_exception_handler)

    # Mount versioned v1 API routes.
    app.include_router(health_router, prefix=f"/{API_VERSION}")
    app.include_router(catalog_router, prefix=f"/{API_VERSION}")
    app.include_router(sessions_router, prefix=f"/{API_VERSION}")
    # Admin console endpoints for catalog, permission and user management.
    app.include_router(admin_router, prefix=f"/{API_VERSION}")
    return app


app = create_app()
