"""FastAPI application factory."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import Settings, get_settings
from app.routes import router
from app.schemas import ErrorResponse
from services.container import AppContainer
from services.exceptions import (
    DelegationError,
    DriveDisconnected,
    ReauthRequired,
    RemoteWriteError,
    Unauthenticated,
)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
if not logging.getLogger().handlers:
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)

logger = logging.getLogger(__name__)

ERROR_STATUS_CODES: dict[type[DelegationError], int] = {
    Unauthenticated: 401,
    DriveDisconnected: 409,
    ReauthRequired: 409,
    RemoteWriteError: 502,
}


def error_status(exc: DelegationError) -> int:
    for error_type, status_code in ERROR_STATUS_CODES.items():
        if isinstance(exc, error_type):
            return status_code
    return 500


def error_payload(exc: DelegationError) -> ErrorResponse:
    details = None
    if isinstance(exc, RemoteWriteError) and exc.remote_id:
        details = {"remoteId": exc.remote_id}
    return ErrorResponse(code=exc.code, message=str(exc), details=details)


def create_app(settings: Optional[Settings] = None, container: Optional[AppContainer] = None) -> FastAPI:
    """Instantiate the FastAPI app and wire dependencies."""

    settings = settings or get_settings()
    container = container or AppContainer(settings)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        await container.startup()
        yield

    app = FastAPI(title="Drive Letters", version="0.1.0", lifespan=lifespan)
    allowed_origins = list(dict.fromkeys(settings.cors_origins + [settings.frontend_base_url]))
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["Content-Type", "Authorization"],
    )
    app.include_router(router)
    app.state.container = container  # type: ignore[attr-defined]

    @app.middleware("http")
    async def security_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        return response

    @app.exception_handler(DelegationError)
    async def handle_delegation_error(request: Request, exc: DelegationError) -> JSONResponse:
        status_code = error_status(exc)
        logger.info(
            "request.failed method=%s path=%s status=%d code=%s",
            request.method,
            request.url.path,
            status_code,
            exc.code,
        )
        return JSONResponse(
            status_code=status_code,
            content=error_payload(exc).model_dump(mode="json", exclude_none=True),
        )

    return app
