from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ..auth.authenticator import Authenticator
from ..config import Settings, settings as default_settings
from ..db.base import BaseDBManager
from ..errors import LedgerUnavailable, OutOfCredits, StorageError, Unauthorized
from ..logging.console import setup_logging
from ..models.api_models import ErrorResponse, OutOfCreditsResponse
from ..services.generation_client import GenerationClient
from .dependencies import build_services
from .middleware import RequestLogMiddleware
from .router import root_router, router


logger = logging.getLogger(__name__)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code, content=ErrorResponse(error=message).model_dump()
    )


async def _unauthorized(request: Request, exc: Unauthorized) -> JSONResponse:
    return _error(status.HTTP_401_UNAUTHORIZED, str(exc) or "Not authorized.")


async def _out_of_credits(request: Request, exc: OutOfCredits) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_402_PAYMENT_REQUIRED,
        content=OutOfCreditsResponse().model_dump(),
    )


async def _server_error(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Infrastructure failure on %s: %s", request.url.path, exc)
    if isinstance(exc, LedgerUnavailable):
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Server error during credit check.")
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Server error.")


async def _invalid_body(request: Request, exc: RequestValidationError) -> JSONResponse:
    if request.url.path.endswith("/explain"):
        return _error(status.HTTP_400_BAD_REQUEST, "Please provide code and language.")
    return _error(status.HTTP_400_BAD_REQUEST, "Invalid request.")


def create_app(
    app_settings: Optional[Settings] = None,
    db: Optional[BaseDBManager] = None,
    generation: Optional[GenerationClient] = None,
    authenticator: Optional[Authenticator] = None,
) -> FastAPI:
    app_settings = app_settings or default_settings
    setup_logging(app_settings.log_level)

    services = build_services(
        app_settings, db=db, generation=generation, authenticator=authenticator
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await services.generation.aclose()

    app = FastAPI(title="AI Code Explainer API", lifespan=lifespan)
    app.state.services = services

    app.add_middleware(RequestLogMiddleware)
    app.add_exception_handler(Unauthorized, _unauthorized)
    app.add_exception_handler(OutOfCredits, _out_of_credits)
    app.add_exception_handler(LedgerUnavailable, _server_error)
    app.add_exception_handler(StorageError, _server_error)
    app.add_exception_handler(RequestValidationError, _invalid_body)

    app.include_router(root_router)
    app.include_router(router)
    return app
