"""
Request logging middleware.

Logs one line per request with method, path, status and elapsed time, and
makes sure every request carries an `X-Request-Id` that is echoed back and
used as the correlation id in the credit ledger.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response


logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-Id"


class RequestLogMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: Any, *, header_name: str = REQUEST_ID_HEADER) -> None:
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Any]
    ) -> Response:
        request_id = request.headers.get(self.header_name) or uuid4().hex
        request.state.request_id = request_id

        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                "%s %s failed", request.method, request.url.path,
                extra={"request_id": request_id},
            )
            raise

        elapsed_ms = int((time.perf_counter() - start) * 1000)
        logger.info(
            "%s %s -> %s (%d ms)",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
            extra={"request_id": request_id},
        )
        response.headers[self.header_name] = request_id
        return response
