"""
Request logging middleware.

Every request gets an id (reused from ``X-Request-ID`` when the caller sends
one) that is echoed back with the processing time. GitHub deliveries are
logged with their delivery id so a webhook can be traced into the build
and deploy logs.
"""

import logging
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

# Polled by load balancers and uptime checks; logged at DEBUG only
QUIET_PATHS = {"/api/v1/health"}


class LoggingMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, quiet_paths=None):
        super().__init__(app)
        self.quiet_paths = set(quiet_paths) if quiet_paths is not None else QUIET_PATHS

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex[:12]
        delivery = request.headers.get("x-github-delivery")
        level = logging.DEBUG if request.url.path in self.quiet_paths else logging.INFO
        started = time.perf_counter()

        origin = f"delivery {delivery}" if delivery else (request.client.host if request.client else "unknown")
        logger.log(level, f"📥 [{request_id}] {request.method} {request.url.path} - {origin}")

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                f"💥 [{request_id}] {request.method} {request.url.path} - ERROR - "
                f"{time.perf_counter() - started:.3f}s - {e}"
            )
            # Re-raise the exception for error handling middleware
            raise

        elapsed = time.perf_counter() - started
        logger.log(
            level,
            f"📤 [{request_id}] {request.method} {request.url.path} - {response.status_code} - {elapsed:.3f}s",
        )
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{elapsed:.6f}"
        return response
