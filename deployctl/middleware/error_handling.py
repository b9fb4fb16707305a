"""
Error handling middleware.

Catches controller errors that escape a route, logs them, and returns a
consistent ``ErrorResponse`` body.
"""

import logging
import traceback
from typing import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from deployctl.domain.errors import (
    BuildError,
    DeployError,
    DeployctlError,
    RollbackError,
    WatchError,
)
from deployctl.schemas.errors import ErrorResponse

logger = logging.getLogger(__name__)

# (status code, error code) per error family; first match wins
ERROR_STATUS = [
    (RollbackError, 409, "ROLLBACK_FAILED"),
    (DeployError, 409, "DEPLOY_FAILED"),
    (BuildError, 422, "BUILD_FAILED"),
    (WatchError, 502, "SOURCE_UNAVAILABLE"),
]


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, enable_error_logging: bool = True):
        """
        Args:
            app: FastAPI application instance
            enable_error_logging: Whether to log full tracebacks for unexpected errors
        """
        super().__init__(app)
        self.enable_error_logging = enable_error_logging

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except DeployctlError as e:
            return self._handle_controller_error(request, e)
        except Exception as e:
            return self._handle_unexpected_exception(request, e)

    def _handle_controller_error(self, request: Request, exc: DeployctlError) -> JSONResponse:
        status_code, error_code = 500, "CONTROLLER_ERROR"
        for error_type, mapped_status, mapped_code in ERROR_STATUS:
            if isinstance(exc, error_type):
                status_code, error_code = mapped_status, mapped_code
                break

        logger.warning(f"🚨 {error_code} for {request.method} {request.url.path}: {exc}")

        details = {"path": str(request.url.path), "method": request.method}
        record = getattr(exc, "record", None)
        if record is not None:
            details["deployment_id"] = record.deployment_id
            details["failure_reason"] = record.failure_reason.value if record.failure_reason else None

        error_response = ErrorResponse(error=str(exc), error_code=error_code, details=details)
        return JSONResponse(status_code=status_code, content=error_response.model_dump(mode="json"))

    def _handle_unexpected_exception(self, request: Request, exc: Exception) -> JSONResponse:
        logger.error(f"💥 Unexpected error for {request.method} {request.url.path}: {str(exc)}")
        if self.enable_error_logging:
            logger.error(f"📋 Full traceback:\n{traceback.format_exc()}")

        error_response = ErrorResponse(
            error="Internal server error",
            error_code="INTERNAL_ERROR",
            details={
                "path": str(request.url.path),
                "method": request.method,
                "error_type": type(exc).__name__,
            },
        )
        return JSONResponse(status_code=500, content=error_response.model_dump(mode="json"))
