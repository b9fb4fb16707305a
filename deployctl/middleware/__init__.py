"""
Middleware package for the controller's HTTP surface.

Cross-cutting concerns: request logging and error handling.
"""

from .error_handling import ErrorHandlingMiddleware
from .logging import LoggingMiddleware

__all__ = [
    "ErrorHandlingMiddleware",
    "LoggingMiddleware",
]
