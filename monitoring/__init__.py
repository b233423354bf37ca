"""Monitoring and error handling for the CalDAV tasks application."""

from .exceptions import (
    ErrorCode, CalDAVTasksError, AuthenticationError,
    CalDAVAPIError, ConflictError, CalendarNotFoundError, TaskNotFoundError,
    ValidationError, ErrorHandler, error_handler, handle_exceptions
)
from .health import HealthChecker, HealthStatus

__all__ = [
    'ErrorCode', 'CalDAVTasksError', 'AuthenticationError',
    'CalDAVAPIError', 'ConflictError', 'CalendarNotFoundError', 'TaskNotFoundError',
    'ValidationError', 'ErrorHandler', 'error_handler', 'handle_exceptions',
    'HealthChecker', 'HealthStatus'
]
