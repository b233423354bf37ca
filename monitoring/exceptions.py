"""Exception handling for the CalDAV tasks application."""

import inspect
import logging
import traceback
from datetime import datetime, timezone
from enum import Enum
from functools import wraps
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Standard error codes for the application."""

    # Authentication errors
    AUTH_FAILED = "AUTH_FAILED"

    # CalDAV server errors
    CALDAV_CONNECTION_ERROR = "CALDAV_CONNECTION_ERROR"
    CALDAV_API_ERROR = "CALDAV_API_ERROR"
    CALDAV_CONFLICT = "CALDAV_CONFLICT"

    # Lookup and validation errors
    CALENDAR_NOT_FOUND = "CALENDAR_NOT_FOUND"
    TASK_NOT_FOUND = "TASK_NOT_FOUND"
    VALIDATION_ERROR = "VALIDATION_ERROR"

    # Internal errors
    INTERNAL_ERROR = "INTERNAL_ERROR"


class CalDAVTasksError(Exception):
    """Base exception for the CalDAV tasks application."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/monitoring."""
        return {
            'error_code': self.error_code.value,
            'message': self.message,
            'details': self.details,
            'timestamp': self.timestamp.isoformat(),
            'cause': str(self.cause) if self.cause else None,
            'traceback': traceback.format_exc() if self.cause else None
        }


class AuthenticationError(CalDAVTasksError):
    """Rejected credentials."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, ErrorCode.AUTH_FAILED, details)


class CalDAVAPIError(CalDAVTasksError):
    """CalDAV server related errors."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.CALDAV_API_ERROR,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None
    ):
        super().__init__(message, error_code, details, cause)


class ConflictError(CalDAVAPIError):
    """The stored object changed on the server since it was fetched."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, ErrorCode.CALDAV_CONFLICT, details)


class CalendarNotFoundError(CalDAVTasksError):
    """No calendar with the requested URL."""

    def __init__(self, calendar_url: str):
        super().__init__(
            f"Calendar not found: {calendar_url}",
            ErrorCode.CALENDAR_NOT_FOUND,
            {'calendar_url': calendar_url}
        )


class TaskNotFoundError(CalDAVTasksError):
    """No stored task with the requested uid."""

    def __init__(self, task_uid: str):
        super().__init__(
            f"Task not found: {task_uid}",
            ErrorCode.TASK_NOT_FOUND,
            {'task_uid': task_uid}
        )


class ValidationError(CalDAVTasksError):
    """Invalid input from the caller."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, ErrorCode.VALIDATION_ERROR, details)


class ErrorHandler:
    """Centralized error handling and logging."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self._error_counts = {}
        self._last_errors = {}

    def handle_error(
        self,
        error: Exception,
        context: str = "unknown",
        extra_details: Optional[Dict[str, Any]] = None
    ) -> CalDAVTasksError:
        """Handle and log an error, converting to CalDAVTasksError if needed."""

        if isinstance(error, CalDAVTasksError):
            app_error = error
        else:
            app_error = CalDAVTasksError(
                message=str(error),
                error_code=ErrorCode.INTERNAL_ERROR,
                details=extra_details or {},
                cause=error
            )

        app_error.details['context'] = context
        if extra_details:
            app_error.details.update(extra_details)

        # Track error statistics
        error_key = f"{context}:{app_error.error_code.value}"
        self._error_counts[error_key] = self._error_counts.get(error_key, 0) + 1
        self._last_errors[error_key] = app_error.to_dict()

        internal = app_error.error_code is ErrorCode.INTERNAL_ERROR
        self.logger.log(
            logging.ERROR if internal else logging.WARNING,
            f"[{context}] {app_error.message}",
            extra={
                'error_code': app_error.error_code.value,
                'details': app_error.details,
                'error_count': self._error_counts[error_key]
            },
            exc_info=app_error.cause if internal else None
        )

        return app_error

    def get_error_stats(self) -> Dict[str, Any]:
        """Get error statistics for monitoring."""
        return {
            'error_counts': self._error_counts.copy(),
            'last_errors': self._last_errors.copy(),
            'total_errors': sum(self._error_counts.values())
        }

    def reset_stats(self):
        """Reset error statistics."""
        self._error_counts.clear()
        self._last_errors.clear()


# Global error handler instance
error_handler = ErrorHandler()


def handle_exceptions(context: str = "unknown"):
    """Decorator for automatic exception handling."""

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except Exception as e:
                raise error_handler.handle_error(e, context)

        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                raise error_handler.handle_error(e, context)

        if inspect.iscoroutinefunction(func):
            return async_wrapper
        return wrapper

    return decorator
