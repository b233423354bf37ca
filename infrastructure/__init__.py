"""Infrastructure implementations for the CalDAV tasks application."""

from .cache import TaskCache
from .repositories import CalDAVRepository

__all__ = [
    'CalDAVRepository', 'TaskCache'
]
