"""Application services for the CalDAV tasks application."""

from .services import TaskService, find_calendar_object
from .controller import TaskListController

__all__ = [
    'TaskService', 'TaskListController', 'find_calendar_object'
]
