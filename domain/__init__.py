"""Domain layer for the CalDAV tasks application."""

from .entities import (
    Task, TaskStatus, TaskPriority, Recurrence, TaskFilter, SyncState,
    TaskDraft, TaskPatch, UNSET, Calendar, CalendarObject, ObjectFilter,
    VTODO_WITH_STATUS, uid_filter, priority_to_value, priority_from_value,
    recurrence_to_rule, recurrence_from_rule, parse_json_date
)
from .interfaces import CalDAVTransport
from .task_store import TaskStore, tasks_have_changed, calendars_have_changed
from .vtodo import (
    parse_vtodo, create_vtodo, apply_patch, escape_text, unescape_text, generate_uid
)

__all__ = [
    'Task', 'TaskStatus', 'TaskPriority', 'Recurrence', 'TaskFilter', 'SyncState',
    'TaskDraft', 'TaskPatch', 'UNSET', 'Calendar', 'CalendarObject', 'ObjectFilter',
    'VTODO_WITH_STATUS', 'uid_filter', 'priority_to_value', 'priority_from_value',
    'recurrence_to_rule', 'recurrence_from_rule', 'parse_json_date',
    'CalDAVTransport',
    'TaskStore', 'tasks_have_changed', 'calendars_have_changed',
    'parse_vtodo', 'create_vtodo', 'apply_patch', 'escape_text', 'unescape_text',
    'generate_uid'
]
