"""JSON API route handlers for the CalDAV tasks application."""

from typing import Any, Dict, Optional

from flask import g, jsonify, request, session

from application import TaskService
from domain import (
    Recurrence, TaskDraft, TaskPatch, TaskPriority, TaskStatus, parse_json_date
)
from monitoring import ValidationError


def _json_body() -> Dict[str, Any]:
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


def _require_fields(body: Dict[str, Any], *names: str, message: str) -> None:
    for name in names:
        value = body.get(name)
        if not value or not isinstance(value, str):
            raise ValidationError(message, {'field': name})


def _label(enum_cls, value: Any, default):
    """Read an enum label from the request; missing or empty gives ``default``."""
    if value is None or value == '':
        return default
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationError(f"Invalid {enum_cls.__name__} value: {value}", {'value': value})


def _due_date(value: Any) -> Optional[Any]:
    if value is None or value == '':
        return None
    due = parse_json_date(value)
    if due is None:
        raise ValidationError(f"Invalid due date: {value}", {'field': 'dueDate'})
    return due


def _optional_text(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    return value.strip() or None


def register_task_routes(app, async_executor, current_service, requires_auth):
    """Register calendar and task routes."""

    def service() -> TaskService:
        return current_service(g.credentials)

    @app.route('/api/calendars', methods=['GET'])
    @requires_auth
    def list_calendars():
        calendars = async_executor.run_async(service().get_calendars())
        return jsonify({'calendars': [calendar.to_dict() for calendar in calendars]})

    @app.route('/api/calendar-selection', methods=['GET'])
    @requires_auth
    def get_calendar_selection():
        return jsonify({'selectedCalendarUrl': session.get('selected_calendar_url')})

    @app.route('/api/calendar-selection', methods=['POST'])
    @requires_auth
    def save_calendar_selection():
        body = _json_body()
        _require_fields(body, 'calendarUrl', message="Calendar URL is required")
        session['selected_calendar_url'] = body['calendarUrl']
        return jsonify({'success': True})

    @app.route('/api/tasks/fetch', methods=['GET'])
    @requires_auth
    def fetch_tasks():
        calendar_url = request.args.get('calendarUrl')
        if not calendar_url:
            raise ValidationError("Calendar URL is required", {'field': 'calendarUrl'})

        tasks = async_executor.run_async(service().fetch_tasks(calendar_url))
        return jsonify({'tasks': [task.to_dict() for task in tasks]})

    @app.route('/api/tasks', methods=['POST'])
    @requires_auth
    def create_task():
        body = _json_body()
        _require_fields(body, 'summary', message="Summary is required")

        draft = TaskDraft(
            summary=body['summary'].strip(),
            description=_optional_text(body.get('description')),
            due_date=_due_date(body.get('dueDate')),
            priority=_label(TaskPriority, body.get('priority'), TaskPriority.NONE),
            recurrence=_label(Recurrence, body.get('recurrence'), Recurrence.NEVER)
        )
        task = async_executor.run_async(
            service().create_task(draft, body.get('calendarUrl') or None)
        )
        return jsonify({'success': True, 'task': task.to_dict()})

    @app.route('/api/tasks/update', methods=['PATCH'])
    @requires_auth
    def update_task_status():
        body = _json_body()
        _require_fields(
            body, 'taskUid', 'status', 'calendarUrl',
            message="Task UID, status, and calendar URL are required"
        )

        status = _label(TaskStatus, body['status'], None)
        async_executor.run_async(
            service().update_status(body['calendarUrl'], body['taskUid'], status)
        )
        return jsonify({'success': True})

    @app.route('/api/tasks/update-full', methods=['PATCH'])
    @requires_auth
    def update_task_full():
        body = _json_body()
        _require_fields(
            body, 'taskUid', 'summary', 'calendarUrl',
            message="Task UID, summary, and calendar URL are required"
        )

        # Every editable field is sent; an empty value clears the property
        patch = TaskPatch(
            summary=body['summary'].strip(),
            description=_optional_text(body.get('description')),
            due_date=_due_date(body.get('dueDate')),
            priority=_label(TaskPriority, body.get('priority'), TaskPriority.NONE),
            recurrence=_label(Recurrence, body.get('recurrence'), Recurrence.NEVER)
        )
        async_executor.run_async(
            service().update_task(body['calendarUrl'], body['taskUid'], patch)
        )
        return jsonify({'success': True})

    @app.route('/api/tasks/delete', methods=['DELETE'])
    @requires_auth
    def delete_task():
        body = _json_body()
        _require_fields(
            body, 'taskUid', 'calendarUrl',
            message="Task UID and calendar URL are required"
        )

        async_executor.run_async(service().delete_task(body['calendarUrl'], body['taskUid']))
        return jsonify({'success': True})
