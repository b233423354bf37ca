# tests/test_services.py

import asyncio
from datetime import date

import pytest

from application import TaskService, find_calendar_object
from domain import (
    CalendarObject, Recurrence, TaskDraft, TaskPatch, TaskPriority, TaskStatus, parse_vtodo
)
from monitoring import (
    CalDAVAPIError, CalendarNotFoundError, ErrorCode, TaskNotFoundError,
    ValidationError, error_handler
)

from .conftest import build_ics


def test_get_calendar_defaults_to_first(service, calendar_url) -> None:
    calendar = asyncio.run(service.get_calendar())
    assert calendar.url == calendar_url


def test_unknown_calendar_raises(service) -> None:
    with pytest.raises(CalendarNotFoundError):
        asyncio.run(service.get_calendar("https://dav.example.com/nope/"))
    stats = error_handler.get_error_stats()
    assert stats["error_counts"] == {"get_calendar:CALENDAR_NOT_FOUND": 1}


def test_fetch_tasks_parses_objects_with_status(service, transport, calendar_url) -> None:
    transport.put(calendar_url, "a.ics", build_ics("a", "First"))
    transport.put(calendar_url, "b.ics", build_ics("b", "Second", ["PRIORITY:1"]))
    transport.put(calendar_url, "no-status.ics", build_ics("c", "Hidden").replace("STATUS:NEEDS-ACTION\r\n", ""))

    tasks = asyncio.run(service.fetch_tasks(calendar_url))
    assert [task.uid for task in tasks] == ["a", "b"]
    assert tasks[1].priority == 1


def test_create_task_stores_uid_named_object_and_returns_server_copy(service, transport, calendar_url) -> None:
    draft = TaskDraft(
        summary="  Call mom  ",
        due_date=date(2024, 3, 15),
        priority=TaskPriority.HIGH,
        recurrence=Recurrence.WEEKLY,
    )
    task = asyncio.run(service.create_task(draft, calendar_url))

    stored = transport.stored(calendar_url)
    assert len(stored) == 1
    assert stored[0].url == f"{calendar_url}{task.uid}.ics"
    assert task.summary == "Call mom"
    assert task.priority == 1
    assert task.due_date == date(2024, 3, 15)
    assert task.recurrence == "FREQ=WEEKLY"
    assert not task.is_pending
    assert parse_vtodo(stored[0].data).uid == task.uid


def test_create_task_rejects_blank_summary(service, transport) -> None:
    with pytest.raises(ValidationError):
        asyncio.run(service.create_task(TaskDraft(summary="   ")))
    assert not any(call[0] == "create_calendar_object" for call in transport.calls)


def test_create_task_fails_when_server_copy_missing(service, transport, calendar_url, monkeypatch) -> None:
    async def no_objects(calendar, object_filter):
        return []

    monkeypatch.setattr(transport, "fetch_calendar_objects", no_objects)
    with pytest.raises(CalDAVAPIError) as excinfo:
        asyncio.run(service.create_task(TaskDraft(summary="Lost"), calendar_url))
    assert excinfo.value.error_code is ErrorCode.CALDAV_API_ERROR


def test_update_status_patches_stored_text(service, transport, calendar_url) -> None:
    transport.put(calendar_url, "a.ics", build_ics("a", "Task", ["X-KEEP:yes"]))
    asyncio.run(service.update_status(calendar_url, "a", TaskStatus.COMPLETED))

    data = transport.stored(calendar_url)[0].data
    assert "STATUS:COMPLETED" in data
    assert "X-KEEP:yes" in data
    assert parse_vtodo(data).completed_date is not None


def test_update_task_applies_full_patch(service, transport, calendar_url) -> None:
    transport.put(calendar_url, "a.ics", build_ics("a", "Task", ["DESCRIPTION:old"]))
    patch = TaskPatch(
        summary="Renamed",
        description=None,
        due_date=date(2024, 4, 1),
        priority=TaskPriority.LOW,
        recurrence=Recurrence.NEVER,
    )
    asyncio.run(service.update_task(calendar_url, "a", patch))

    task = parse_vtodo(transport.stored(calendar_url)[0].data)
    assert task.summary == "Renamed"
    assert task.description is None
    assert task.due_date == date(2024, 4, 1)
    assert task.priority == 9


def test_update_task_rejects_empty_summary(service, transport, calendar_url) -> None:
    transport.put(calendar_url, "a.ics", build_ics("a", "Task"))
    with pytest.raises(ValidationError):
        asyncio.run(service.update_task(calendar_url, "a", TaskPatch(summary="  ")))


def test_update_missing_task_raises_not_found(service, calendar_url) -> None:
    with pytest.raises(TaskNotFoundError):
        asyncio.run(service.update_status(calendar_url, "ghost", TaskStatus.COMPLETED))


def test_delete_task_removes_object(service, transport, calendar_url) -> None:
    transport.put(calendar_url, "a.ics", build_ics("a", "A"))
    transport.put(calendar_url, "b.ics", build_ics("b", "B"))
    asyncio.run(service.delete_task(calendar_url, "a"))
    assert [obj.url for obj in transport.stored(calendar_url)] == [f"{calendar_url}b.ics"]


def test_transport_errors_are_reported_and_reraised(service, transport, calendar_url) -> None:
    transport.put(calendar_url, "a.ics", build_ics("a", "A"))
    transport.fail_next(CalDAVAPIError("boom"))
    with pytest.raises(CalDAVAPIError):
        asyncio.run(service.delete_task(calendar_url, "a"))
    assert error_handler.get_error_stats()["error_counts"] == {"delete_task:CALDAV_API_ERROR": 1}


def test_find_calendar_object_prefers_exact_uid_line() -> None:
    objects = [
        CalendarObject(url="https://x/abc-1.ics", data=build_ics("abc-12", "Prefix clash")),
        CalendarObject(url="https://x/other.ics", data=build_ics("abc-1", "Exact")),
    ]
    assert find_calendar_object(objects, "abc-1").url == "https://x/other.ics"


def test_find_calendar_object_falls_back_to_url() -> None:
    objects = [CalendarObject(url="https://x/uid-9.ics", data="BEGIN:VCALENDAR\r\nEND:VCALENDAR\r\n")]
    assert find_calendar_object(objects, "uid-9") is objects[0]
    assert find_calendar_object(objects, "uid-8") is None


def test_service_uses_configured_product_id(transport, calendar_url) -> None:
    service = TaskService(transport, product_id="-//Test//EN")
    asyncio.run(service.create_task(TaskDraft(summary="X"), calendar_url))
    assert "PRODID:-//Test//EN" in transport.stored(calendar_url)[0].data
