"""Task operations against a CalDAV calendar."""

import logging
import re
from dataclasses import replace
from datetime import datetime
from typing import List, Optional, Sequence

from domain import (
    Calendar, CalendarObject, CalDAVTransport, Task, TaskDraft, TaskPatch,
    TaskStatus, UNSET, VTODO_WITH_STATUS, apply_patch, create_vtodo, generate_uid,
    parse_vtodo, uid_filter
)
from domain.vtodo import PRODUCT_ID
from monitoring import (
    CalDAVAPIError, CalendarNotFoundError, TaskNotFoundError, ValidationError,
    handle_exceptions
)


def find_calendar_object(objects: Sequence[CalendarObject], uid: str) -> Optional[CalendarObject]:
    """Find the stored object holding ``uid``.

    An exact ``UID:`` line wins; otherwise fall back to an object whose URL
    contains the uid, which is how clients usually name their resources.
    """
    uid_line = re.compile(rf'^UID:{re.escape(uid)}\r?$', re.MULTILINE)
    for calendar_object in objects:
        if uid_line.search(calendar_object.data):
            return calendar_object
    for calendar_object in objects:
        if uid in calendar_object.url:
            return calendar_object
    return None


class TaskService:
    """Service for reading and writing tasks on a CalDAV server."""

    def __init__(self, transport: CalDAVTransport, product_id: str = PRODUCT_ID):
        self.transport = transport
        self.product_id = product_id
        self.logger = logging.getLogger(__name__)

    @handle_exceptions("get_calendars")
    async def get_calendars(self) -> List[Calendar]:
        return await self.transport.fetch_calendars()

    @handle_exceptions("get_calendar")
    async def get_calendar(self, calendar_url: Optional[str] = None) -> Calendar:
        """Resolve a calendar by URL, or the first calendar when no URL is given."""
        return await self._resolve_calendar(calendar_url)

    async def _resolve_calendar(self, calendar_url: Optional[str]) -> Calendar:
        calendars = await self.transport.fetch_calendars()
        if calendar_url:
            for calendar in calendars:
                if calendar.url == calendar_url:
                    return calendar
            raise CalendarNotFoundError(calendar_url)
        if not calendars:
            raise CalendarNotFoundError("default")
        return calendars[0]

    @handle_exceptions("fetch_tasks")
    async def fetch_tasks(self, calendar_url: str) -> List[Task]:
        calendar = await self._resolve_calendar(calendar_url)
        objects = await self.transport.fetch_calendar_objects(calendar, VTODO_WITH_STATUS)
        tasks = [parse_vtodo(calendar_object.data) for calendar_object in objects]
        self.logger.info(f"Fetched {len(tasks)} tasks from {calendar.name}")
        return tasks

    @handle_exceptions("create_task")
    async def create_task(
        self,
        draft: TaskDraft,
        calendar_url: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Task:
        """Store a new task and return it as the server saved it."""
        summary = (draft.summary or '').strip()
        if not summary:
            raise ValidationError("Task summary is required", {'field': 'summary'})

        calendar = await self._resolve_calendar(calendar_url)
        uid = generate_uid()
        ics_text = create_vtodo(
            replace(draft, summary=summary), uid=uid, now=now, product_id=self.product_id
        )
        await self.transport.create_calendar_object(calendar, f"{uid}.ics", ics_text)

        created = await self.transport.fetch_calendar_objects(calendar, uid_filter(uid))
        calendar_object = find_calendar_object(created, uid)
        if calendar_object is None:
            raise CalDAVAPIError(
                "Failed to retrieve created task from server",
                details={'task_uid': uid, 'calendar_url': calendar.url}
            )

        self.logger.info(f"Created task {uid} in {calendar.name}")
        return parse_vtodo(calendar_object.data)

    async def _locate(self, calendar_url: str, uid: str) -> CalendarObject:
        calendar = await self._resolve_calendar(calendar_url)
        objects = await self.transport.fetch_calendar_objects(calendar, VTODO_WITH_STATUS)
        calendar_object = find_calendar_object(objects, uid)
        if calendar_object is None:
            raise TaskNotFoundError(uid)
        return calendar_object

    async def update_status(
        self,
        calendar_url: str,
        uid: str,
        status: TaskStatus,
        now: Optional[datetime] = None
    ) -> None:
        await self.update_task(calendar_url, uid, TaskPatch(status=status), now=now)

    @handle_exceptions("update_task")
    async def update_task(
        self,
        calendar_url: str,
        uid: str,
        patch: TaskPatch,
        now: Optional[datetime] = None
    ) -> None:
        """Patch the stored VTODO in place and write it back."""
        if patch.summary is not UNSET and not (patch.summary or '').strip():
            raise ValidationError("Task summary cannot be empty", {'field': 'summary'})

        calendar_object = await self._locate(calendar_url, uid)
        updated = replace(calendar_object, data=apply_patch(calendar_object.data, patch, now=now))
        await self.transport.update_calendar_object(updated)
        self.logger.info(f"Updated task {uid}")

    @handle_exceptions("delete_task")
    async def delete_task(self, calendar_url: str, uid: str) -> None:
        calendar_object = await self._locate(calendar_url, uid)
        await self.transport.delete_calendar_object(calendar_object)
        self.logger.info(f"Deleted task {uid}")
