"""Domain interfaces for the CalDAV tasks application."""

from abc import ABC, abstractmethod
from typing import List

from .entities import Calendar, CalendarObject, ObjectFilter


class CalDAVTransport(ABC):
    """Abstract access to a CalDAV server. Only opaque ICS text crosses it."""

    @abstractmethod
    async def fetch_calendars(self) -> List[Calendar]:
        """Get all calendars of the account."""
        pass

    @abstractmethod
    async def fetch_calendar_objects(self, calendar: Calendar, object_filter: ObjectFilter) -> List[CalendarObject]:
        """Get the calendar objects matching a server-side filter."""
        pass

    @abstractmethod
    async def create_calendar_object(self, calendar: Calendar, filename: str, ics_text: str) -> None:
        """Store a new calendar object under ``filename``."""
        pass

    @abstractmethod
    async def update_calendar_object(self, calendar_object: CalendarObject) -> None:
        """Replace the stored data of an existing calendar object."""
        pass

    @abstractmethod
    async def delete_calendar_object(self, calendar_object: CalendarObject) -> None:
        """Delete a calendar object."""
        pass
