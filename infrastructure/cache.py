"""In-memory cache for task lists, calendars and the selected calendar."""

import logging
import time
from threading import Lock
from typing import Any, Callable, Dict, List, Optional, Tuple

from domain import Calendar, Task


class TaskCache:
    """Key/value cache where every entry remembers when it was written.

    Entries older than ``max_age_seconds`` are reported as stale but are still
    returned, so a view can render cached data while a refresh is running.
    """

    TASKS_PREFIX = 'tasks:'
    CALENDARS_KEY = 'calendars'
    SELECTED_CALENDAR_KEY = 'selected_calendar'

    def __init__(self, max_age_seconds: float = 300, clock: Callable[[], float] = time.time):
        self.max_age_seconds = max_age_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[Any, float]] = {}
        self._lock = Lock()
        self.logger = logging.getLogger(__name__)

    @classmethod
    def from_config(cls, sync_config) -> "TaskCache":
        """Build a cache whose max age comes from a ``SyncConfig``."""
        return cls(max_age_seconds=sync_config.cache_max_age_seconds)

    def _set(self, key: str, value: Any) -> None:
        with self._lock:
            self._entries[key] = (value, self._clock())

    def _get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
        return entry[0] if entry else None

    def age(self, key: str) -> Optional[float]:
        """Seconds since ``key`` was written, or None when it is absent."""
        with self._lock:
            entry = self._entries.get(key)
        if entry is None:
            return None
        return self._clock() - entry[1]

    def is_stale(self, key: str) -> bool:
        age = self.age(key)
        return age is None or age > self.max_age_seconds

    def set_tasks(self, calendar_url: str, tasks: List[Task]) -> None:
        self._set(self.TASKS_PREFIX + calendar_url, list(tasks))
        self.logger.debug(f"Cached {len(tasks)} tasks for {calendar_url}")

    def get_tasks(self, calendar_url: str) -> Optional[List[Task]]:
        tasks = self._get(self.TASKS_PREFIX + calendar_url)
        return list(tasks) if tasks is not None else None

    def tasks_stale(self, calendar_url: str) -> bool:
        return self.is_stale(self.TASKS_PREFIX + calendar_url)

    def set_calendars(self, calendars: List[Calendar]) -> None:
        self._set(self.CALENDARS_KEY, list(calendars))

    def get_calendars(self) -> Optional[List[Calendar]]:
        calendars = self._get(self.CALENDARS_KEY)
        return list(calendars) if calendars is not None else None

    def set_selected_calendar(self, calendar_url: Optional[str]) -> None:
        if calendar_url is None:
            self.invalidate(self.SELECTED_CALENDAR_KEY)
        else:
            self._set(self.SELECTED_CALENDAR_KEY, calendar_url)

    def get_selected_calendar(self) -> Optional[str]:
        return self._get(self.SELECTED_CALENDAR_KEY)

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        self.logger.debug("Cache cleared")
