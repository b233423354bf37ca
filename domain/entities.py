"""Domain entities for the CalDAV tasks application."""

import uuid
from dataclasses import dataclass, replace
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union


DateValue = Union[date, datetime]

PENDING_UID_PREFIX = "pending-"


class TaskStatus(Enum):
    """VTODO status values."""
    NEEDS_ACTION = "NEEDS-ACTION"
    COMPLETED = "COMPLETED"
    IN_PROCESS = "IN-PROCESS"
    CANCELLED = "CANCELLED"

    @property
    def is_active(self) -> bool:
        return self not in (TaskStatus.COMPLETED, TaskStatus.CANCELLED)


class TaskPriority(Enum):
    """Priority labels shown to the user."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    NONE = "none"


class Recurrence(Enum):
    """Recurrence choices offered when creating or editing a task."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"
    NEVER = "never"


class TaskFilter(Enum):
    """Named task list views."""
    ALL = "all"
    TODAY = "today"
    SCHEDULED = "scheduled"
    COMPLETED = "completed"


class SyncState(Enum):
    """Whether the server has confirmed a task."""
    PENDING = "pending"
    CONFIRMED = "confirmed"


_PRIORITY_VALUES = {
    TaskPriority.HIGH: 1,
    TaskPriority.MEDIUM: 5,
    TaskPriority.LOW: 9,
}

_RECURRENCE_RULES = {
    Recurrence.DAILY: "FREQ=DAILY",
    Recurrence.WEEKLY: "FREQ=WEEKLY",
    Recurrence.MONTHLY: "FREQ=MONTHLY",
    Recurrence.YEARLY: "FREQ=YEARLY",
}


def priority_to_value(priority: TaskPriority) -> Optional[int]:
    """Map a priority label to its iCalendar value; ``none`` maps to None."""
    return _PRIORITY_VALUES.get(priority)


def priority_from_value(value: Optional[int]) -> TaskPriority:
    """Map a stored iCalendar priority to a label.

    Only 1, 5 and 9 carry a label. Every other stored value, including 0 and
    absent, reads as ``none``.
    """
    for label, number in _PRIORITY_VALUES.items():
        if number == value:
            return label
    return TaskPriority.NONE


def recurrence_to_rule(recurrence: Recurrence) -> Optional[str]:
    return _RECURRENCE_RULES.get(recurrence)


def recurrence_from_rule(rule: Optional[str]) -> Recurrence:
    if not rule:
        return Recurrence.NEVER
    for label, value in _RECURRENCE_RULES.items():
        if value == rule.upper():
            return label
    return Recurrence.NEVER


def to_timestamp(value: DateValue) -> float:
    """Return the POSIX instant of a date or datetime.

    Date-only values and naive datetimes are read as local time.
    """
    if isinstance(value, datetime):
        return value.timestamp()
    return datetime(value.year, value.month, value.day).timestamp()


def local_day(value: DateValue) -> date:
    """Return the local calendar day a date or datetime falls on."""
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone()
        return value.date()
    return value


def _date_to_json(value: Optional[DateValue]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat()


def parse_json_date(value: Any) -> Optional[DateValue]:
    """Parse an ISO date or datetime sent by a client; anything else is None."""
    if value is None or value == "":
        return None
    if isinstance(value, (date, datetime)):
        return value
    if isinstance(value, str):
        text = value.strip()
        # JavaScript clients send a trailing Z, which older fromisoformat rejects
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            if len(text) == 10:
                return date.fromisoformat(text)
            return datetime.fromisoformat(text)
        except ValueError:
            return None
    return None


@dataclass(frozen=True)
class Task:
    """Domain entity representing a parsed VTODO."""

    uid: str
    summary: str
    status: TaskStatus = TaskStatus.NEEDS_ACTION
    description: Optional[str] = None
    location: Optional[str] = None
    url: Optional[str] = None
    priority: Optional[int] = None
    percent_complete: Optional[int] = None
    sequence: Optional[int] = None
    recurrence: Optional[str] = None
    categories: Optional[Tuple[str, ...]] = None
    start_date: Optional[DateValue] = None
    due_date: Optional[DateValue] = None
    completed_date: Optional[DateValue] = None
    created: Optional[DateValue] = None
    last_modified: Optional[DateValue] = None
    sync_state: SyncState = SyncState.CONFIRMED

    @property
    def is_pending(self) -> bool:
        """Check if the task is a local optimistic entry not yet confirmed."""
        return self.sync_state is SyncState.PENDING

    @property
    def is_active(self) -> bool:
        return self.status.is_active

    @property
    def priority_label(self) -> TaskPriority:
        return priority_from_value(self.priority)

    @property
    def recurrence_label(self) -> Recurrence:
        return recurrence_from_rule(self.recurrence)

    @classmethod
    def pending(
        cls,
        summary: str,
        description: Optional[str] = None,
        due_date: Optional[DateValue] = None,
        priority: TaskPriority = TaskPriority.NONE,
        recurrence: Recurrence = Recurrence.NEVER,
        now: Optional[datetime] = None,
    ) -> 'Task':
        """Create an optimistic task with a temporary uid."""
        now = now or datetime.now(timezone.utc)
        return cls(
            uid=f"{PENDING_UID_PREFIX}{uuid.uuid4().hex}",
            summary=summary,
            description=description or None,
            due_date=due_date,
            priority=priority_to_value(priority),
            recurrence=recurrence_to_rule(recurrence),
            created=now,
            last_modified=now,
            sync_state=SyncState.PENDING,
        )

    def with_status(self, status: TaskStatus, now: Optional[datetime] = None) -> 'Task':
        """Return a copy with a new status, keeping the completed date in step."""
        if status is TaskStatus.COMPLETED:
            completed = self.completed_date or now or datetime.now(timezone.utc)
        else:
            completed = None
        return replace(self, status=status, completed_date=completed)

    def to_dict(self) -> Dict[str, Any]:
        """Convert the task to its JSON shape."""
        return {
            'uid': self.uid,
            'summary': self.summary,
            'description': self.description,
            'location': self.location,
            'url': self.url,
            'status': self.status.value,
            'priority': self.priority,
            'percentComplete': self.percent_complete,
            'sequence': self.sequence,
            'recurrence': self.recurrence,
            'categories': list(self.categories) if self.categories is not None else None,
            'startDate': _date_to_json(self.start_date),
            'dueDate': _date_to_json(self.due_date),
            'completedDate': _date_to_json(self.completed_date),
            'created': _date_to_json(self.created),
            'lastModified': _date_to_json(self.last_modified),
            'pending': self.is_pending,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Task':
        """Create a Task from its JSON shape, converting date strings back."""
        try:
            status = TaskStatus(data.get('status') or TaskStatus.NEEDS_ACTION.value)
        except ValueError:
            status = TaskStatus.NEEDS_ACTION

        categories = data.get('categories')
        return cls(
            uid=data.get('uid', ''),
            summary=data.get('summary', ''),
            status=status,
            description=data.get('description'),
            location=data.get('location'),
            url=data.get('url'),
            priority=data.get('priority'),
            percent_complete=data.get('percentComplete'),
            sequence=data.get('sequence'),
            recurrence=data.get('recurrence'),
            categories=tuple(categories) if categories is not None else None,
            start_date=parse_json_date(data.get('startDate')),
            due_date=parse_json_date(data.get('dueDate')),
            completed_date=parse_json_date(data.get('completedDate')),
            created=parse_json_date(data.get('created')),
            last_modified=parse_json_date(data.get('lastModified')),
            sync_state=SyncState.PENDING if data.get('pending') else SyncState.CONFIRMED,
        )


class _Unset:
    """Marker for patch fields that must be left untouched."""

    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _Unset()


def _coerce_label(enum_cls, value: Any) -> Any:
    """Turn a plain label such as ``"high"`` into its enum; empty means cleared."""
    if value is UNSET or value is None or isinstance(value, enum_cls):
        return value
    if value == '':
        return None
    return enum_cls(value)


@dataclass(frozen=True)
class TaskDraft:
    """Fields accepted when creating a task."""

    summary: str
    description: Optional[str] = None
    due_date: Optional[DateValue] = None
    priority: TaskPriority = TaskPriority.NONE
    recurrence: Recurrence = Recurrence.NEVER


@dataclass(frozen=True)
class TaskPatch:
    """Field-level edits applied to a stored VTODO.

    ``UNSET`` leaves a field as it is; ``None`` (or an empty string, or the
    ``none``/``never`` labels) clears it.
    """

    summary: Any = UNSET
    description: Any = UNSET
    due_date: Any = UNSET
    priority: Any = UNSET
    recurrence: Any = UNSET
    status: Any = UNSET

    def __post_init__(self):
        for name, enum_cls in (
            ('priority', TaskPriority), ('recurrence', Recurrence), ('status', TaskStatus)
        ):
            object.__setattr__(self, name, _coerce_label(enum_cls, getattr(self, name)))

    def apply_to(self, task: Task, now: Optional[datetime] = None) -> Task:
        """Produce the optimistic local version of this edit."""
        changes: Dict[str, Any] = {}
        if self.summary is not UNSET:
            changes['summary'] = self.summary or ''
        if self.description is not UNSET:
            changes['description'] = self.description or None
        if self.due_date is not UNSET:
            changes['due_date'] = self.due_date
        if self.priority is not UNSET:
            changes['priority'] = priority_to_value(self.priority or TaskPriority.NONE)
        if self.recurrence is not UNSET:
            changes['recurrence'] = recurrence_to_rule(self.recurrence or Recurrence.NEVER)
        updated = replace(task, **changes) if changes else task
        if self.status is not UNSET:
            # A cleared STATUS line reads back as the default
            updated = updated.with_status(self.status or TaskStatus.NEEDS_ACTION, now=now)
        return updated


@dataclass(frozen=True)
class Calendar:
    """A CalDAV calendar collection."""

    url: str
    display_name: Optional[str] = None
    ctag: Optional[str] = None
    description: Optional[str] = None
    timezone: Optional[str] = None

    @property
    def name(self) -> str:
        """Get display name for calendar."""
        return self.display_name or self.url.rstrip('/').rsplit('/', 1)[-1]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'url': self.url,
            'displayName': self.display_name,
            'ctag': self.ctag,
            'description': self.description,
            'timezone': self.timezone,
        }


@dataclass
class CalendarObject:
    """A stored calendar resource: its URL, raw ICS text and etag."""

    url: str
    data: str
    etag: Optional[str] = None


@dataclass(frozen=True)
class ObjectFilter:
    """Server-side component filter for calendar-query reports."""

    component: str = "VTODO"
    prop_name: Optional[str] = None
    text_match: Optional[str] = None


VTODO_WITH_STATUS = ObjectFilter(component="VTODO", prop_name="STATUS")


def uid_filter(uid: str) -> ObjectFilter:
    return ObjectFilter(component="VTODO", prop_name="UID", text_match=uid)
