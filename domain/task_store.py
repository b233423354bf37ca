"""Immutable, sorted task collection used for optimistic UI updates.

Every operation returns a new ``TaskStore``; the receiver is never modified,
so a caller can roll back a failed mutation by keeping the previous value.
"""

from datetime import date
from functools import cmp_to_key
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from .entities import (
    Calendar, DateValue, Task, TaskFilter, TaskStatus, local_day, to_timestamp
)


NO_PRIORITY_RANK = 10
SIGNIFICANT_DATE_DELTA_SECONDS = 60


def priority_rank(priority: Optional[int]) -> int:
    """Sort rank of a raw priority; 0 and absent rank after every real value."""
    return priority or NO_PRIORITY_RANK


def _sign(value: float) -> int:
    return (value > 0) - (value < 0)


def compare_active(a: Task, b: Task) -> int:
    """Order active tasks: due date first, then priority, then newest created."""
    if a.due_date is not None and b.due_date is not None:
        result = _sign(to_timestamp(a.due_date) - to_timestamp(b.due_date))
        if result:
            return result
    elif a.due_date is not None:
        return -1
    elif b.due_date is not None:
        return 1

    result = _sign(priority_rank(a.priority) - priority_rank(b.priority))
    if result:
        return result

    if a.created is not None and b.created is not None:
        return _sign(to_timestamp(b.created) - to_timestamp(a.created))
    return 0


def dates_differ(first: Optional[DateValue], second: Optional[DateValue]) -> bool:
    """Dates differ when only one is set or they are more than a minute apart."""
    if first is None and second is None:
        return False
    if first is None or second is None:
        return True
    return abs(to_timestamp(first) - to_timestamp(second)) > SIGNIFICANT_DATE_DELTA_SECONDS


def sort_fields_changed(old: Task, new: Task) -> bool:
    return (
        dates_differ(old.due_date, new.due_date)
        or priority_rank(old.priority) != priority_rank(new.priority)
    )


def _is_today(value: Optional[DateValue], today: date) -> bool:
    return value is not None and local_day(value) == today


class TaskStore:
    """Sorted snapshot of the tasks of one calendar."""

    __slots__ = ('_tasks',)

    def __init__(self, tasks: Iterable[Task] = ()):
        self._tasks: Tuple[Task, ...] = tuple(tasks)

    @property
    def tasks(self) -> Tuple[Task, ...]:
        return self._tasks

    def __len__(self) -> int:
        return len(self._tasks)

    def __iter__(self) -> Iterator[Task]:
        return iter(self._tasks)

    def __contains__(self, uid: object) -> bool:
        return self.index_of(uid) is not None

    def __repr__(self) -> str:
        return f"TaskStore({len(self._tasks)} tasks)"

    def index_of(self, uid: object) -> Optional[int]:
        for index, task in enumerate(self._tasks):
            if task.uid == uid:
                return index
        return None

    def get(self, uid: str) -> Optional[Task]:
        index = self.index_of(uid)
        return self._tasks[index] if index is not None else None

    @staticmethod
    def _insertion_index(tasks: Sequence[Task], task: Task) -> int:
        """Position before the first active task that sorts after ``task``.

        Falls back to just before the first completed task, then to the end.
        """
        for index, current in enumerate(tasks):
            if current.is_active and compare_active(current, task) > 0:
                return index
        for index, current in enumerate(tasks):
            if current.status is TaskStatus.COMPLETED:
                return index
        return len(tasks)

    def add(self, task: Task) -> 'TaskStore':
        """Insert a task at its sorted position."""
        tasks = list(self._tasks)
        tasks.insert(self._insertion_index(tasks, task), task)
        return TaskStore(tasks)

    def _swap(self, index: int, task: Task) -> 'TaskStore':
        previous = self._tasks[index]
        tasks = list(self._tasks)
        if sort_fields_changed(previous, task):
            del tasks[index]
            tasks.insert(self._insertion_index(tasks, task), task)
        else:
            tasks[index] = task
        return TaskStore(tasks)

    def update(self, task: Task) -> 'TaskStore':
        """Replace the task with the same uid, or add it when missing.

        The entry only moves when its due date or priority changed
        significantly; otherwise it keeps its place in the list.
        """
        index = self.index_of(task.uid)
        if index is None:
            return self.add(task)
        return self._swap(index, task)

    def remove(self, uid: str) -> 'TaskStore':
        if self.index_of(uid) is None:
            return self
        return TaskStore(task for task in self._tasks if task.uid != uid)

    def replace_optimistic(self, temp_uid: str, real_task: Task) -> 'TaskStore':
        """Swap a pending entry for the task confirmed by the server."""
        index = self.index_of(temp_uid)
        if index is None:
            return self.add(real_task)
        return self._swap(index, real_task)

    def replace_all(self, tasks: Iterable[Task]) -> 'TaskStore':
        return TaskStore(tasks)

    def filtered_view(self, view: TaskFilter, today: Optional[date] = None) -> List[Task]:
        """Return the ordered tasks shown in one of the named views."""
        try:
            view = TaskFilter(view)
        except ValueError:
            return []
        today = today or date.today()
        active = [task for task in self._tasks if task.is_active]

        if view is TaskFilter.ALL:
            return sorted(active, key=cmp_to_key(compare_active))

        if view is TaskFilter.TODAY:
            todays = [
                task for task in active
                if _is_today(task.due_date, today) or _is_today(task.start_date, today)
            ]
            return sorted(todays, key=cmp_to_key(compare_active))

        if view is TaskFilter.SCHEDULED:
            scheduled = [
                task for task in active
                if (task.due_date is not None or task.start_date is not None)
                and not _is_today(task.due_date, today)
                and not _is_today(task.start_date, today)
            ]
            return sorted(
                scheduled,
                key=lambda task: to_timestamp(
                    task.due_date if task.due_date is not None else task.start_date
                ),
            )

        completed = [task for task in self._tasks if task.status is TaskStatus.COMPLETED]
        dated = [task for task in completed if task.completed_date is not None]
        undated = [task for task in completed if task.completed_date is None]
        dated.sort(key=lambda task: to_timestamp(task.completed_date), reverse=True)
        return dated + undated

    def counts(self, today: Optional[date] = None) -> Dict[str, int]:
        """Number of tasks in each view, keyed by view name."""
        return {
            view.value: len(self.filtered_view(view, today=today))
            for view in TaskFilter
        }


def _same_instant(first: Optional[DateValue], second: Optional[DateValue]) -> bool:
    if first is None or second is None:
        return first is None and second is None
    return to_timestamp(first) == to_timestamp(second)


def _task_differs(old: Task, new: Task) -> bool:
    return (
        old.summary != new.summary
        or old.description != new.description
        or old.status is not new.status
        or old.priority != new.priority
        or not _same_instant(old.due_date, new.due_date)
        or not _same_instant(old.last_modified, new.last_modified)
    )


def tasks_have_changed(old_tasks: Sequence[Task], new_tasks: Sequence[Task]) -> bool:
    """Check whether a fresh server snapshot differs from the displayed one."""
    if len(old_tasks) != len(new_tasks):
        return True

    old_by_uid = {task.uid: task for task in old_tasks}
    new_by_uid = {task.uid: task for task in new_tasks}
    if old_by_uid.keys() != new_by_uid.keys():
        return True

    return any(_task_differs(old_by_uid[uid], task) for uid, task in new_by_uid.items())


def calendars_have_changed(old_calendars: Sequence[Calendar], new_calendars: Sequence[Calendar]) -> bool:
    """Check whether the calendar list changed in a way worth re-rendering."""
    if len(old_calendars) != len(new_calendars):
        return True

    old_by_url = {calendar.url: calendar for calendar in old_calendars}
    new_by_url = {calendar.url: calendar for calendar in new_calendars}
    if old_by_url.keys() != new_by_url.keys():
        return True

    for url, calendar in new_by_url.items():
        previous = old_by_url[url]
        if (
            previous.display_name != calendar.display_name
            or previous.description != calendar.description
            or previous.timezone != calendar.timezone
        ):
            return True
    return False
