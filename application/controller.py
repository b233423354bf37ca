"""Optimistic task list: apply edits locally, then confirm with the server."""

import logging
from datetime import datetime, timezone
from typing import List

from domain import (
    Task, TaskDraft, TaskFilter, TaskPatch, TaskStatus, TaskStore, tasks_have_changed
)
from infrastructure import TaskCache
from monitoring import CalDAVTasksError, TaskNotFoundError, ValidationError, error_handler

from .services import TaskService


class TaskListController:
    """Keeps the displayed tasks of one calendar in step with the server.

    Every action commits its optimistic snapshot before the server call and
    rolls back against the store as it is when the call fails, so edits made
    meanwhile to other tasks survive.
    """

    def __init__(self, service: TaskService, cache: TaskCache, calendar_url: str):
        self.service = service
        self.cache = cache
        self.calendar_url = calendar_url
        self.store = TaskStore()
        self.logger = logging.getLogger(__name__)

    def _commit(self, store: TaskStore) -> None:
        self.store = store
        self.cache.set_tasks(self.calendar_url, list(store))

    def _fail(self, error: Exception, context: str) -> Exception:
        # Service errors were already reported by the service itself
        if isinstance(error, CalDAVTasksError):
            return error
        return error_handler.handle_error(error, context, {'calendar_url': self.calendar_url})

    def _require(self, uid: str) -> Task:
        task = self.store.get(uid)
        if task is None:
            raise TaskNotFoundError(uid)
        if task.is_pending:
            raise ValidationError(
                f"Task {uid} is not confirmed by the server yet", {'task_uid': uid}
            )
        return task

    def view(self, view: TaskFilter = TaskFilter.ALL) -> List[Task]:
        return self.store.filtered_view(view)

    def load_cached(self) -> bool:
        """Seed the store from the cache; returns whether anything was cached."""
        tasks = self.cache.get_tasks(self.calendar_url)
        if tasks is None:
            return False
        self.store = self.store.replace_all(tasks)
        return True

    async def refresh(self) -> bool:
        """Fetch the server snapshot; returns whether the list was replaced."""
        try:
            tasks = await self.service.fetch_tasks(self.calendar_url)
        except Exception as e:
            raise self._fail(e, "refresh")

        if not tasks_have_changed(list(self.store), tasks):
            self.cache.set_tasks(self.calendar_url, list(self.store))
            return False

        self._commit(self.store.replace_all(tasks))
        self.logger.info(f"Task list for {self.calendar_url} replaced ({len(tasks)} tasks)")
        return True

    async def refresh_if_stale(self) -> bool:
        """Refresh only when the cached list is older than the cache max age."""
        if not self.cache.tasks_stale(self.calendar_url):
            return False
        return await self.refresh()

    async def add_task(self, draft: TaskDraft) -> Task:
        pending = Task.pending(
            summary=(draft.summary or '').strip(),
            description=draft.description,
            due_date=draft.due_date,
            priority=draft.priority,
            recurrence=draft.recurrence,
        )
        self._commit(self.store.add(pending))

        try:
            created = await self.service.create_task(draft, self.calendar_url)
        except Exception as e:
            self._commit(self.store.remove(pending.uid))
            raise self._fail(e, "add_task")

        self._commit(self.store.replace_optimistic(pending.uid, created))
        return created

    async def set_status(self, uid: str, status: TaskStatus) -> Task:
        previous = self._require(uid)
        updated = previous.with_status(status, now=datetime.now(timezone.utc))
        self._commit(self.store.update(updated))

        try:
            await self.service.update_status(self.calendar_url, uid, status)
        except Exception as e:
            self._commit(self.store.update(previous))
            raise self._fail(e, "set_status")
        return updated

    async def edit_task(self, uid: str, patch: TaskPatch) -> Task:
        previous = self._require(uid)
        updated = patch.apply_to(previous, now=datetime.now(timezone.utc))
        self._commit(self.store.update(updated))

        try:
            await self.service.update_task(self.calendar_url, uid, patch)
        except Exception as e:
            self._commit(self.store.update(previous))
            raise self._fail(e, "edit_task")
        return updated

    async def delete_task(self, uid: str) -> Task:
        previous = self._require(uid)
        self._commit(self.store.remove(uid))

        try:
            await self.service.delete_task(self.calendar_url, uid)
        except Exception as e:
            if uid not in self.store:
                self._commit(self.store.add(previous))
            raise self._fail(e, "delete_task")
        return previous
