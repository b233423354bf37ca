# tests/conftest.py

from datetime import datetime, timezone
from typing import Iterable

import pytest

from application import TaskService
from domain import Task
from infrastructure import TaskCache
from monitoring import error_handler

from .fakes import DEFAULT_CALENDAR_URL, FakeTransport


NOW = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def build_ics(uid: str, summary: str, lines: Iterable[str] = (), newline: str = "\r\n") -> str:
    """A stored VCALENDAR with one VTODO, as another client might have written it."""
    body = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        "PRODID:-//Other Client//EN",
        "BEGIN:VTODO",
        f"UID:{uid}",
        "DTSTAMP:20240101T090000Z",
        f"SUMMARY:{summary}",
        "STATUS:NEEDS-ACTION",
        *lines,
        "LAST-MODIFIED:20240101T090000Z",
        "END:VTODO",
        "END:VCALENDAR",
    ]
    return newline.join(body) + newline


@pytest.fixture(autouse=True)
def reset_error_stats():
    error_handler.reset_stats()
    yield
    error_handler.reset_stats()


@pytest.fixture()
def now() -> datetime:
    return NOW


@pytest.fixture()
def make_task():
    """Factory for Task values with sensible defaults."""

    def _make(uid: str, **fields) -> Task:
        fields.setdefault("summary", f"Task {uid}")
        return Task(uid=uid, **fields)

    return _make


@pytest.fixture()
def calendar_url() -> str:
    return DEFAULT_CALENDAR_URL


@pytest.fixture()
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture()
def service(transport: FakeTransport) -> TaskService:
    return TaskService(transport)


@pytest.fixture()
def cache() -> TaskCache:
    return TaskCache(max_age_seconds=300)
