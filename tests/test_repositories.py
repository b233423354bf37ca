# tests/test_repositories.py

import asyncio

import pytest
import requests

from domain import Calendar, CalendarObject, VTODO_WITH_STATUS, uid_filter
from infrastructure import CalDAVRepository
from monitoring import AuthenticationError, CalDAVAPIError, ConflictError, ErrorCode

from .fakes import FakeHTTPSession, FakeResponse


ENDPOINT = "https://dav.example.com/"
CALENDAR = Calendar(url="https://dav.example.com/calendars/alice/tasks/", display_name="Tasks")

PRINCIPAL_XML = b"""<?xml version="1.0"?>
<d:multistatus xmlns:d="DAV:">
  <d:response>
    <d:href>/</d:href>
    <d:propstat>
      <d:prop><d:current-user-principal><d:href>/principals/alice/</d:href></d:current-user-principal></d:prop>
      <d:status>HTTP/1.1 200 OK</d:status>
    </d:propstat>
  </d:response>
</d:multistatus>"""

HOME_XML = b"""<?xml version="1.0"?>
<d:multistatus xmlns:d="DAV:" xmlns:c="urn:ietf:params:xml:ns:caldav">
  <d:response>
    <d:href>/principals/alice/</d:href>
    <d:propstat>
      <d:prop><c:calendar-home-set><d:href>/calendars/alice/</d:href></c:calendar-home-set></d:prop>
      <d:status>HTTP/1.1 200 OK</d:status>
    </d:propstat>
  </d:response>
</d:multistatus>"""

CALENDARS_XML = b"""<?xml version="1.0"?>
<d:multistatus xmlns:d="DAV:" xmlns:c="urn:ietf:params:xml:ns:caldav" xmlns:cs="http://calendarserver.org/ns/">
  <d:response>
    <d:href>/calendars/alice/</d:href>
    <d:propstat>
      <d:prop><d:resourcetype><d:collection/></d:resourcetype></d:prop>
      <d:status>HTTP/1.1 200 OK</d:status>
    </d:propstat>
  </d:response>
  <d:response>
    <d:href>/calendars/alice/tasks/</d:href>
    <d:propstat>
      <d:prop>
        <d:resourcetype><d:collection/><c:calendar/></d:resourcetype>
        <d:displayname>Tasks</d:displayname>
        <cs:getctag>ctag-7</cs:getctag>
        <c:supported-calendar-component-set><c:comp name="VTODO"/></c:supported-calendar-component-set>
      </d:prop>
      <d:status>HTTP/1.1 200 OK</d:status>
    </d:propstat>
    <d:propstat>
      <d:prop><c:calendar-description/></d:prop>
      <d:status>HTTP/1.1 404 Not Found</d:status>
    </d:propstat>
  </d:response>
  <d:response>
    <d:href>/calendars/alice/events/</d:href>
    <d:propstat>
      <d:prop>
        <d:resourcetype><d:collection/><c:calendar/></d:resourcetype>
        <d:displayname>Events</d:displayname>
        <c:supported-calendar-component-set><c:comp name="VEVENT"/></c:supported-calendar-component-set>
      </d:prop>
      <d:status>HTTP/1.1 200 OK</d:status>
    </d:propstat>
  </d:response>
</d:multistatus>"""

REPORT_XML = b"""<?xml version="1.0"?>
<d:multistatus xmlns:d="DAV:" xmlns:c="urn:ietf:params:xml:ns:caldav">
  <d:response>
    <d:href>/calendars/alice/tasks/a.ics</d:href>
    <d:propstat>
      <d:prop>
        <d:getetag>"etag-a"</d:getetag>
        <c:calendar-data>BEGIN:VCALENDAR
BEGIN:VTODO
UID:a
SUMMARY:Milk &amp; eggs
STATUS:NEEDS-ACTION
END:VTODO
END:VCALENDAR
</c:calendar-data>
      </d:prop>
      <d:status>HTTP/1.1 200 OK</d:status>
    </d:propstat>
  </d:response>
</d:multistatus>"""


def _repository(*responses) -> CalDAVRepository:
    return CalDAVRepository(
        ENDPOINT, "alice", "secret", timeout=5, session=FakeHTTPSession(list(responses))
    )


def test_fetch_calendars_discovers_task_collections() -> None:
    repo = _repository(
        FakeResponse(207, PRINCIPAL_XML),
        FakeResponse(207, HOME_XML),
        FakeResponse(207, CALENDARS_XML),
    )
    calendars = asyncio.run(repo.fetch_calendars())

    assert calendars == [Calendar(
        url="https://dav.example.com/calendars/alice/tasks/",
        display_name="Tasks",
        ctag="ctag-7",
    )]
    methods = [(r["method"], r["url"], r["headers"].get("Depth")) for r in repo.session.requests]
    assert methods == [
        ("PROPFIND", "https://dav.example.com/", "0"),
        ("PROPFIND", "https://dav.example.com/principals/alice/", "0"),
        ("PROPFIND", "https://dav.example.com/calendars/alice/", "1"),
    ]
    assert repo.session.auth == ("alice", "secret")
    assert all(r["timeout"] == 5 for r in repo.session.requests)


def test_calendar_home_is_discovered_once() -> None:
    repo = _repository(
        FakeResponse(207, PRINCIPAL_XML),
        FakeResponse(207, HOME_XML),
        FakeResponse(207, CALENDARS_XML),
        FakeResponse(207, CALENDARS_XML),
    )
    asyncio.run(repo.fetch_calendars())
    asyncio.run(repo.fetch_calendars())
    assert len(repo.session.requests) == 4


def test_fetch_calendar_objects_sends_filter_and_restores_crlf() -> None:
    repo = _repository(FakeResponse(207, REPORT_XML))
    objects = asyncio.run(repo.fetch_calendar_objects(CALENDAR, VTODO_WITH_STATUS))

    assert objects == [CalendarObject(
        url="https://dav.example.com/calendars/alice/tasks/a.ics",
        data="BEGIN:VCALENDAR\r\nBEGIN:VTODO\r\nUID:a\r\nSUMMARY:Milk & eggs\r\n"
             "STATUS:NEEDS-ACTION\r\nEND:VTODO\r\nEND:VCALENDAR\r\n",
        etag='"etag-a"',
    )]
    sent = repo.session.requests[0]
    assert sent["method"] == "REPORT"
    assert sent["headers"]["Depth"] == "1"
    assert b'name="VTODO"' in sent["data"]
    assert b'name="STATUS"' in sent["data"]
    assert b"text-match" not in sent["data"]


def test_uid_filter_adds_text_match() -> None:
    repo = _repository(FakeResponse(207, b'<d:multistatus xmlns:d="DAV:"/>'))
    assert asyncio.run(repo.fetch_calendar_objects(CALENDAR, uid_filter("abc-123"))) == []
    body = repo.session.requests[0]["data"]
    assert b'name="UID"' in body
    assert b">abc-123<" in body


def test_create_uses_if_none_match() -> None:
    repo = _repository(FakeResponse(201))
    asyncio.run(repo.create_calendar_object(CALENDAR, "new uid.ics", "BEGIN:VCALENDAR\r\n"))
    sent = repo.session.requests[0]
    assert sent["method"] == "PUT"
    assert sent["url"] == "https://dav.example.com/calendars/alice/tasks/new%20uid.ics"
    assert sent["headers"]["If-None-Match"] == "*"
    assert sent["headers"]["Content-Type"].startswith("text/calendar")


def test_update_sends_etag_and_maps_conflict() -> None:
    obj = CalendarObject(url=CALENDAR.url + "a.ics", data="BEGIN:VCALENDAR\r\n", etag='"etag-a"')
    repo = _repository(FakeResponse(204), FakeResponse(412))

    asyncio.run(repo.update_calendar_object(obj))
    assert repo.session.requests[0]["headers"]["If-Match"] == '"etag-a"'

    with pytest.raises(ConflictError) as excinfo:
        asyncio.run(repo.update_calendar_object(obj))
    assert excinfo.value.error_code is ErrorCode.CALDAV_CONFLICT


def test_delete_treats_missing_object_as_deleted() -> None:
    obj = CalendarObject(url=CALENDAR.url + "a.ics", data="")
    repo = _repository(FakeResponse(404))
    asyncio.run(repo.delete_calendar_object(obj))
    assert repo.session.requests[0]["method"] == "DELETE"
    assert "If-Match" not in repo.session.requests[0]["headers"]


def test_rejected_credentials_raise_authentication_error() -> None:
    repo = _repository(FakeResponse(401))
    with pytest.raises(AuthenticationError):
        asyncio.run(repo.fetch_calendars())


def test_connection_failure_and_bad_status() -> None:
    repo = _repository(requests.ConnectionError("refused"))
    with pytest.raises(CalDAVAPIError) as excinfo:
        asyncio.run(repo.fetch_calendar_objects(CALENDAR, VTODO_WITH_STATUS))
    assert excinfo.value.error_code is ErrorCode.CALDAV_CONNECTION_ERROR

    repo = _repository(FakeResponse(500))
    with pytest.raises(CalDAVAPIError) as excinfo:
        asyncio.run(repo.fetch_calendar_objects(CALENDAR, VTODO_WITH_STATUS))
    assert excinfo.value.details["status"] == 500


def test_invalid_xml_raises_api_error() -> None:
    repo = _repository(FakeResponse(207, b"<not xml"))
    with pytest.raises(CalDAVAPIError):
        asyncio.run(repo.fetch_calendar_objects(CALENDAR, VTODO_WITH_STATUS))


def test_endpoint_is_required() -> None:
    with pytest.raises(ValueError):
        CalDAVRepository("", "alice", "secret", session=FakeHTTPSession([]))
