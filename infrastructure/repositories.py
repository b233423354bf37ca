"""CalDAV transport implementation over HTTP."""

import logging
import re
from typing import Dict, List, Optional, Sequence, Tuple
from urllib.parse import quote, urljoin
from xml.etree.ElementTree import Element, SubElement, tostring, register_namespace
import xml.etree.ElementTree as ET

import requests

from domain import Calendar, CalendarObject, CalDAVTransport, ObjectFilter
from monitoring import AuthenticationError, CalDAVAPIError, ConflictError, ErrorCode


# CalDAV namespace constants
DAV_NS = 'DAV:'
CALDAV_NS = 'urn:ietf:params:xml:ns:caldav'
CALSERVER_NS = 'http://calendarserver.org/ns/'

register_namespace('D', DAV_NS)
register_namespace('C', CALDAV_NS)
register_namespace('CS', CALSERVER_NS)

XML_CONTENT_TYPE = 'application/xml; charset=utf-8'
ICS_CONTENT_TYPE = 'text/calendar; charset=utf-8'

_NEWLINE_RE = re.compile(r'\r?\n')

PropMap = Dict[str, Element]


def _tag(namespace: str, name: str) -> str:
    return f'{{{namespace}}}{name}'


def _xml_body(root: Element) -> bytes:
    return b'<?xml version="1.0" encoding="utf-8"?>\n' + tostring(root, encoding='utf-8', xml_declaration=False)


def _propfind_body(props: Sequence[Tuple[str, str]]) -> bytes:
    root = Element(_tag(DAV_NS, 'propfind'))
    prop = SubElement(root, _tag(DAV_NS, 'prop'))
    for namespace, name in props:
        SubElement(prop, _tag(namespace, name))
    return _xml_body(root)


def _calendar_query_body(object_filter: ObjectFilter) -> bytes:
    """Build a calendar-query REPORT asking for etags and calendar data."""
    root = Element(_tag(CALDAV_NS, 'calendar-query'))
    prop = SubElement(root, _tag(DAV_NS, 'prop'))
    SubElement(prop, _tag(DAV_NS, 'getetag'))
    SubElement(prop, _tag(CALDAV_NS, 'calendar-data'))

    filter_elem = SubElement(root, _tag(CALDAV_NS, 'filter'))
    calendar_filter = SubElement(filter_elem, _tag(CALDAV_NS, 'comp-filter'))
    calendar_filter.set('name', 'VCALENDAR')
    component_filter = SubElement(calendar_filter, _tag(CALDAV_NS, 'comp-filter'))
    component_filter.set('name', object_filter.component)

    if object_filter.prop_name:
        prop_filter = SubElement(component_filter, _tag(CALDAV_NS, 'prop-filter'))
        prop_filter.set('name', object_filter.prop_name)
        if object_filter.text_match is not None:
            text_match = SubElement(prop_filter, _tag(CALDAV_NS, 'text-match'))
            text_match.set('collation', 'i;octet')
            text_match.text = object_filter.text_match

    return _xml_body(root)


def _href_in(props: PropMap, namespace: str, name: str) -> Optional[str]:
    elem = props.get(_tag(namespace, name))
    if elem is None:
        return None
    href = elem.findtext(_tag(DAV_NS, 'href'))
    return href.strip() if href else None


def _text_in(props: PropMap, namespace: str, name: str) -> Optional[str]:
    elem = props.get(_tag(namespace, name))
    if elem is None or elem.text is None:
        return None
    return elem.text.strip() or None


class CalDAVRepository(CalDAVTransport):
    """CalDAV implementation of CalDAVTransport using requests."""

    def __init__(
        self,
        endpoint: str,
        username: str,
        password: str,
        timeout: int = 30,
        session: Optional[requests.Session] = None
    ):
        if not endpoint:
            raise ValueError("CalDAV endpoint is required")
        self.endpoint = endpoint if endpoint.endswith('/') else endpoint + '/'
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.auth = (username, password)
        self.session.headers.update({
            'User-Agent': 'caldav-tasks/1.0',
            'Accept': 'application/xml, text/xml, text/calendar, */*'
        })
        self.logger = logging.getLogger(__name__)
        self._calendar_home: Optional[str] = None

    def _request(
        self,
        method: str,
        url: str,
        body: Optional[bytes] = None,
        headers: Optional[Dict[str, str]] = None,
        expected: Tuple[int, ...] = (200, 201, 204, 207)
    ) -> requests.Response:
        """Send one request and map failures to application errors."""
        self.logger.debug(f"{method} {url}")
        try:
            response = self.session.request(
                method, url, data=body, headers=headers or {}, timeout=self.timeout
            )
        except requests.RequestException as e:
            raise CalDAVAPIError(
                f"{method} {url} failed: {e}",
                ErrorCode.CALDAV_CONNECTION_ERROR,
                details={'url': url},
                cause=e
            )

        if response.status_code in (401, 403):
            raise AuthenticationError(
                f"CalDAV server rejected credentials ({response.status_code})",
                details={'url': url}
            )
        if response.status_code == 412:
            raise ConflictError(
                f"{url} was modified on the server",
                details={'url': url}
            )
        if response.status_code not in expected:
            raise CalDAVAPIError(
                f"{method} {url} returned HTTP {response.status_code}",
                details={'url': url, 'status': response.status_code}
            )
        return response

    def _multistatus(self, content: bytes, base_url: str) -> List[Tuple[str, PropMap]]:
        """Parse a 207 body into (absolute href, successful properties) pairs."""
        try:
            root = ET.fromstring(content)
        except ET.ParseError as e:
            raise CalDAVAPIError(
                "Invalid multistatus response",
                details={'url': base_url},
                cause=e
            )

        results = []
        for response in root.findall(_tag(DAV_NS, 'response')):
            href = (response.findtext(_tag(DAV_NS, 'href')) or '').strip()
            props: PropMap = {}
            for propstat in response.findall(_tag(DAV_NS, 'propstat')):
                status = propstat.findtext(_tag(DAV_NS, 'status')) or ''
                if ' 200' not in status:
                    continue
                prop = propstat.find(_tag(DAV_NS, 'prop'))
                if prop is None:
                    continue
                for child in prop:
                    props[child.tag] = child
            results.append((urljoin(base_url, href), props))
        return results

    def _propfind(self, url: str, props: Sequence[Tuple[str, str]], depth: str = '0') -> List[Tuple[str, PropMap]]:
        response = self._request(
            'PROPFIND', url, _propfind_body(props),
            {'Depth': depth, 'Content-Type': XML_CONTENT_TYPE}
        )
        return self._multistatus(response.content, url)

    def _discover_calendar_home(self) -> str:
        """Resolve the calendar home through the current user principal."""
        if self._calendar_home:
            return self._calendar_home

        principal_url = self.endpoint
        for _, props in self._propfind(self.endpoint, [(DAV_NS, 'current-user-principal')]):
            href = _href_in(props, DAV_NS, 'current-user-principal')
            if href:
                principal_url = urljoin(self.endpoint, href)
                break

        home_url = principal_url
        for _, props in self._propfind(principal_url, [(CALDAV_NS, 'calendar-home-set')]):
            href = _href_in(props, CALDAV_NS, 'calendar-home-set')
            if href:
                home_url = urljoin(principal_url, href)
                break

        self.logger.info(f"Using calendar home {home_url}")
        self._calendar_home = home_url
        return home_url

    async def fetch_calendars(self) -> List[Calendar]:
        """List the calendar collections that can hold VTODO components."""
        home_url = self._discover_calendar_home()
        results = self._propfind(
            home_url,
            [
                (DAV_NS, 'resourcetype'),
                (DAV_NS, 'displayname'),
                (CALSERVER_NS, 'getctag'),
                (CALDAV_NS, 'calendar-description'),
                (CALDAV_NS, 'calendar-timezone'),
                (CALDAV_NS, 'supported-calendar-component-set'),
            ],
            depth='1'
        )

        calendars = []
        for url, props in results:
            resourcetype = props.get(_tag(DAV_NS, 'resourcetype'))
            if resourcetype is None or resourcetype.find(_tag(CALDAV_NS, 'calendar')) is None:
                continue

            component_set = props.get(_tag(CALDAV_NS, 'supported-calendar-component-set'))
            if component_set is not None:
                components = {
                    comp.get('name', '').upper()
                    for comp in component_set.findall(_tag(CALDAV_NS, 'comp'))
                }
                if components and 'VTODO' not in components:
                    continue

            calendars.append(Calendar(
                url=url,
                display_name=_text_in(props, DAV_NS, 'displayname'),
                ctag=_text_in(props, CALSERVER_NS, 'getctag'),
                description=_text_in(props, CALDAV_NS, 'calendar-description'),
                timezone=_text_in(props, CALDAV_NS, 'calendar-timezone')
            ))

        self.logger.info(f"Fetched {len(calendars)} task calendars")
        return calendars

    async def fetch_calendar_objects(self, calendar: Calendar, object_filter: ObjectFilter) -> List[CalendarObject]:
        response = self._request(
            'REPORT', calendar.url, _calendar_query_body(object_filter),
            {'Depth': '1', 'Content-Type': XML_CONTENT_TYPE}
        )

        objects = []
        for url, props in self._multistatus(response.content, calendar.url):
            data = props.get(_tag(CALDAV_NS, 'calendar-data'))
            if data is None or not data.text:
                continue
            # XML parsing folds CRLF into LF; restore the iCalendar line endings
            objects.append(CalendarObject(
                url=url,
                data=_NEWLINE_RE.sub('\r\n', data.text),
                etag=_text_in(props, DAV_NS, 'getetag')
            ))

        self.logger.debug(f"Fetched {len(objects)} objects from {calendar.url}")
        return objects

    async def create_calendar_object(self, calendar: Calendar, filename: str, ics_text: str) -> None:
        base = calendar.url if calendar.url.endswith('/') else calendar.url + '/'
        url = urljoin(base, quote(filename))
        self._request(
            'PUT', url, ics_text.encode('utf-8'),
            {'Content-Type': ICS_CONTENT_TYPE, 'If-None-Match': '*'}
        )
        self.logger.info(f"Created calendar object {url}")

    async def update_calendar_object(self, calendar_object: CalendarObject) -> None:
        headers = {'Content-Type': ICS_CONTENT_TYPE}
        if calendar_object.etag:
            headers['If-Match'] = calendar_object.etag
        self._request('PUT', calendar_object.url, calendar_object.data.encode('utf-8'), headers)
        self.logger.info(f"Updated calendar object {calendar_object.url}")

    async def delete_calendar_object(self, calendar_object: CalendarObject) -> None:
        headers = {}
        if calendar_object.etag:
            headers['If-Match'] = calendar_object.etag
        # Already gone counts as deleted
        self._request('DELETE', calendar_object.url, headers=headers, expected=(200, 204, 404))
        self.logger.info(f"Deleted calendar object {calendar_object.url}")
