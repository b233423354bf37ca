"""VTODO codec: parse, create and patch iCalendar task components.

Parsing never raises. Unknown properties are ignored and malformed values
fall back to the field default, because calendar data comes from servers and
clients we do not control.

Patching edits the stored text line by line instead of re-serializing it, so
properties added by other clients survive an update untouched.
"""

import logging
import re
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from icalendar import Calendar as ICalendar
from icalendar import Todo, vRecur

from .entities import (
    UNSET, DateValue, Recurrence, Task, TaskDraft, TaskPatch, TaskPriority,
    TaskStatus, local_day, priority_to_value, recurrence_to_rule
)


logger = logging.getLogger(__name__)

PRODUCT_ID = '-//CalDAV Tasks//caldav_tasks//EN'

_UNFOLD_RE = re.compile(r'\r?\n[ \t]')
_LINE_RE = re.compile(r'\r?\n')
_ESCAPED_CHAR_RE = re.compile(r'\\([\\;,nN])')


# Text escaping

def escape_text(text: str) -> str:
    """Escape a TEXT value. Backslashes go first so later escapes are not doubled."""
    return (
        text.replace('\\', '\\\\')
        .replace(',', '\\,')
        .replace(';', '\\;')
        .replace('\r\n', '\\n')
        .replace('\n', '\\n')
    )


def unescape_text(text: str) -> str:
    """Undo TEXT escaping in a single pass, so ``\\\\n`` stays a backslash and an n."""
    def _replace(match: 're.Match[str]') -> str:
        char = match.group(1)
        return '\n' if char in 'nN' else char

    return _ESCAPED_CHAR_RE.sub(_replace, text)


def _split_list(value: str) -> List[str]:
    """Split a comma separated list on the commas that are not escaped."""
    items: List[str] = []
    current: List[str] = []
    escaped = False
    for char in value:
        if escaped:
            current.append('\\' + char)
            escaped = False
        elif char == '\\':
            escaped = True
        elif char == ',':
            items.append(''.join(current))
            current = []
        else:
            current.append(char)
    if escaped:
        current.append('\\')
    items.append(''.join(current))
    return items


# Date formatting

def format_utc_timestamp(value: datetime) -> str:
    """Format a datetime as a UTC DATE-TIME (``YYYYMMDDTHHMMSSZ``)."""
    return value.astimezone(timezone.utc).strftime('%Y%m%dT%H%M%SZ')


def format_date(value: DateValue) -> str:
    """Format the local calendar day of a value as a DATE (``YYYYMMDD``)."""
    day = local_day(value)
    return f'{day.year:04d}{day.month:02d}{day.day:02d}'


def _utc_now(now: Optional[datetime]) -> datetime:
    return (now or datetime.now(timezone.utc)).astimezone(timezone.utc).replace(microsecond=0)


# Parsing

def _parse_parameters(parts: List[str]) -> Dict[str, str]:
    parameters: Dict[str, str] = {}
    for part in parts:
        name, sep, value = part.partition('=')
        if sep and name:
            parameters[name.upper()] = value.strip('"')
    return parameters


def _parse_date_value(value: str, parameters: Dict[str, str]) -> Optional[DateValue]:
    value = value.strip()
    try:
        if parameters.get('VALUE', '').upper() == 'DATE' and len(value) == 8:
            return date(int(value[0:4]), int(value[4:6]), int(value[6:8]))

        if len(value) >= 15 and value[8] in 'Tt':
            parsed = datetime(
                int(value[0:4]), int(value[4:6]), int(value[6:8]),
                int(value[9:11]), int(value[11:13]), int(value[13:15])
            )
            if value.endswith(('Z', 'z')):
                return parsed.replace(tzinfo=timezone.utc)
            return parsed
    except ValueError:
        logger.debug(f"Ignoring malformed date value: {value!r}")
    return None


def _parse_int(value: str, low: Optional[int] = None, high: Optional[int] = None) -> Optional[int]:
    try:
        number = int(value.strip())
    except ValueError:
        return None
    if low is not None and number < low:
        return None
    if high is not None and number > high:
        return None
    return number


def _parse_status(value: str) -> Optional[TaskStatus]:
    try:
        return TaskStatus(value.strip())
    except ValueError:
        return None


def _parse_categories(value: str) -> Tuple[str, ...]:
    return tuple(unescape_text(item.strip()) for item in _split_list(value))


_ValueParser = Callable[[str, Dict[str, str]], Any]

_PROPERTY_PARSERS: Dict[str, Tuple[str, _ValueParser]] = {
    'SUMMARY': ('summary', lambda v, p: unescape_text(v)),
    'DESCRIPTION': ('description', lambda v, p: unescape_text(v)),
    'LOCATION': ('location', lambda v, p: unescape_text(v)),
    'URL': ('url', lambda v, p: v),
    'UID': ('uid', lambda v, p: v),
    'DTSTART': ('start_date', _parse_date_value),
    'DUE': ('due_date', _parse_date_value),
    'COMPLETED': ('completed_date', _parse_date_value),
    'CREATED': ('created', _parse_date_value),
    'LAST-MODIFIED': ('last_modified', _parse_date_value),
    'RRULE': ('recurrence', lambda v, p: v),
    'STATUS': ('status', lambda v, p: _parse_status(v)),
    'PRIORITY': ('priority', lambda v, p: _parse_int(v, 0, 9)),
    'PERCENT-COMPLETE': ('percent_complete', lambda v, p: _parse_int(v, 0, 100)),
    'SEQUENCE': ('sequence', lambda v, p: _parse_int(v)),
    'CATEGORIES': ('categories', lambda v, p: _parse_categories(v)),
}


def _content_lines(text: str) -> List[str]:
    return _LINE_RE.split(_UNFOLD_RE.sub('', text))


def parse_vtodo(text: str) -> Task:
    """Parse the first VTODO found in ``text`` into a Task.

    ``text`` may be a whole VCALENDAR or a bare VTODO block. Without a
    ``BEGIN:VTODO`` line the result is an empty task with default status.
    """
    fields: Dict[str, Any] = {'uid': '', 'summary': ''}
    in_todo = False
    depth = 0

    for line in _content_lines(text or ''):
        marker = line.rstrip().upper()
        if not in_todo:
            in_todo = marker == 'BEGIN:VTODO'
            continue

        # Properties of nested components (VALARM) belong to them, not the task
        if marker.startswith('BEGIN:'):
            depth += 1
            continue
        if marker.startswith('END:'):
            if depth == 0:
                break
            depth -= 1
            continue
        if depth or ':' not in line:
            continue

        head, _, value = line.partition(':')
        name, *param_parts = head.split(';')
        handler = _PROPERTY_PARSERS.get(name.strip().upper())
        if handler is None:
            continue

        field_name, parser = handler
        parsed = parser(value, _parse_parameters(param_parts))
        if parsed is not None:
            fields[field_name] = parsed

    return Task(**fields)


# Creation

def generate_uid() -> str:
    return str(uuid.uuid4())


def create_vtodo(
    draft: TaskDraft,
    uid: Optional[str] = None,
    now: Optional[datetime] = None,
    product_id: str = PRODUCT_ID,
) -> str:
    """Build a complete VCALENDAR document holding one new VTODO."""
    stamp = _utc_now(now)

    cal = ICalendar()
    cal.add('version', '2.0')
    cal.add('prodid', product_id)

    todo = Todo()
    todo.add('uid', uid or generate_uid())
    todo.add('dtstamp', stamp)
    todo.add('created', stamp)
    todo.add('last-modified', stamp)
    todo.add('summary', draft.summary)
    todo.add('status', TaskStatus.NEEDS_ACTION.value)

    if draft.description:
        todo.add('description', draft.description)

    if draft.due_date is not None:
        todo.add('due', local_day(draft.due_date), parameters={'VALUE': 'DATE'})

    priority = priority_to_value(draft.priority)
    if priority:
        todo.add('priority', priority)

    rule = recurrence_to_rule(draft.recurrence)
    if rule:
        todo.add('rrule', vRecur.from_ical(rule))

    cal.add_component(todo)
    # Insertion order is the wire order the patch anchors rely on
    return cal.to_ical(sorted=False).decode('utf-8')


# Patching

_BEFORE_END = object()

_Renderer = Callable[[TaskPatch, str], Any]


@dataclass(frozen=True)
class _PatchRule:
    """One updatable property: where a new line goes and how it is written.

    ``render`` returns ``UNSET`` to leave the property alone, None to delete
    its line, or the complete replacement content line.
    """

    tag: str
    anchors: Tuple[Any, ...]
    render: _Renderer


def _render_text(tag: str, attr: str) -> _Renderer:
    def render(patch: TaskPatch, timestamp: str) -> Any:
        value = getattr(patch, attr)
        if value is UNSET:
            return UNSET
        return f'{tag}:{escape_text(value)}' if value else None
    return render


def _render_due(patch: TaskPatch, timestamp: str) -> Any:
    if patch.due_date is UNSET:
        return UNSET
    if patch.due_date is None:
        return None
    return f'DUE;VALUE=DATE:{format_date(patch.due_date)}'


def _render_priority(patch: TaskPatch, timestamp: str) -> Any:
    if patch.priority is UNSET:
        return UNSET
    value = priority_to_value(patch.priority or TaskPriority.NONE)
    return f'PRIORITY:{value}' if value else None


def _render_rrule(patch: TaskPatch, timestamp: str) -> Any:
    if patch.recurrence is UNSET:
        return UNSET
    rule = recurrence_to_rule(patch.recurrence or Recurrence.NEVER)
    return f'RRULE:{rule}' if rule else None


def _render_status(patch: TaskPatch, timestamp: str) -> Any:
    if patch.status is UNSET:
        return UNSET
    status = patch.status
    return f'STATUS:{status.value}' if status else None


def _render_completed(patch: TaskPatch, timestamp: str) -> Any:
    if patch.status is UNSET:
        return UNSET
    if patch.status is TaskStatus.COMPLETED:
        return f'COMPLETED:{timestamp}'
    return None


def _render_last_modified(patch: TaskPatch, timestamp: str) -> Any:
    return f'LAST-MODIFIED:{timestamp}'


PATCH_RULES: Tuple[_PatchRule, ...] = (
    _PatchRule('SUMMARY', ('UID',), _render_text('SUMMARY', 'summary')),
    _PatchRule('DESCRIPTION', ('SUMMARY',), _render_text('DESCRIPTION', 'description')),
    _PatchRule('DUE', ('DESCRIPTION', 'SUMMARY'), _render_due),
    _PatchRule('PRIORITY', ('DUE', 'DESCRIPTION', 'SUMMARY'), _render_priority),
    _PatchRule('RRULE', (_BEFORE_END,), _render_rrule),
    _PatchRule('STATUS', ('UID',), _render_status),
    _PatchRule('COMPLETED', ('STATUS',), _render_completed),
    _PatchRule('LAST-MODIFIED', ('DTSTAMP',), _render_last_modified),
)


def _property_line(tag: str) -> 're.Pattern[str]':
    """Match a property line with its folded continuation lines."""
    return re.compile(
        rf'^{re.escape(tag)}[;:][^\r\n]*(?:\r?\n[ \t][^\r\n]*)*(?P<eol>\r?\n|$)',
        re.MULTILINE,
    )


def _split_todo(text: str) -> Tuple[str, str, str]:
    """Split text into (head, VTODO properties, tail).

    The tail starts at the first nested component (such as VALARM) or at
    END:VTODO, so edits never reach lines of another component.
    """
    begin = re.search(r'^BEGIN:VTODO[ \t]*(?:\r?\n|$)', text, re.MULTILINE)
    if not begin:
        return '', text, ''
    end = re.compile(r'^(?:BEGIN:|END:VTODO)', re.MULTILINE).search(text, begin.end())
    if not end:
        return text[:begin.end()], text[begin.end():], ''
    return text[:begin.end()], text[begin.end():end.start()], text[end.start():]


def _apply_rule(body: str, rule: _PatchRule, line: Any, newline: str) -> str:
    pattern = _property_line(rule.tag)
    existing = pattern.search(body)

    if line is None:
        if existing:
            body = body[:existing.start()] + body[existing.end():]
        return body

    if existing:
        eol = existing.group('eol') or ''
        return body[:existing.start()] + line + eol + body[existing.end():]

    for anchor in rule.anchors:
        if anchor is _BEFORE_END:
            if body and not body.endswith('\n'):
                body += newline
            return body + line + newline
        found = _property_line(anchor).search(body)
        if found:
            prefix = '' if found.group('eol') else newline
            insert = prefix + line + newline
            return body[:found.end()] + insert + body[found.end():]

    logger.debug(f"No anchor line for {rule.tag}; property not inserted")
    return body


def apply_patch(text: str, patch: TaskPatch, now: Optional[datetime] = None) -> str:
    """Apply field edits to stored ICS text and refresh LAST-MODIFIED.

    Each rule edits the first line carrying its tag inside the VTODO. Rules
    run in order, so later anchors see lines inserted by earlier rules.
    """
    newline = '\r\n' if '\r\n' in text else '\n'
    timestamp = format_utc_timestamp(_utc_now(now))
    head, body, tail = _split_todo(text)

    for rule in PATCH_RULES:
        line = rule.render(patch, timestamp)
        if line is UNSET:
            continue
        body = _apply_rule(body, rule, line, newline)

    return head + body + tail
