"""
Normalization utility helpers.
Turn raw GitLab API payloads (or stored rows) into normalize.models entities, and
handle the ISO-8601 timestamps those payloads carry.
"""
from datetime import datetime, timedelta, timezone
from typing import Dict, Any, Optional
from normalize.models import User, Event, PushData, Commit, Project

INVALID_DATE_KEY = 'invalid-date'


def _require_int(raw: Dict[str, Any], key: str, kind: str) -> int:
    value = raw.get(key) if isinstance(raw, dict) else None
    if value is None or isinstance(value, bool):
        raise ValueError(f"{kind} payload is missing integer '{key}': {raw!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{kind} payload has non-integer '{key}': {value!r}")


def _optional_int(value: Any) -> Optional[int]:
    if value is None or value == '':
        return None
    return int(value)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp into an aware datetime.

    Naive values are taken as UTC. Returns None when the value cannot be parsed.
    """
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith('Z') or text.endswith('z'):
            text = text[:-1] + '+00:00'
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def to_utc_iso(value: Any) -> str:
    """Return the canonical stored form YYYY-MM-DDTHH:MM:SS.mmmZ, or the input text when unparseable."""
    dt = parse_timestamp(value)
    if dt is None:
        return '' if value is None else str(value)
    dt = dt.astimezone(timezone.utc)
    return dt.strftime('%Y-%m-%dT%H:%M:%S.') + f"{dt.microsecond // 1000:03d}Z"


def utc_date_key(value: Any) -> str:
    """Calendar date of the timestamp in UTC, e.g. '2024-01-05'."""
    dt = parse_timestamp(value)
    if dt is None:
        return INVALID_DATE_KEY
    return dt.astimezone(timezone.utc).date().isoformat()


def parse_date_param(text: str, end_of_day: bool = False) -> datetime:
    """Parse a since/until query value.

    A bare date ('2024-01-31') means midnight UTC, or the last millisecond of that day
    when end_of_day is set. Raises ValueError for anything unparseable, including
    non-string values such as a number from a JSON body.
    """
    if text is not None and not isinstance(text, str):
        raise ValueError(f"Invalid date: {text!r} (expected a YYYY-MM-DD or ISO-8601 string)")
    raw = (text or '').strip()
    if len(raw) == 10:
        day = datetime.strptime(raw, '%Y-%m-%d').replace(tzinfo=timezone.utc)
        if end_of_day:
            return day + timedelta(days=1) - timedelta(milliseconds=1)
        return day
    dt = parse_timestamp(raw)
    if dt is None:
        raise ValueError(f"Invalid date: {text!r}")
    return dt


def normalize_user(raw: Dict[str, Any]) -> User:
    """Create a User from a GitLab /users or /groups/:id/members item."""
    return User(
        id=_require_int(raw, 'id', 'user'),
        username=raw.get('username') or '',
        name=raw.get('name') or raw.get('username') or '',
        state=raw.get('state') or '',
        avatar_url=raw.get('avatar_url') or '',
        web_url=raw.get('web_url') or '',
        email=raw.get('email') or raw.get('public_email') or None,
    )


def normalize_push_data(raw: Optional[Dict[str, Any]]) -> Optional[PushData]:
    if not isinstance(raw, dict):
        return None
    return PushData(
        commit_count=int(raw.get('commit_count') or 0),
        action=raw.get('action') or '',
        ref_type=raw.get('ref_type') or '',
        ref=raw.get('ref') or '',
        commit_from=raw.get('commit_from'),
        commit_to=raw.get('commit_to'),
    )


def normalize_event(raw: Dict[str, Any]) -> Event:
    """Create an Event from a GitLab /users/:id/events item.

    The author id falls back to the nested author object when author_id is absent.
    """
    author_id = raw.get('author_id')
    if author_id is None:
        author_id = (raw.get('author') or {}).get('id')
    return Event(
        id=_require_int(raw, 'id', 'event'),
        author_id=_require_int({'author_id': author_id}, 'author_id', 'event'),
        project_id=_optional_int(raw.get('project_id')),
        action_name=raw.get('action_name') or '',
        created_at=raw.get('created_at') or '',
        target_id=_optional_int(raw.get('target_id')),
        target_type=raw.get('target_type'),
        target_title=raw.get('target_title'),
        push_data=normalize_push_data(raw.get('push_data')),
    )


def _text(raw: Dict[str, Any], key: str) -> str:
    return raw.get(key) or ''


def _commit_stats(raw: Dict[str, Any]) -> Dict[str, int]:
    stats = raw.get('stats') or {}
    return {k: int(stats.get(k) or 0) for k in ('additions', 'deletions', 'total')}


def normalize_commit(raw: Dict[str, Any], project_id: Optional[int] = None) -> Commit:
    """Create a Commit from a GitLab repository/commits item (with_stats=true)."""
    sha = raw.get('id') if isinstance(raw, dict) else None
    if not sha:
        raise ValueError(f"commit payload is missing 'id': {raw!r}")
    if project_id is None:
        project_id = _optional_int(raw.get('project_id'))
    return Commit(
        id=str(sha),
        short_id=raw.get('short_id') or str(sha)[:8],
        title=_text(raw, 'title'),
        message=_text(raw, 'message'),
        author_name=_text(raw, 'author_name'),
        author_email=_text(raw, 'author_email'),
        authored_date=raw.get('authored_date'),
        committer_name=_text(raw, 'committer_name'),
        committer_email=_text(raw, 'committer_email'),
        committed_date=raw.get('committed_date'),
        web_url=_text(raw, 'web_url'),
        project_id=project_id,
        **_commit_stats(raw),
    )


def normalize_project(raw: Dict[str, Any]) -> Project:
    return Project(
        id=_require_int(raw, 'id', 'project'),
        name=raw.get('name') or '',
        name_with_namespace=raw.get('name_with_namespace') or '',
        path=raw.get('path') or '',
        path_with_namespace=raw.get('path_with_namespace') or '',
        web_url=raw.get('web_url') or '',
        avatar_url=raw.get('avatar_url'),
    )
