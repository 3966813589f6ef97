"""
GitLab ingestion client: pulls users, events, projects and commits from the REST API (v4).
Pagination is capped at max_pages per call; anything beyond that is silently truncated.
"""
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import date, datetime, timedelta
from typing import List, Dict, Any, Optional, Callable, TypeVar

from normalize.models import User, Event, Commit, Project, UserActivity
from normalize.util import normalize_user, normalize_event, normalize_commit, normalize_project, parse_timestamp, to_utc_iso
from scoring.metrics import aggregate_by_user
from storage.cache import rate_limited_get, Cache
from .exceptions import GitLabAPIError, GitLabAuthError, ConfigurationError

logger = logging.getLogger(__name__)

MAX_PAGES = 100
PER_PAGE = 100
DEFAULT_MAX_WORKERS = 4

T = TypeVar('T')


def _day_param(value, shift_days: int = 0) -> Optional[str]:
    """Calendar date of value moved by shift_days, as YYYY-MM-DD.

    GitLab's events after/before filters exclude the named day, so callers shift by one
    day outwards to keep both ends of the range.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        day = value.date()
    elif isinstance(value, date):
        day = value
    else:
        parsed = parse_timestamp(value)
        if parsed is None:
            raise ValueError(f"Invalid date: {value!r}")
        day = parsed.date()
    return (day + timedelta(days=shift_days)).isoformat()


def _normalize_all(normalize: Callable[[Dict[str, Any]], T], raw: List[Any], resource: str) -> List[T]:
    """Apply a normalizer to every item; a malformed upstream item is a GitLab failure, not a caller error."""
    try:
        return [normalize(item) for item in raw]
    except (ValueError, TypeError, AttributeError) as ex:
        raise GitLabAPIError(f"Malformed payload from {resource}: {ex}", status=200, body=raw)


class GitLabClient:
    """Client for the GitLab REST API, scoped to a group, a single project, or the whole instance."""

    def __init__(
        self,
        base_url: str,
        token: str,
        group_id: Optional[str] = None,
        project_id: Optional[str] = None,
        cache: Optional[Cache] = None,
        max_pages: int = MAX_PAGES,
        per_page: int = PER_PAGE,
        max_workers: int = DEFAULT_MAX_WORKERS,
        cache_max_age: Optional[float] = None,
    ):
        if not base_url or not token:
            raise ConfigurationError('GitLab base URL and token are required')
        self.base_url = base_url.rstrip('/')
        self.api_url = f"{self.base_url}/api/v4"
        self.token = token
        self.group_id = group_id or None
        self.project_id = project_id or None
        self.cache = cache
        self.max_pages = int(max_pages)
        self.per_page = int(per_page)
        self.max_workers = max(1, int(max_workers))
        self.cache_max_age = cache_max_age
        self.headers = {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/json",
        }

    def _cache_key(self, resource: str, params: Dict[str, Any]) -> Optional[str]:
        if self.cache is None:
            return None
        flat = ','.join(f"{k}={params[k]}" for k in sorted(params))
        return f"gitlab:{self.base_url}:{resource}?{flat}"

    def fetch_page(self, resource: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """GET one API resource (e.g. '/users') and return the decoded JSON body.

        Raises GitLabAuthError on 401/403 and GitLabAPIError on any other non-200 outcome.
        """
        params = dict(params or {})
        url = f"{self.api_url}{resource}"
        res = rate_limited_get(url, headers=self.headers, params=params, cache=self.cache, cache_key=self._cache_key(resource, params), max_age=self.cache_max_age)
        status = res.get('status', 0)
        body = res.get('response')
        if status == 200:
            return body
        if status in (401, 403):
            raise GitLabAuthError(f"GitLab rejected credentials for {resource} (HTTP {status})", status=status, url=url, body=body)
        if status == 0:
            raise GitLabAPIError(f"GitLab request to {resource} failed: {body}", status=0, url=url, body=body)
        raise GitLabAPIError(f"GitLab request to {resource} returned HTTP {status}", status=status, url=url, body=body)

    def fetch_all(self, resource: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """Follow page/per_page pagination until a short page or the max_pages cap."""
        items: List[Dict[str, Any]] = []
        page = 1
        while page <= self.max_pages:
            page_params = dict(params or {})
            page_params.update({'page': page, 'per_page': self.per_page})
            data = self.fetch_page(resource, page_params)
            if not isinstance(data, list):
                raise GitLabAPIError(f"Expected a list from {resource}, got {type(data).__name__}", status=200, body=data)
            items.extend(data)
            if len(data) < self.per_page:
                return items
            page += 1
        logger.warning("stopped paging %s after %d pages; results may be incomplete", resource, self.max_pages)
        return items

    def get_active_users(self) -> List[User]:
        """Active members of the configured group, or all active users (needs admin) otherwise."""
        resource = f"/groups/{self.group_id}/members" if self.group_id else '/users'
        raw = self.fetch_all(resource, {'state': 'active'})
        users = [u for u in _normalize_all(normalize_user, raw, resource) if u.state == 'active']
        logger.info("fetched %d active users from %s", len(users), resource)
        return users

    def get_user_events(self, user_id: int, since=None, until=None) -> List[Event]:
        params: Dict[str, Any] = {}
        if since is not None:
            params['after'] = _day_param(since, -1)
        if until is not None:
            params['before'] = _day_param(until, 1)
        resource = f"/users/{user_id}/events"
        return _normalize_all(normalize_event, self.fetch_all(resource, params), resource)

    def get_projects(self) -> List[Project]:
        if self.project_id and not self.group_id:
            resource = f"/projects/{self.project_id}"
            return _normalize_all(normalize_project, [self.fetch_page(resource)], resource)
        if self.group_id:
            resource = f"/groups/{self.group_id}/projects"
            raw = self.fetch_all(resource)
        else:
            resource = '/projects'
            raw = self.fetch_all(resource, {'membership': 'true'})
        return _normalize_all(normalize_project, raw, resource)

    def get_project_commits(self, project_id: int, since=None, until=None) -> List[Commit]:
        params: Dict[str, Any] = {'with_stats': 'true'}
        if since is not None:
            params['since'] = to_utc_iso(since)
        if until is not None:
            params['until'] = to_utc_iso(until)
        resource = f"/projects/{project_id}/repository/commits"
        return _normalize_all(lambda c: normalize_commit(c, project_id), self.fetch_all(resource, params), resource)

    def fetch_events_for_users(
        self,
        users: List[User],
        since=None,
        until=None,
        on_batch: Optional[Callable[[User, List[Event]], None]] = None,
    ) -> Dict[int, List[Event]]:
        """Fetch every user's events on a bounded thread pool.

        on_batch is called in the calling thread as each user's events arrive. The first
        failure cancels outstanding fetches and is re-raised; batches already handed to
        on_batch stay where they are.
        """
        results: Dict[int, List[Event]] = {}
        if not users:
            return results
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(users))) as ex:
            futures = {ex.submit(self.get_user_events, u.id, since, until): u for u in users}
            try:
                for fut in as_completed(futures):
                    user = futures[fut]
                    events = fut.result()
                    results[user.id] = events
                    if on_batch is not None:
                        on_batch(user, events)
            except Exception:
                for f in futures:
                    f.cancel()
                raise
        return results

    def collect_user_activities(self, users: List[User], since=None, until=None) -> List[UserActivity]:
        """Fetch events for users and roll them up into UserActivity objects (users order kept)."""
        by_user = self.fetch_events_for_users(users, since, until)
        events = [e for u in users for e in by_user.get(u.id, [])]
        return aggregate_by_user(events, users)
