"""
Dashboard service: the operations behind the HTTP API and the CLI.
Wires an ActivityStore and a GitLabClient (both passed in) to the scoring core.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, Iterable, List, Tuple

from ingest.gitlab import GitLabClient
from normalize.models import User, Event, Project, DashboardStats
from normalize.util import parse_date_param
from scoring.metrics import compute_dashboard_stats
from storage.cache import Cache
from storage.store import ActivityStore

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_DAYS = 30


def build_client(settings: Dict[str, Dict[str, Any]], cache: Optional[Cache] = None, **overrides) -> GitLabClient:
    """Create a GitLabClient from settings; non-empty keyword overrides win (url, token, group_id, project_id)."""
    gl = dict(settings['gitlab'])
    for k, v in overrides.items():
        if v:
            gl[k] = v
    return GitLabClient(
        gl.get('url'),
        gl.get('token'),
        group_id=gl.get('group_id'),
        project_id=gl.get('project_id'),
        cache=cache,
        max_pages=gl.get('max_pages', 100),
        per_page=gl.get('per_page', 100),
        max_workers=gl.get('max_workers', 4),
        cache_max_age=settings['storage'].get('cache_ttl_seconds'),
    )


def resolve_window(since: Optional[str] = None, until: Optional[str] = None, window_days: int = DEFAULT_WINDOW_DAYS, now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """Turn optional since/until strings into a datetime range; defaults to the last window_days up to now."""
    now = now or datetime.now(timezone.utc)
    until_dt = parse_date_param(until, end_of_day=True) if until else now
    since_dt = parse_date_param(since) if since else now - timedelta(days=window_days)
    return since_dt, until_dt


def _optional_param(value: Optional[str], end_of_day: bool = False) -> Optional[datetime]:
    return parse_date_param(value, end_of_day=end_of_day) if value else None


class DashboardService:
    def __init__(self, store: ActivityStore, window_days: int = DEFAULT_WINDOW_DAYS, top_n: int = 10):
        self.store = store
        self.window_days = window_days
        self.top_n = top_n

    def sync(self, client: GitLabClient, since: Optional[str] = None, until: Optional[str] = None, include_projects: bool = True, include_commits: bool = False) -> Dict[str, Any]:
        """
        Pull users and their events (and optionally projects/commits) into the store.

        Any GitLab error aborts the sync and propagates; rows persisted before the
        failure are kept.
        """
        since_dt = _optional_param(since)
        until_dt = _optional_param(until, end_of_day=True)

        users = client.get_active_users()
        self.store.save_users(users)

        counts = {'events': 0}

        def _persist(user: User, events: List[Event]):
            counts['events'] += self.store.save_events(events)
            logger.info("synced %d events for %s", len(events), user.username)

        client.fetch_events_for_users(users, since_dt, until_dt, on_batch=_persist)

        projects: List[Project] = []
        if include_projects or include_commits:
            projects = client.get_projects()
            self.store.save_projects(projects)
        if include_commits:
            for p in projects:
                self.store.save_commits(client.get_project_commits(p.id, since_dt, until_dt))

        logger.info("sync finished: %d users, %d new events, %d projects; store totals %s", len(users), counts['events'], len(projects), self.store.counts())
        return {
            'success': True,
            'message': 'Data synced successfully',
            'usersCount': len(users),
            'eventsCount': counts['events'],
            'projectsCount': len(projects),
        }

    def list_users(self) -> List[User]:
        return self.store.get_users()

    def list_events(self, since: Optional[str] = None, until: Optional[str] = None, user_id: Optional[str] = None) -> List[Event]:
        uid = int(user_id) if user_id not in (None, '') else None
        return self.store.get_events(_optional_param(since), _optional_param(until, end_of_day=True), user_id=uid)

    def list_projects(self) -> List[Project]:
        return self.store.get_projects()

    def get_stats(self, since: Optional[str] = None, until: Optional[str] = None, now: Optional[datetime] = None, user_ids: Optional[Iterable[int]] = None) -> DashboardStats:
        """
        Dashboard statistics for [since, until].

        user_ids narrows both the user list and the events to the chosen users; None or an
        empty selection means everyone.
        """
        since_dt, until_dt = resolve_window(since, until, self.window_days, now=now)
        users = self.store.get_users()
        events = self.store.get_events(since_dt, until_dt)
        selected = set(user_ids or ())
        if selected:
            users = [u for u in users if u.id in selected]
            events = [e for e in events if e.author_id in selected]
        return compute_dashboard_stats(events, users, since_dt.date(), until_dt.date(), top_n=self.top_n)
