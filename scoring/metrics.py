"""
Dashboard statistics aggregation.
Turns a flat list of normalized Event objects plus the known users into DashboardStats.
"""
import logging
from collections import defaultdict
from typing import List, Dict, Optional
from normalize.models import Event, User, UserActivity, DashboardStats, ContributorEntry, ProjectEntry
from normalize.util import parse_timestamp, utc_date_key
from .classify import is_push_event, commit_count_of, project_label_of
from .utils import count_workdays, average_per_workday, rank_top, sunday_first_weekday
from .utils import DEFAULT_TOP_N, HOURS_PER_DAY, DAYS_PER_WEEK

logger = logging.getLogger(__name__)


class BucketResult:
    """
    Commit counts accumulated over push-like events.
    """
    def __init__(self):
        self.by_day: Dict[str, int] = {}
        self.by_hour: List[int] = [0] * HOURS_PER_DAY
        self.by_day_of_week: List[int] = [0] * DAYS_PER_WEEK
        self.by_project: Dict[str, int] = {}
        self.by_user: Dict[int, int] = {}
        self.total_commits = 0


def _group_by_author(events: List[Event]) -> Dict[int, List[Event]]:
    grouped: Dict[int, List[Event]] = defaultdict(list)
    for e in events:
        grouped[e.author_id].append(e)
    return grouped


def aggregate_by_user(events: List[Event], users: List[User]) -> List[UserActivity]:
    """
    Build one UserActivity per user, in the order of users.
    Users without events are included with zero commits.
    """
    grouped = _group_by_author(events or [])
    activities: List[UserActivity] = []
    for user in users or []:
        user_events = grouped.get(user.id, [])
        total = sum(commit_count_of(e) for e in user_events if is_push_event(e))
        activities.append(UserActivity(user=user, events=list(user_events), total_commits=total))
    return activities


def _add_to_time_buckets(result: BucketResult, e: Event, commits: int):
    day = utc_date_key(e.created_at)
    result.by_day[day] = result.by_day.get(day, 0) + commits
    dt = parse_timestamp(e.created_at)
    if dt is None:
        logger.debug("event %s has unparseable created_at %r; skipped hour/weekday buckets", e.id, e.created_at)
        return
    # day key above is UTC; hour and weekday are read in the server's local zone
    local = dt.astimezone()
    result.by_hour[local.hour] += commits
    result.by_day_of_week[sunday_first_weekday(local.weekday())] += commits


def bucket_events(events: List[Event]) -> BucketResult:
    """
    Accumulate commit counts of push-like events into day, hour, weekday, project and user buckets.
    """
    result = BucketResult()
    for e in events or []:
        if not is_push_event(e):
            continue
        commits = commit_count_of(e)
        _add_to_time_buckets(result, e, commits)
        label = project_label_of(e)
        if label is not None:
            result.by_project[label] = result.by_project.get(label, 0) + commits
        result.by_user[e.author_id] = result.by_user.get(e.author_id, 0) + commits
        result.total_commits += commits
    return result


def _has_push_activity(activity: UserActivity) -> bool:
    return any(is_push_event(e) for e in activity.events)


def build_stats(user_activities: List[UserActivity], bucket_result: BucketResult, workdays: int, top_n: int = DEFAULT_TOP_N) -> DashboardStats:
    """
    Merge per-user activities and bucket counts into the final DashboardStats.

    Only users with at least one push-like event are ranked as contributors.
    """
    contributors = [ContributorEntry(a.user, a.total_commits) for a in user_activities if _has_push_activity(a)]
    projects = [ProjectEntry(label, commits) for label, commits in bucket_result.by_project.items()]

    return DashboardStats(
        total_users=len(user_activities),
        total_commits=bucket_result.total_commits,
        avg_commits_per_workday=average_per_workday(bucket_result.total_commits, workdays),
        commits_by_day=dict(bucket_result.by_day),
        commits_by_hour=list(bucket_result.by_hour),
        commits_by_day_of_week=list(bucket_result.by_day_of_week),
        top_contributors=rank_top(contributors, key=lambda c: c.commits, top_n=top_n),
        project_breakdown=rank_top(projects, key=lambda p: p.commits, top_n=top_n),
        total_additions=0,
        total_deletions=0,
    )


def compute_dashboard_stats(events: List[Event], users: List[User], since, until, top_n: Optional[int] = None) -> DashboardStats:
    """
    Compute DashboardStats for events already filtered to the [since, until] range.
    """
    activities = aggregate_by_user(events, users)
    buckets = bucket_events(events)
    workdays = count_workdays(since, until)
    logger.debug("aggregated %d events for %d users over %d workdays", len(events or []), len(users or []), workdays)
    return build_stats(activities, buckets, workdays, top_n=top_n or DEFAULT_TOP_N)
