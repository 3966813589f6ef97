"""
Activity record models shared by ingestion, storage, scoring and reporting.
"""

from typing import List, Optional, Dict, Any


class User:
    """
    GitLab user. `name` is the display name, `web_url` the profile page.
    """
    def __init__(self, id: int, username: str, name: str, state: str = 'active', avatar_url: str = '', web_url: str = '', email: Optional[str] = None):
        self.id = id
        self.username = username
        self.name = name
        self.state = state
        self.avatar_url = avatar_url
        self.web_url = web_url
        self.email = email

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'username': self.username,
            'name': self.name,
            'state': self.state,
            'avatar_url': self.avatar_url,
            'web_url': self.web_url,
            'email': self.email,
        }

    def __eq__(self, other):
        return isinstance(other, User) and self.to_dict() == other.to_dict()

    def __repr__(self):
        return f"User(id={self.id!r}, username={self.username!r})"


class PushData:
    """
    Payload attached to 'pushed to' events.
    """
    def __init__(self, commit_count: int = 0, action: str = '', ref_type: str = '', ref: str = '', commit_from: Optional[str] = None, commit_to: Optional[str] = None):
        self.commit_count = commit_count
        self.action = action
        self.ref_type = ref_type
        self.ref = ref
        self.commit_from = commit_from
        self.commit_to = commit_to

    def to_dict(self) -> Dict[str, Any]:
        return {
            'commit_count': self.commit_count,
            'action': self.action,
            'ref_type': self.ref_type,
            'ref': self.ref,
            'commit_from': self.commit_from,
            'commit_to': self.commit_to,
        }


class Event:
    """
    A single user activity event. `created_at` keeps the ISO-8601 text as received or stored.
    """
    def __init__(self, id: int, author_id: int, project_id: Optional[int], action_name: str, created_at: str, target_id: Optional[int] = None, target_type: Optional[str] = None, target_title: Optional[str] = None, push_data: Optional[PushData] = None):
        self.id = id
        self.author_id = author_id
        self.project_id = project_id
        self.action_name = action_name
        self.created_at = created_at
        self.target_id = target_id
        self.target_type = target_type
        self.target_title = target_title
        self.push_data = push_data

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'author_id': self.author_id,
            'project_id': self.project_id,
            'action_name': self.action_name,
            'target_id': self.target_id,
            'target_type': self.target_type,
            'target_title': self.target_title,
            'created_at': self.created_at,
            'push_data': self.push_data.to_dict() if self.push_data else None,
        }

    def __repr__(self):
        return f"Event(id={self.id!r}, author_id={self.author_id!r}, action_name={self.action_name!r})"


class Commit:
    """
    Repository commit with line statistics.
    """
    def __init__(self, id: str, short_id: str, title: str, message: str, author_name: str, author_email: str, authored_date: Optional[str], committer_name: str, committer_email: str, committed_date: Optional[str], web_url: str, additions: int = 0, deletions: int = 0, total: int = 0, project_id: Optional[int] = None):
        self.id = id
        self.short_id = short_id
        self.title = title
        self.message = message
        self.author_name = author_name
        self.author_email = author_email
        self.authored_date = authored_date
        self.committer_name = committer_name
        self.committer_email = committer_email
        self.committed_date = committed_date
        self.web_url = web_url
        self.additions = additions
        self.deletions = deletions
        self.total = total
        self.project_id = project_id

    def to_dict(self) -> Dict[str, Any]:
        return dict(vars(self))


class Project:
    def __init__(self, id: int, name: str, name_with_namespace: str = '', path: str = '', path_with_namespace: str = '', web_url: str = '', avatar_url: Optional[str] = None):
        self.id = id
        self.name = name
        self.name_with_namespace = name_with_namespace
        self.path = path
        self.path_with_namespace = path_with_namespace
        self.web_url = web_url
        self.avatar_url = avatar_url

    def to_dict(self) -> Dict[str, Any]:
        return dict(vars(self))


class UserActivity:
    """
    Per-request roll-up of one user's events. Line totals stay 0 until commits are joined in.
    """
    def __init__(self, user: User, events: List[Event], total_commits: int = 0, total_additions: int = 0, total_deletions: int = 0):
        self.user = user
        self.events = events
        self.total_commits = total_commits
        self.total_additions = total_additions
        self.total_deletions = total_deletions


class ContributorEntry:
    def __init__(self, user: User, commits: int):
        self.user = user
        self.commits = commits

    def to_dict(self) -> Dict[str, Any]:
        return {'user': self.user.to_dict(), 'commits': self.commits}


class ProjectEntry:
    def __init__(self, project: str, commits: int):
        self.project = project
        self.commits = commits

    def to_dict(self) -> Dict[str, Any]:
        return {'project': self.project, 'commits': self.commits}


class DashboardStats:
    """
    Aggregated dashboard statistics for one date range.
    """
    def __init__(
        self,
        total_users: int,
        total_commits: int,
        avg_commits_per_workday: float,
        commits_by_day: Dict[str, int],
        commits_by_hour: List[int],
        commits_by_day_of_week: List[int],
        top_contributors: List[ContributorEntry],
        project_breakdown: List[ProjectEntry],
        total_additions: int = 0,
        total_deletions: int = 0,
    ):
        self.total_users = total_users
        self.total_commits = total_commits
        self.total_additions = total_additions
        self.total_deletions = total_deletions
        self.avg_commits_per_workday = avg_commits_per_workday
        self.commits_by_day = commits_by_day
        self.commits_by_hour = commits_by_hour
        self.commits_by_day_of_week = commits_by_day_of_week
        self.top_contributors = top_contributors
        self.project_breakdown = project_breakdown

    def to_dict(self) -> Dict[str, Any]:
        """Serialise with the key names the dashboard API has always used."""
        return {
            'totalUsers': self.total_users,
            'totalCommits': self.total_commits,
            'totalAdditions': self.total_additions,
            'totalDeletions': self.total_deletions,
            'avgCommitsPerWorkday': self.avg_commits_per_workday,
            'commitsByDay': dict(self.commits_by_day),
            'commitsByHour': list(self.commits_by_hour),
            'commitsByDayOfWeek': list(self.commits_by_day_of_week),
            'topContributors': [c.to_dict() for c in self.top_contributors],
            'projectBreakdown': [p.to_dict() for p in self.project_breakdown],
        }

    def __str__(self):
        return (
            f"Users: {self.total_users}\n"
            f"Commits: {self.total_commits}\n"
            f"Avg Commits / Workday: {self.avg_commits_per_workday:.2f}\n"
            f"Top Contributor: {self.top_contributors[0].user.name if self.top_contributors else '-'}\n"
            f"Top Project: {self.project_breakdown[0].project if self.project_breakdown else '-'}"
        )
