"""
SQLite mirror of GitLab users, events, commits and projects.

Users and projects are upserted by id (mutable fields and updated_at refreshed); events and
commits are insert-or-ignore on their natural id, so re-syncing the same range is a no-op.
"""

import sqlite3
import logging
import threading
from datetime import datetime
from typing import Optional, List, Iterable, Any

from normalize.models import User, Event, PushData, Commit, Project
from normalize.util import to_utc_iso

logger = logging.getLogger(__name__)

# noinspection SqlResolve
SQL_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY,
    username TEXT NOT NULL,
    name TEXT NOT NULL,
    state TEXT,
    avatar_url TEXT,
    web_url TEXT,
    email TEXT,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS events (
    id INTEGER PRIMARY KEY,
    user_id INTEGER REFERENCES users(id),
    project_id INTEGER,
    action_name TEXT,
    target_id INTEGER,
    target_type TEXT,
    target_title TEXT,
    created_at TEXT NOT NULL,
    push_commit_count INTEGER,
    push_action TEXT,
    push_ref_type TEXT,
    push_ref TEXT,
    push_commit_from TEXT,
    push_commit_to TEXT
);

CREATE TABLE IF NOT EXISTS commits (
    id TEXT PRIMARY KEY,
    short_id TEXT,
    title TEXT,
    message TEXT,
    author_name TEXT,
    author_email TEXT,
    authored_date TEXT,
    committer_name TEXT,
    committer_email TEXT,
    committed_date TEXT,
    web_url TEXT,
    additions INTEGER DEFAULT 0,
    deletions INTEGER DEFAULT 0,
    total INTEGER DEFAULT 0,
    project_id INTEGER
);

CREATE TABLE IF NOT EXISTS projects (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    name_with_namespace TEXT,
    path TEXT,
    path_with_namespace TEXT,
    web_url TEXT,
    avatar_url TEXT,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_events_user_id ON events(user_id);
CREATE INDEX IF NOT EXISTS idx_events_created_at ON events(created_at);
CREATE INDEX IF NOT EXISTS idx_events_project_id ON events(project_id);
CREATE INDEX IF NOT EXISTS idx_commits_project_id ON commits(project_id);
CREATE INDEX IF NOT EXISTS idx_commits_committed_date ON commits(committed_date);
CREATE INDEX IF NOT EXISTS idx_commits_author_email ON commits(author_email);
"""

# noinspection SqlResolve
SQL_UPSERT_USER = """
INSERT INTO users (id, username, name, state, avatar_url, web_url, email, updated_at)
VALUES (?, ?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
ON CONFLICT (id) DO UPDATE SET
    username = excluded.username,
    name = excluded.name,
    state = excluded.state,
    avatar_url = excluded.avatar_url,
    web_url = excluded.web_url,
    email = excluded.email,
    updated_at = CURRENT_TIMESTAMP
"""

# noinspection SqlResolve
SQL_INSERT_EVENT = """
INSERT OR IGNORE INTO events (id, user_id, project_id, action_name, target_id, target_type, target_title,
                              created_at, push_commit_count, push_action, push_ref_type, push_ref,
                              push_commit_from, push_commit_to)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
"""

# noinspection SqlResolve
SQL_INSERT_COMMIT = """
INSERT OR IGNORE INTO commits (id, short_id, title, message, author_name, author_email, authored_date,
                               committer_name, committer_email, committed_date, web_url,
                               additions, deletions, total, project_id)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
"""

# noinspection SqlResolve
SQL_UPSERT_PROJECT = """
INSERT INTO projects (id, name, name_with_namespace, path, path_with_namespace, web_url, avatar_url, updated_at)
VALUES (?, ?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
ON CONFLICT (id) DO UPDATE SET
    name = excluded.name,
    name_with_namespace = excluded.name_with_namespace,
    path = excluded.path,
    path_with_namespace = excluded.path_with_namespace,
    web_url = excluded.web_url,
    avatar_url = excluded.avatar_url,
    updated_at = CURRENT_TIMESTAMP
"""


def _bound(value: Optional[Any]) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return to_utc_iso(value)
    return to_utc_iso(str(value))


class ActivityStore:
    def __init__(self, path: Optional[str] = None):
        """Open (and create if needed) the store at path; None keeps everything in memory."""
        self.path = path or ':memory:'
        self.conn = sqlite3.connect(self.path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        with self._lock:
            self.conn.executescript(SQL_SCHEMA)
            self.conn.commit()

    def close(self):
        with self._lock:
            if self.conn is not None:
                self.conn.close()
                self.conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def _write_many(self, sql: str, rows: Iterable[tuple]) -> int:
        rows = list(rows)
        if not rows:
            return 0
        with self._lock:
            before = self.conn.total_changes
            self.conn.executemany(sql, rows)
            self.conn.commit()
            return self.conn.total_changes - before

    def _read(self, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
        with self._lock:
            return self.conn.execute(sql, params).fetchall()

    # Users
    def save_users(self, users: List[User]) -> int:
        written = self._write_many(SQL_UPSERT_USER, ((u.id, u.username, u.name, u.state, u.avatar_url, u.web_url, u.email) for u in users))
        logger.debug("upserted %d users", written)
        return written

    # noinspection SqlResolve
    def get_users(self) -> List[User]:
        rows = self._read('SELECT * FROM users ORDER BY name')
        return [User(r['id'], r['username'], r['name'], r['state'], r['avatar_url'] or '', r['web_url'] or '', r['email']) for r in rows]

    # noinspection SqlResolve
    def get_user_updated_at(self, user_id: int) -> Optional[str]:
        rows = self._read('SELECT updated_at FROM users WHERE id = ?', (user_id,))
        return rows[0]['updated_at'] if rows else None

    # Events
    def save_events(self, events: List[Event]) -> int:
        """Insert events, ignoring ids already present. Returns the number of new rows."""
        def _row(e: Event) -> tuple:
            p = e.push_data
            return (
                e.id, e.author_id, e.project_id, e.action_name, e.target_id, e.target_type, e.target_title,
                to_utc_iso(e.created_at),
                p.commit_count if p else None,
                p.action if p else None,
                p.ref_type if p else None,
                p.ref if p else None,
                p.commit_from if p else None,
                p.commit_to if p else None,
            )
        inserted = self._write_many(SQL_INSERT_EVENT, (_row(e) for e in events))
        logger.debug("inserted %d of %d events", inserted, len(events))
        return inserted

    # noinspection SqlResolve
    def get_events(self, since=None, until=None, user_id: Optional[int] = None) -> List[Event]:
        """Events in [since, until] (either bound optional), newest first."""
        conditions: List[str] = []
        params: List[Any] = []
        if user_id is not None:
            conditions.append('user_id = ?')
            params.append(int(user_id))
        if since is not None:
            conditions.append('created_at >= ?')
            params.append(_bound(since))
        if until is not None:
            conditions.append('created_at <= ?')
            params.append(_bound(until))
        query = 'SELECT * FROM events'
        if conditions:
            query += ' WHERE ' + ' AND '.join(conditions)
        query += ' ORDER BY created_at DESC'
        return [self._event_from_row(r) for r in self._read(query, tuple(params))]

    def get_user_events(self, user_id: int, since=None, until=None) -> List[Event]:
        return self.get_events(since, until, user_id=user_id)

    @staticmethod
    def _event_from_row(row: sqlite3.Row) -> Event:
        push_data = None
        if row['push_commit_count'] is not None or row['push_action'] is not None:
            push_data = PushData(
                commit_count=row['push_commit_count'] or 0,
                action=row['push_action'] or '',
                ref_type=row['push_ref_type'] or '',
                ref=row['push_ref'] or '',
                commit_from=row['push_commit_from'],
                commit_to=row['push_commit_to'],
            )
        return Event(
            id=row['id'],
            author_id=row['user_id'],
            project_id=row['project_id'],
            action_name=row['action_name'],
            created_at=row['created_at'],
            target_id=row['target_id'],
            target_type=row['target_type'],
            target_title=row['target_title'],
            push_data=push_data,
        )

    # Commits
    def save_commits(self, commits: List[Commit]) -> int:
        return self._write_many(SQL_INSERT_COMMIT, (
            (c.id, c.short_id, c.title, c.message, c.author_name, c.author_email, c.authored_date,
             c.committer_name, c.committer_email, c.committed_date, c.web_url,
             c.additions, c.deletions, c.total, c.project_id)
            for c in commits
        ))

    # noinspection SqlResolve
    def get_commits(self, project_id: Optional[int] = None) -> List[Commit]:
        if project_id is None:
            rows = self._read('SELECT * FROM commits ORDER BY committed_date DESC')
        else:
            rows = self._read('SELECT * FROM commits WHERE project_id = ? ORDER BY committed_date DESC', (int(project_id),))
        return [Commit(**dict(r)) for r in rows]

    # Projects
    def save_projects(self, projects: List[Project]) -> int:
        return self._write_many(SQL_UPSERT_PROJECT, (
            (p.id, p.name, p.name_with_namespace, p.path, p.path_with_namespace, p.web_url, p.avatar_url)
            for p in projects
        ))

    # noinspection SqlResolve
    def get_projects(self) -> List[Project]:
        rows = self._read('SELECT id, name, name_with_namespace, path, path_with_namespace, web_url, avatar_url FROM projects ORDER BY name')
        return [Project(**dict(r)) for r in rows]

    # noinspection SqlResolve
    def counts(self) -> dict:
        """Row counts per table."""
        return {t: self._read(f'SELECT COUNT(1) AS n FROM {t}')[0]['n'] for t in ('users', 'events', 'commits', 'projects')}
