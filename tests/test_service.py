import unittest
from datetime import datetime, timezone

from ingest.exceptions import GitLabAPIError, ConfigurationError
from normalize.models import User, Event, PushData, Project, Commit
from service import DashboardService, build_client, resolve_window
from settings import load_settings
from storage.store import ActivityStore

NOW = datetime(2024, 1, 31, 12, 0, tzinfo=timezone.utc)


def _push(eid, author, commits, created_at):
    return Event(eid, author, 1, 'pushed to', created_at, target_title='backend-api', push_data=PushData(commits, 'pushed', 'branch', 'main'))


class FakeClient:
    """In-memory stand-in for GitLabClient with the same call surface used by the service."""

    def __init__(self, users, events_by_user, projects=None, commits=None, fail_user=None):
        self.users = users
        self.events_by_user = events_by_user
        self.projects = projects or []
        self.commits = commits or {}
        self.fail_user = fail_user
        self.event_calls = []

    def get_active_users(self):
        return list(self.users)

    def fetch_events_for_users(self, users, since=None, until=None, on_batch=None):
        self.event_calls.append((since, until))
        out = {}
        for u in users:
            if u.id == self.fail_user:
                raise GitLabAPIError('boom', status=500)
            events = self.events_by_user.get(u.id, [])
            out[u.id] = events
            if on_batch is not None:
                on_batch(u, events)
        return out

    def get_projects(self):
        return list(self.projects)

    def get_project_commits(self, project_id, since=None, until=None):
        return list(self.commits.get(project_id, []))


class TestDashboardService(unittest.TestCase):
    def setUp(self):
        self.store = ActivityStore()
        self.service = DashboardService(self.store)
        self.alice = User(1, 'alice', 'Alice')
        self.bob = User(2, 'bob', 'Bob')

    def tearDown(self):
        self.store.close()

    def test_sync_then_stats(self):
        client = FakeClient(
            [self.alice, self.bob],
            {1: [_push(1, 1, 2, '2024-01-02T10:00:00Z'), _push(2, 1, 3, '2024-01-03T11:00:00Z')], 2: [_push(3, 2, 1, '2024-01-04T12:00:00Z')]},
            projects=[Project(1, 'backend-api', 'Group / backend-api')],
        )
        result = self.service.sync(client)
        self.assertEqual(result, {'success': True, 'message': 'Data synced successfully', 'usersCount': 2, 'eventsCount': 3, 'projectsCount': 1})
        self.assertEqual(client.event_calls, [(None, None)])

        stats = self.service.get_stats('2024-01-01', '2024-01-31', now=NOW)
        self.assertEqual(stats.total_commits, 6)
        self.assertEqual(stats.total_users, 2)
        self.assertEqual([(c.user.username, c.commits) for c in stats.top_contributors], [('alice', 5), ('bob', 1)])
        self.assertAlmostEqual(stats.avg_commits_per_workday, 6 / 23)

    def test_stats_for_selected_users(self):
        client = FakeClient(
            [self.alice, self.bob],
            {1: [_push(1, 1, 2, '2024-01-02T10:00:00Z')], 2: [_push(2, 2, 1, '2024-01-04T12:00:00Z')]},
        )
        self.service.sync(client, include_projects=False)
        stats = self.service.get_stats('2024-01-01', '2024-01-31', now=NOW, user_ids=[2])
        self.assertEqual(stats.total_commits, 1)
        self.assertEqual(stats.total_users, 1)
        self.assertEqual([(c.user.username, c.commits) for c in stats.top_contributors], [('bob', 1)])
        self.assertEqual(stats.commits_by_day, {'2024-01-04': 1})
        # an empty selection means everyone
        self.assertEqual(self.service.get_stats('2024-01-01', '2024-01-31', now=NOW, user_ids=[]).total_commits, 3)

    def test_second_sync_adds_no_events(self):
        client = FakeClient([self.alice], {1: [_push(1, 1, 2, '2024-01-02T10:00:00Z')]})
        self.service.sync(client, include_projects=False)
        result = self.service.sync(client, include_projects=False)
        self.assertEqual(result['eventsCount'], 0)
        self.assertEqual(result['projectsCount'], 0)
        self.assertEqual(len(self.service.list_events()), 1)

    def test_sync_passes_parsed_window(self):
        client = FakeClient([self.alice], {})
        self.service.sync(client, since='2024-01-01', until='2024-01-31', include_projects=False)
        since, until = client.event_calls[0]
        self.assertEqual(since, datetime(2024, 1, 1, tzinfo=timezone.utc))
        self.assertEqual(until.date().isoformat(), '2024-01-31')

    def test_sync_with_commits(self):
        commit = Commit('abc', 'ab', 't', 'm', 'A', 'a@x', '2024-01-02T10:00:00Z', 'A', 'a@x', '2024-01-02T10:00:00Z', 'u', 4, 1, 5, 7)
        client = FakeClient([self.alice], {}, projects=[Project(7, 'api')], commits={7: [commit]})
        self.service.sync(client, include_projects=False, include_commits=True)
        self.assertEqual([c.id for c in self.store.get_commits(project_id=7)], ['abc'])
        self.assertEqual([p.id for p in self.service.list_projects()], [7])

    def test_failed_sync_keeps_users(self):
        client = FakeClient([self.alice, self.bob], {1: [_push(1, 1, 2, '2024-01-02T10:00:00Z')]}, fail_user=2)
        with self.assertRaises(GitLabAPIError):
            self.service.sync(client)
        self.assertEqual([u.id for u in self.service.list_users()], [1, 2])
        self.assertEqual([e.id for e in self.service.list_events()], [1])

    def test_stats_default_window_excludes_old_events(self):
        self.store.save_users([self.alice])
        self.store.save_events([_push(1, 1, 4, '2023-11-01T10:00:00Z'), _push(2, 1, 1, '2024-01-20T10:00:00Z')])
        stats = self.service.get_stats(now=NOW)
        self.assertEqual(stats.total_commits, 1)

    def test_list_events_filters(self):
        self.store.save_events([_push(1, 1, 1, '2024-01-02T10:00:00Z'), _push(2, 2, 1, '2024-01-05T10:00:00Z')])
        self.assertEqual([e.id for e in self.service.list_events(user_id='2')], [2])
        self.assertEqual([e.id for e in self.service.list_events(until='2024-01-02')], [1])
        self.assertEqual([e.id for e in self.service.list_events(since='2024-01-03')], [2])

    def test_invalid_date_raises_value_error(self):
        with self.assertRaises(ValueError):
            self.service.get_stats(since='not-a-date', now=NOW)


class TestHelpers(unittest.TestCase):
    def test_resolve_window_defaults(self):
        since, until = resolve_window(now=NOW, window_days=30)
        self.assertEqual(until, NOW)
        self.assertEqual((until - since).days, 30)

    def test_resolve_window_date_only_until_is_end_of_day(self):
        _, until = resolve_window('2024-01-01', '2024-01-31', now=NOW)
        self.assertEqual((until.hour, until.minute, until.second), (23, 59, 59))

    def test_build_client_overrides(self):
        settings = load_settings(env={})
        client = build_client(settings, url='https://gl.example.com/', token='tok', group_id='5')
        self.assertEqual(client.api_url, 'https://gl.example.com/api/v4')
        self.assertEqual(client.group_id, '5')

    def test_build_client_without_token_fails(self):
        with self.assertRaises(ConfigurationError):
            build_client(load_settings(env={}), url='https://gl.example.com')


if __name__ == '__main__':
    unittest.main()
