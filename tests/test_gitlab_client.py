import threading
import unittest
from datetime import date, datetime, timezone
from unittest.mock import patch, Mock

import requests

from ingest.exceptions import GitLabAPIError, GitLabAuthError, ConfigurationError
from ingest.gitlab import GitLabClient
from normalize.models import User
from storage.cache import Cache
from storage.retry import configure_retry, reset_retry


def _resp(status=200, body=None, headers=None):
    r = Mock()
    r.status_code = status
    r.json.return_value = body if body is not None else []
    r.headers = headers or {}
    r.text = str(body)
    return r


def _user_payload(uid, state='active'):
    return {'id': uid, 'username': f'u{uid}', 'name': f'User {uid}', 'state': state, 'avatar_url': '', 'web_url': ''}


def _event_payload(eid, author, commits=1):
    return {
        'id': eid, 'project_id': 3, 'action_name': 'pushed to', 'author_id': author,
        'target_title': 'api', 'created_at': '2024-01-02T10:00:00.000Z',
        'push_data': {'commit_count': commits, 'action': 'pushed', 'ref_type': 'branch', 'ref': 'main'},
    }


class TestGitLabClient(unittest.TestCase):
    def setUp(self):
        configure_retry(max_retries=1, backoff_base=0, backoff_jitter=0)

    def tearDown(self):
        reset_retry()

    def test_requires_url_and_token(self):
        with self.assertRaises(ConfigurationError):
            GitLabClient('', 'tok')
        with self.assertRaises(ConfigurationError):
            GitLabClient('https://gitlab.example.com', None)

    def test_fetch_all_follows_pages_until_short_page(self):
        client = GitLabClient('https://gitlab.example.com/', 'tok', per_page=2)
        pages = [_resp(body=[_user_payload(1), _user_payload(2)]), _resp(body=[_user_payload(3)])]
        with patch('storage.retry.requests.get', side_effect=pages) as mocked:
            users = client.get_active_users()
        self.assertEqual([u.id for u in users], [1, 2, 3])
        self.assertEqual(mocked.call_count, 2)
        url = mocked.call_args_list[0][0][0]
        kwargs = mocked.call_args_list[0][1]
        self.assertEqual(url, 'https://gitlab.example.com/api/v4/users')
        self.assertEqual(kwargs['headers']['Authorization'], 'Bearer tok')
        self.assertEqual(kwargs['params'], {'state': 'active', 'page': 1, 'per_page': 2})
        self.assertEqual(mocked.call_args_list[1][1]['params']['page'], 2)

    def test_page_cap_truncates(self):
        client = GitLabClient('https://gitlab.example.com', 'tok', per_page=1, max_pages=3)
        with patch('storage.retry.requests.get', side_effect=lambda *a, **k: _resp(body=[_event_payload(k['params']['page'], 1)])) as mocked:
            events = client.get_user_events(1)
        self.assertEqual(len(events), 3)
        self.assertEqual(mocked.call_count, 3)

    def test_group_members_and_inactive_filtered(self):
        client = GitLabClient('https://gitlab.example.com', 'tok', group_id='42')
        body = [_user_payload(1), _user_payload(2, state='blocked')]
        with patch('storage.retry.requests.get', return_value=_resp(body=body)) as mocked:
            users = client.get_active_users()
        self.assertEqual([u.id for u in users], [1])
        self.assertTrue(mocked.call_args[0][0].endswith('/groups/42/members'))

    def test_event_date_params_include_both_end_days(self):
        # GitLab's after/before are exclusive, so the request widens the range by a day each side
        client = GitLabClient('https://gitlab.example.com', 'tok')
        with patch('storage.retry.requests.get', return_value=_resp(body=[_event_payload(1, 7, 4)])) as mocked:
            events = client.get_user_events(7, '2024-01-01T00:00:00Z', '2024-01-31T23:59:59Z')
        params = mocked.call_args[1]['params']
        self.assertEqual(params['after'], '2023-12-31')
        self.assertEqual(params['before'], '2024-02-01')
        self.assertEqual(events[0].push_data.commit_count, 4)
        self.assertEqual(events[0].author_id, 7)

    def test_event_date_params_from_dates(self):
        client = GitLabClient('https://gitlab.example.com', 'tok')
        with patch('storage.retry.requests.get', return_value=_resp(body=[])) as mocked:
            client.get_user_events(7, date(2024, 3, 1), datetime(2024, 3, 31, 23, 59, tzinfo=timezone.utc))
        params = mocked.call_args[1]['params']
        self.assertEqual((params['after'], params['before']), ('2024-02-29', '2024-04-01'))

    def test_malformed_event_payload_is_upstream_error(self):
        client = GitLabClient('https://gitlab.example.com', 'tok')
        with patch('storage.retry.requests.get', return_value=_resp(body=[{'action_name': 'pushed to'}])):
            with self.assertRaises(GitLabAPIError) as ctx:
                client.get_user_events(1)
        self.assertIn('/users/1/events', str(ctx.exception))

    def test_malformed_user_payload_is_upstream_error(self):
        client = GitLabClient('https://gitlab.example.com', 'tok')
        with patch('storage.retry.requests.get', return_value=_resp(body=['not-a-user'])):
            with self.assertRaises(GitLabAPIError):
                client.get_active_users()

    def test_auth_error_raised(self):
        client = GitLabClient('https://gitlab.example.com', 'bad')
        with patch('storage.retry.requests.get', return_value=_resp(401, {'message': '401 Unauthorized'})):
            with self.assertRaises(GitLabAuthError) as ctx:
                client.get_active_users()
        self.assertEqual(ctx.exception.status, 401)

    def test_server_error_raised(self):
        client = GitLabClient('https://gitlab.example.com', 'tok')
        with patch('storage.retry.requests.get', return_value=_resp(500, {'message': 'boom'})):
            with self.assertRaises(GitLabAPIError) as ctx:
                client.get_user_events(1)
        self.assertEqual(ctx.exception.status, 500)

    def test_network_error_raised(self):
        client = GitLabClient('https://gitlab.example.com', 'tok')
        with patch('storage.retry.requests.get', side_effect=requests.ConnectionError('refused')):
            with self.assertRaises(GitLabAPIError) as ctx:
                client.get_projects()
        self.assertEqual(ctx.exception.status, 0)

    def test_rate_limited_request_is_retried(self):
        configure_retry(max_retries=3)
        client = GitLabClient('https://gitlab.example.com', 'tok')
        responses = [_resp(429, {'message': 'slow down'}, {'Retry-After': '0'}), _resp(body=[_user_payload(1)])]
        with patch('storage.retry.time.sleep') as sleep, patch('storage.retry.requests.get', side_effect=responses):
            users = client.get_active_users()
        self.assertEqual([u.id for u in users], [1])
        self.assertEqual(sleep.call_count, 1)

    def test_single_project_scope(self):
        client = GitLabClient('https://gitlab.example.com', 'tok', project_id='9')
        body = {'id': 9, 'name': 'api', 'name_with_namespace': 'G / api', 'path': 'api', 'path_with_namespace': 'g/api', 'web_url': 'u'}
        with patch('storage.retry.requests.get', return_value=_resp(body=body)) as mocked:
            projects = client.get_projects()
        self.assertEqual([p.id for p in projects], [9])
        self.assertTrue(mocked.call_args[0][0].endswith('/projects/9'))

    def test_project_commits_carry_stats(self):
        client = GitLabClient('https://gitlab.example.com', 'tok')
        body = [{'id': 'abc', 'short_id': 'ab', 'title': 't', 'message': 'm', 'author_name': 'A', 'author_email': 'a@x',
                 'authored_date': '2024-01-02T10:00:00Z', 'committer_name': 'A', 'committer_email': 'a@x',
                 'committed_date': '2024-01-02T10:00:00Z', 'web_url': 'u', 'stats': {'additions': 5, 'deletions': 1, 'total': 6}}]
        with patch('storage.retry.requests.get', return_value=_resp(body=body)) as mocked:
            commits = client.get_project_commits(3, since='2024-01-01')
        self.assertEqual(mocked.call_args[1]['params']['with_stats'], 'true')
        self.assertEqual(mocked.call_args[1]['params']['since'], '2024-01-01T00:00:00.000Z')
        self.assertEqual((commits[0].additions, commits[0].deletions, commits[0].project_id), (5, 1, 3))

    def test_collect_user_activities_fans_out(self):
        client = GitLabClient('https://gitlab.example.com', 'tok', max_workers=3)
        users = [User(i, f'u{i}', f'User {i}') for i in range(1, 6)]
        seen_threads = set()
        lock = threading.Lock()

        def fake_get(url, **kwargs):
            with lock:
                seen_threads.add(threading.get_ident())
            uid = int(url.rstrip('/').split('/')[-2])
            return _resp(body=[_event_payload(uid * 10, uid, uid)])

        with patch('storage.retry.requests.get', side_effect=fake_get):
            activities = client.collect_user_activities(users)
        self.assertEqual([a.user.id for a in activities], [1, 2, 3, 4, 5])
        self.assertEqual([a.total_commits for a in activities], [1, 2, 3, 4, 5])
        self.assertGreaterEqual(len(seen_threads), 1)

    def test_failed_user_fetch_propagates(self):
        client = GitLabClient('https://gitlab.example.com', 'tok', max_workers=2)
        users = [User(1, 'a', 'A'), User(2, 'b', 'B')]

        def fake_get(url, **kwargs):
            if '/users/2/' in url:
                return _resp(500, {'message': 'boom'})
            return _resp(body=[])

        with patch('storage.retry.requests.get', side_effect=fake_get):
            with self.assertRaises(GitLabAPIError):
                client.fetch_events_for_users(users)

    def test_cached_pages_skip_network(self):
        with Cache() as cache:
            client = GitLabClient('https://gitlab.example.com', 'tok', cache=cache)
            with patch('storage.retry.requests.get', return_value=_resp(body=[_user_payload(1)])):
                client.get_active_users()
            with patch('storage.retry.requests.get', side_effect=AssertionError('network should not be used')):
                users = client.get_active_users()
            self.assertEqual([u.id for u in users], [1])


if __name__ == '__main__':
    unittest.main()
