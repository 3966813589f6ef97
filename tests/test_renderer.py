import csv
import io
import json
from datetime import date

from normalize.models import User, Event, PushData
from report import renderer
from scoring.metrics import compute_dashboard_stats


def _stats():
    alice = User(1, 'alice', 'Alice <Admin>', 'active', 'https://gl/a.png', 'https://gl/alice')
    bob = User(2, 'bob', 'Bob', 'active')
    events = [
        Event(1, 1, 1, 'pushed to', '2024-01-03T10:00:00Z', target_title='backend-api', push_data=PushData(4)),
        Event(2, 2, 1, 'pushed to', '2024-01-02T09:00:00Z', target_title='frontend-app', push_data=PushData(1)),
    ]
    return compute_dashboard_stats(events, [alice, bob], date(2024, 1, 1), date(2024, 1, 5))


def test_render_text_summary():
    out = renderer.render(_stats(), fmt='text')
    assert 'Commits: 5' in out
    assert 'Top Contributor: Alice <Admin>' in out
    assert 'Top Project: backend-api' in out


def test_render_json_uses_api_keys():
    data = json.loads(renderer.render(_stats(), fmt='json'))
    assert data['totalCommits'] == 5
    assert data['avgCommitsPerWorkday'] == 1.0
    assert [c['user']['username'] for c in data['topContributors']] == ['alice', 'bob']


def test_render_csv_has_timeline_then_leaderboard():
    out = renderer.render(_stats(), fmt='csv')
    rows = list(csv.reader(io.StringIO(out)))
    assert rows[0] == ['date', 'commits']
    assert rows[1] == ['2024-01-02', '1']
    assert rows[2] == ['2024-01-03', '4']
    assert rows[3] == []
    assert rows[4] == ['rank', 'user_id', 'username', 'name', 'commits']
    assert rows[5] == ['1', '1', 'alice', 'Alice <Admin>', '4']


def test_render_markdown_tables(utc_local):
    out = renderer.render(_stats(), fmt='md', scope='2024-01-01 to 2024-01-05', generated_at='now')
    assert out.startswith('# GitLab Activity Summary')
    assert '_Range: 2024-01-01 to 2024-01-05_' in out
    assert '| 1 | Alice <Admin> (@alice) | 4 |' in out
    assert '| backend-api | 4 |' in out
    assert '| Wed | 4 |' in out


def test_render_html_escapes_and_links():
    out = renderer.render(_stats(), fmt='html', scope='January')
    assert 'Alice &lt;Admin&gt;' in out
    assert 'Alice <Admin>' not in out
    assert 'href="https://gl/alice"' in out
    assert 'Range: January' in out
    assert 'style="width: 100.0%"' in out


def test_render_html_empty_stats():
    stats = compute_dashboard_stats([], [], date(2024, 1, 1), date(2024, 1, 5))
    out = renderer.render_html(stats)
    assert 'No commits in this range.' in out
    assert 'No contributors in this range.' in out


def test_unknown_format_falls_back_to_text():
    assert renderer.render(_stats(), fmt='pdf') == renderer.render_text(_stats())


def test_percent_of():
    assert renderer._percent_of(5, 10) == 50.0
    assert renderer._percent_of(3, 0) == 0.0
