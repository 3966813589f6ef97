"""
Report renderer: turn DashboardStats into HTML, Markdown, CSV, JSON or plain text.
HTML and Markdown go through the Jinja2 templates in report/templates/.
"""

from typing import Optional, List, Dict, Any
import os
import io
import csv
import json

from jinja2 import Environment, FileSystemLoader, select_autoescape

from normalize.models import DashboardStats

TEMPLATE_DIR = os.path.join(os.path.dirname(__file__), 'templates')
WEEKDAY_LABELS = ['Sun', 'Mon', 'Tue', 'Wed', 'Thu', 'Fri', 'Sat']


def _environment() -> Environment:
    env = Environment(loader=FileSystemLoader(TEMPLATE_DIR), autoescape=select_autoescape(['html', 'xml', 'html.j2']))
    env.filters['percent_of'] = _percent_of
    return env


def _percent_of(value: int, peak: int) -> float:
    """Bar width in percent relative to the largest bucket."""
    return round(100.0 * value / peak, 1) if peak else 0.0


def _timeline(stats: DashboardStats) -> List[Dict[str, Any]]:
    """Days sorted chronologically for the timeline chart."""
    return [{'date': d, 'commits': c} for d, c in sorted(stats.commits_by_day.items())]


def _context(stats: DashboardStats, scope: Optional[str], generated_at: Optional[str]) -> Dict[str, Any]:
    timeline = _timeline(stats)
    return {
        'stats': stats,
        'timeline': timeline,
        'timeline_peak': max([t['commits'] for t in timeline] or [0]),
        'hours': list(enumerate(stats.commits_by_hour)),
        'hour_peak': max(stats.commits_by_hour or [0]),
        'weekdays': list(zip(WEEKDAY_LABELS, stats.commits_by_day_of_week)),
        'weekday_peak': max(stats.commits_by_day_of_week or [0]),
        'scope': scope,
        'generated_at': generated_at,
    }


def render_text(stats: DashboardStats) -> str:
    return str(stats)


def render_json(stats: DashboardStats) -> str:
    return json.dumps(stats.to_dict(), indent=2)


def render_csv(stats: DashboardStats) -> str:
    """Two tables: commits per day, then the contributor leaderboard, separated by a blank line."""
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(['date', 'commits'])
    for row in _timeline(stats):
        writer.writerow([row['date'], row['commits']])
    writer.writerow([])
    writer.writerow(['rank', 'user_id', 'username', 'name', 'commits'])
    for rank, c in enumerate(stats.top_contributors, start=1):
        writer.writerow([rank, c.user.id, c.user.username, c.user.name, c.commits])
    return output.getvalue()


def render_markdown(stats: DashboardStats, scope: Optional[str] = None, generated_at: Optional[str] = None) -> str:
    return _environment().get_template('dashboard.md.j2').render(**_context(stats, scope, generated_at))


def render_html(stats: DashboardStats, scope: Optional[str] = None, generated_at: Optional[str] = None) -> str:
    return _environment().get_template('dashboard.html.j2').render(**_context(stats, scope, generated_at))


def render(stats: DashboardStats, fmt: str = 'text', scope: Optional[str] = None, generated_at: Optional[str] = None) -> str:
    """Main render function; unknown formats fall back to plain text."""
    fmt_l = (fmt or 'text').lower()
    if fmt_l in ('md', 'markdown'):
        return render_markdown(stats, scope, generated_at)
    if fmt_l == 'csv':
        return render_csv(stats)
    if fmt_l in ('html', 'htm'):
        return render_html(stats, scope, generated_at)
    if fmt_l in ('json', 'js'):
        return render_json(stats)
    return render_text(stats)
