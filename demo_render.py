"""
Demo script: generate plausible GitLab activity, aggregate it with the real scoring code and
write HTML, Markdown, CSV and JSON dashboards. Handy for checking templates without a GitLab token.
"""

import random
from datetime import datetime, timedelta, timezone
from typing import List, Tuple

from normalize.models import User, Event, PushData
from report.renderer import render
from scoring.metrics import compute_dashboard_stats

DEMO_USERS = [
    ('john.doe', 'John Doe'),
    ('jane.smith', 'Jane Smith'),
    ('bob.wilson', 'Bob Wilson'),
    ('alice.johnson', 'Alice Johnson'),
    ('charlie.brown', 'Charlie Brown'),
    ('diana.prince', 'Diana Prince'),
    ('edward.chen', 'Edward Chen'),
    ('fiona.garcia', 'Fiona Garcia'),
]
DEMO_PROJECTS = ['frontend-app', 'backend-api', 'mobile-app', 'infrastructure', 'documentation', 'shared-lib']


def generate_demo_data(seed: int = 42, days: int = 30, now: datetime = None) -> Tuple[List[User], List[Event]]:
    """Users plus push/comment events over the last `days` days; weekends and nights are quieter."""
    rng = random.Random(seed)
    now = now or datetime.now(timezone.utc)
    users = [
        User(i, username, name, 'active', f'https://www.gravatar.com/avatar/{i}?d=identicon', f'https://gitlab.example.com/{username}')
        for i, (username, name) in enumerate(DEMO_USERS, start=1)
    ]
    events: List[Event] = []
    event_id = 1
    for offset in range(days, -1, -1):
        day = (now - timedelta(days=offset)).replace(minute=0, second=0, microsecond=0)
        weekend = day.weekday() >= 5
        for user in users:
            pushes = rng.randint(0, 1) if weekend else rng.randint(0, 4)
            for _ in range(pushes):
                hour = rng.choice(range(9, 18)) if rng.random() < 0.8 else rng.randint(0, 23)
                created = day.replace(hour=hour, minute=rng.randint(0, 59))
                events.append(Event(
                    id=event_id,
                    author_id=user.id,
                    project_id=rng.randint(1, len(DEMO_PROJECTS)),
                    action_name='pushed to',
                    created_at=created.isoformat(),
                    target_title=rng.choice(DEMO_PROJECTS),
                    push_data=PushData(commit_count=rng.randint(1, 6), action='pushed', ref_type='branch', ref='main'),
                ))
                event_id += 1
            if rng.random() < 0.3:
                events.append(Event(id=event_id, author_id=user.id, project_id=1, action_name='commented on', created_at=day.isoformat()))
                event_id += 1
    return users, events


def main():
    now = datetime.now(timezone.utc)
    users, events = generate_demo_data(now=now)
    since = (now - timedelta(days=30)).date()
    stats = compute_dashboard_stats(events, users, since, now.date())
    scope = f"{since.isoformat()} to {now.date().isoformat()}"
    for fmt, ext in (('html', 'html'), ('md', 'md'), ('csv', 'csv'), ('json', 'json')):
        out = render(stats, fmt=fmt, scope=scope, generated_at=now.isoformat())
        path = f'demo_dashboard.{ext}'
        with open(path, 'w', encoding='utf-8', newline='') as f:
            f.write(out)
        print(f'Wrote {path} ({len(out)} bytes)')


if __name__ == '__main__':
    main()
