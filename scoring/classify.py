"""
Event classification helpers: which events produce commits and how many.
"""
from typing import Optional
from normalize.models import Event

PUSH_ACTION = 'pushed to'


def is_push_event(e: Event) -> bool:
    return e.action_name == PUSH_ACTION and e.push_data is not None


def commit_count_of(e: Event) -> int:
    if e.push_data is None:
        return 0
    return int(e.push_data.commit_count or 0)


def project_label_of(e: Event) -> Optional[str]:
    """Label used for the project breakdown; None keeps the event out of it."""
    return e.target_title
