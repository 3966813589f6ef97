"""
Scoring package: aggregate activity events into dashboard statistics.
"""

from .metrics import compute_dashboard_stats

__all__ = ["compute_dashboard_stats"]
