import sys
import os
import time

import pytest

# Add project root to sys.path so tests can import top-level modules like 'storage', 'scoring', 'normalize', etc.
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)


def _set_tz(name):
    if name is None:
        os.environ.pop('TZ', None)
    else:
        os.environ['TZ'] = name
    time.tzset()


@pytest.fixture
def local_tz():
    """Switch the process-local time zone for the duration of a test: local_tz('America/New_York')."""
    if not hasattr(time, 'tzset'):
        pytest.skip("time.tzset not available on this platform")
    original = os.environ.get('TZ')
    yield _set_tz
    _set_tz(original)


@pytest.fixture
def utc_local(local_tz):
    local_tz('UTC')
