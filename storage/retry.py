"""
Retry/backoff and rate-limit-aware HTTP GET helper.
GitLab answers 429 with Retry-After and exposes RateLimit-* headers; both are honoured here.
"""

import os
import time
import random
import logging
import email.utils
from datetime import datetime, timezone
from typing import Optional, Dict, Any
import requests

logger = logging.getLogger(__name__)

# retry/backoff defaults from environment
DEFAULT_MAX_RETRIES = int(os.getenv("GLDASH_MAX_RETRIES", "3"))
DEFAULT_BACKOFF_BASE = float(os.getenv("GLDASH_BACKOFF_BASE", "0.5"))
_env_jitter = os.getenv("GLDASH_BACKOFF_JITTER")
DEFAULT_BACKOFF_JITTER = float(_env_jitter) if _env_jitter else None
DEFAULT_MAX_BACKOFF = float(os.getenv("GLDASH_MAX_BACKOFF", "120.0"))
DEFAULT_TIMEOUT = float(os.getenv("GLDASH_HTTP_TIMEOUT", "30"))

RETRY_STATUSES = (429, 502, 503, 504)
MAX_SINGLE_WAIT = 300.0

_runtime: Dict[str, Any] = {'max_retries': None, 'backoff_base': None, 'backoff_jitter': None, 'max_backoff': None}


def configure_retry(
    max_retries: Optional[int] = None, backoff_base: Optional[float] = None, backoff_jitter: Optional[float] = None, max_backoff: Optional[float] = None
):
    """Configure retry/backoff defaults at runtime (e.g. from CLI)."""
    if max_retries is not None:
        _runtime['max_retries'] = int(max_retries)
    if backoff_base is not None:
        _runtime['backoff_base'] = float(backoff_base)
    if backoff_jitter is not None:
        _runtime['backoff_jitter'] = float(backoff_jitter)
    if max_backoff is not None:
        _runtime['max_backoff'] = float(max_backoff)


def reset_retry():
    for k in _runtime:
        _runtime[k] = None


def _parse_retry_after(raw: Optional[str]) -> Optional[float]:
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError:
        pass
    try:
        dt = email.utils.parsedate_to_datetime(raw)
    except (TypeError, ValueError):
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return max(0.0, (dt - datetime.now(timezone.utc)).total_seconds())


def _header_number(headers, *names) -> Optional[float]:
    for name in names:
        val = headers.get(name)
        if val is None:
            continue
        try:
            return float(val)
        except (TypeError, ValueError):
            continue
    return None


def _rate_headers(resp):
    headers = getattr(resp, 'headers', None) or {}
    retry_after = _parse_retry_after(headers.get('Retry-After'))
    remaining = _header_number(headers, 'RateLimit-Remaining', 'X-RateLimit-Remaining')
    reset_at = _header_number(headers, 'RateLimit-Reset', 'X-RateLimit-Reset')
    return retry_after, remaining, reset_at


def _resolve(name: str, explicit, default):
    if explicit is not None:
        return explicit
    if _runtime[name] is not None:
        return _runtime[name]
    return default


def _should_retry(status: int, retry_after: Optional[float], remaining: Optional[float]) -> bool:
    if status in RETRY_STATUSES:
        return True
    if status != 200 and retry_after is not None:
        return True
    return status != 200 and remaining is not None and remaining <= 0


def _wait_seconds(retry_after: Optional[float], reset_at: Optional[float], backoff: float, jitter: float) -> float:
    if retry_after is not None:
        base = retry_after
    elif reset_at:
        base = max(0.0, reset_at - time.time())
    else:
        base = backoff
    return min(base + random.uniform(0, jitter), MAX_SINGLE_WAIT)


def _body_of(resp):
    try:
        return resp.json()
    except ValueError:
        return getattr(resp, 'text', None)


def perform_request_with_retries(
    url: str,
    headers: Dict[str, str],
    params: Dict[str, Any],
    cache=None,
    cache_key: str = '',
    min_wait: float = 0.0,
    max_retries: Optional[int] = None,
    backoff_base: Optional[float] = None,
    backoff_jitter: Optional[float] = None,
    max_backoff: Optional[float] = None,
    timeout: Optional[float] = None,
) -> Dict[str, Any]:
    """GET url, retrying transient failures with exponential backoff.

    Returns {'response', 'status', 'timestamp', 'headers'}. A network error that survives every
    attempt is reported with status 0 and the exception text as the response; callers decide
    whether that is fatal.
    """
    backoff = float(_resolve('backoff_base', backoff_base, min_wait or DEFAULT_BACKOFF_BASE))
    jitter = float(_resolve('backoff_jitter', backoff_jitter, DEFAULT_BACKOFF_JITTER if DEFAULT_BACKOFF_JITTER is not None else backoff))
    cap = float(_resolve('max_backoff', max_backoff, DEFAULT_MAX_BACKOFF))
    attempts = max(1, int(_resolve('max_retries', max_retries, DEFAULT_MAX_RETRIES)))

    last: Dict[str, Any] = {'response': None, 'status': 0, 'timestamp': time.time(), 'headers': {}}
    for attempt in range(attempts):
        try:
            resp = requests.get(url, headers=headers or {}, params=params or {}, timeout=timeout or DEFAULT_TIMEOUT)
        except requests.RequestException as ex:
            logger.warning("GET %s failed (attempt %d/%d): %s", url, attempt + 1, attempts, ex)
            last = {'response': str(ex), 'status': 0, 'timestamp': time.time(), 'headers': {}}
            if attempt + 1 < attempts:
                time.sleep(min(backoff + random.uniform(0, jitter), cap))
            backoff = min(backoff * 2, cap)
            continue

        status = getattr(resp, 'status_code', 0)
        resp_headers = dict(getattr(resp, 'headers', None) or {})
        if status == 200:
            body = _body_of(resp)
            if cache is not None and cache_key:
                cache.set(cache_key, body, status)
            return {'response': body, 'status': status, 'timestamp': time.time(), 'headers': resp_headers}

        retry_after, remaining, reset_at = _rate_headers(resp)
        last = {'response': _body_of(resp), 'status': status, 'timestamp': time.time(), 'headers': resp_headers}
        if not _should_retry(status, retry_after, remaining):
            return last
        if attempt + 1 < attempts:
            wait = _wait_seconds(retry_after, reset_at, backoff, jitter)
            logger.info("GET %s returned %s; retrying in %.1fs", url, status, wait)
            time.sleep(wait)
        backoff = min(backoff * 2, cap)
    return last


__all__ = ["configure_retry", "reset_retry", "perform_request_with_retries"]
