"""
CLI entry point for the GitLab activity dashboard.
Subcommands: sync -> users/events/projects/stats -> serve, plus cache management.
"""

import argparse
import json
import logging
import os
import sys
import webbrowser
from datetime import datetime, timezone
from typing import Optional

from ingest.exceptions import ConfigurationError, GitLabAPIError
from logconfig import setup_logging
from report.renderer import render
from server import make_server, serve_forever
from service import DashboardService, build_client, resolve_window
from settings import load_settings
from storage.cache import Cache
from storage.retry import configure_retry
from storage.store import ActivityStore

logger = logging.getLogger(__name__)

OUTPUT_EXTENSIONS = {"html": "html", "md": "md", "csv": "csv", "json": "json"}


def _print_json(obj):
    print(json.dumps(obj, indent=2, default=str))


def _open_file_in_browser(path: str):
    """Open a file URL in the system default web browser."""
    webbrowser.open("file://" + os.path.abspath(path))


def _confirm(prompt: str, force: bool) -> bool:
    if force:
        return True
    return input(prompt).strip().lower() in ("y", "yes")


def _open_cache(path: str, settings) -> Cache:
    storage = settings['storage']
    return Cache(path, max_entries=storage.get('cache_max_entries'), ttl_seconds=storage.get('cache_ttl_seconds'))


def _handle_cache_command(args, settings) -> int:
    path = args.cache or settings['storage']['cache_path'] or "cache.db"
    with _open_cache(path, settings) as cache:
        action = args.cache_action
        if action == "info":
            _print_json(cache.stats())
        elif action == "list":
            _print_json(cache.list_keys(limit=args.limit))
        elif action == "get":
            entry = cache.get(args.key)
            if entry is None:
                print(f"Cache key not found: {args.key}")
                return 1
            _print_json(entry)
        elif action == "remove":
            if not _confirm(f"Are you sure you want to remove cache key '{args.key}' from {cache.path}? [y/N]: ", args.force):
                print("Aborted cache key removal.")
                return 1
            removed = cache.delete_key(args.key)
            print(f"Removed {removed} row(s) for key: {args.key}" if removed else f"Cache key not found: {args.key}")
        elif action == "clear":
            if not _confirm(f"Are you sure you want to clear the cache at {cache.path}? This cannot be undone. [y/N]: ", args.force):
                print("Aborted cache clear.")
                return 1
            cache.clear()
            print(f"Cleared cache at {cache.path}")
    return 0


def _write_report_file(path_base: str, ext: str, content: str, open_html: bool = False) -> str:
    """Write rendered content to path_base (adding .ext if missing) and optionally open it."""
    out_path = path_base if path_base.lower().endswith(f".{ext}") else f"{path_base}.{ext}"
    out_dir = os.path.dirname(out_path)
    if out_dir:
        os.makedirs(out_dir, exist_ok=True)
    # newline='' is safe for CSV on Windows and harmless for other formats
    with open(out_path, 'w', encoding='utf-8', newline='') as fh:
        fh.write(content)
    print(f"Wrote report to {out_path}")
    if open_html:
        _open_file_in_browser(out_path)
    return out_path


def write_output(fmt: str, rendered: str, out_file: str = "", open_html: bool = False) -> Optional[str]:
    """Write file formats to disk (default name when out_file is empty); print text to stdout."""
    ext = OUTPUT_EXTENSIONS.get(fmt)
    if ext is None or (fmt == "json" and not out_file):
        print(rendered)
        return None
    base = out_file.strip() or f"gitlab_activity_{datetime.now(timezone.utc).strftime('%Y%m%dT%H%M%SZ')}"
    return _write_report_file(base, ext, rendered, open_html=open_html and fmt == "html")


def _cmd_sync(args, settings, service, cache) -> int:
    client = build_client(settings, cache, url=args.url, token=args.token, group_id=args.group_id, project_id=args.project_id)
    result = service.sync(
        client,
        since=args.since,
        until=args.until,
        include_projects=settings['sync']['include_projects'] and not args.no_projects,
        include_commits=settings['sync']['include_commits'] or args.commits,
    )
    _print_json(result)
    return 0


def _cmd_users(args, settings, service, cache) -> int:
    _print_json([u.to_dict() for u in service.list_users()])
    return 0


def _cmd_events(args, settings, service, cache) -> int:
    _print_json([e.to_dict() for e in service.list_events(args.since, args.until, args.user_id)])
    return 0


def _cmd_projects(args, settings, service, cache) -> int:
    _print_json([p.to_dict() for p in service.list_projects()])
    return 0


def _cmd_stats(args, settings, service, cache) -> int:
    stats = service.get_stats(args.since, args.until, user_ids=args.user_ids)
    since_dt, until_dt = resolve_window(args.since, args.until, service.window_days)
    scope = f"{since_dt.date().isoformat()} to {until_dt.date().isoformat()}"
    fmt = (args.output or "text").lower()
    rendered = render(stats, fmt=fmt, scope=scope, generated_at=datetime.now(timezone.utc).isoformat())
    write_output(fmt, rendered, args.out_file, args.open)
    return 0


def _cmd_serve(args, settings, service, cache) -> int:
    host = args.host or settings['server']['host']
    port = args.port if args.port is not None else int(settings['server']['port'])
    sync_options = {
        'include_projects': settings['sync']['include_projects'],
        'include_commits': settings['sync']['include_commits'],
    }
    server = make_server(service, lambda **kw: build_client(settings, cache, **kw), host=host, port=port, sync_options=sync_options)
    serve_forever(server)
    return 0


def _add_range_args(p: argparse.ArgumentParser):
    p.add_argument("--since", type=str, default=None, help="Start date (YYYY-MM-DD or ISO-8601)")
    p.add_argument("--until", type=str, default=None, help="End date, inclusive (YYYY-MM-DD or ISO-8601)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="GitLab activity dashboard")
    parser.add_argument("--config", type=str, default=None, help="Path to settings YAML (default: config/settings.yaml)")
    parser.add_argument("--db", type=str, default=None, help="Path to the SQLite activity store (overrides GLDASH_DB)")
    parser.add_argument("--cache", type=str, default=None, help="Path to SQLite HTTP cache file (optional)")
    parser.add_argument("--log-level", type=str, default=None, help="Logging level (DEBUG, INFO, WARNING, ...)")
    parser.add_argument("--log-json", action="store_true", help="Emit JSON log lines")
    # retry/backoff knobs; GLDASH_MAX_RETRIES, GLDASH_BACKOFF_BASE, GLDASH_BACKOFF_JITTER, GLDASH_MAX_BACKOFF set defaults.
    parser.add_argument("--max-retries", type=int, default=None, help="Maximum attempts per HTTP request")
    parser.add_argument("--backoff-base", type=float, default=None, help="Base backoff seconds")
    parser.add_argument("--backoff-jitter", type=float, default=None, help="Jitter seconds added to backoff")
    parser.add_argument("--max-backoff", type=float, default=None, help="Maximum backoff cap in seconds")

    sub = parser.add_subparsers(dest="command", required=True)

    p_sync = sub.add_parser("sync", help="Pull users, events and projects from GitLab into the store")
    _add_range_args(p_sync)
    p_sync.add_argument("--url", type=str, default=None, help="GitLab base URL (overrides GITLAB_URL)")
    p_sync.add_argument("--token", type=str, default=None, help="GitLab access token (overrides GITLAB_TOKEN)")
    p_sync.add_argument("--group-id", type=str, default=None)
    p_sync.add_argument("--project-id", type=str, default=None)
    p_sync.add_argument("--commits", action="store_true", help="Also fetch commits (with line stats) for each project")
    p_sync.add_argument("--no-projects", action="store_true", help="Skip fetching projects")
    p_sync.set_defaults(func=_cmd_sync)

    sub.add_parser("users", help="List stored users").set_defaults(func=_cmd_users)

    p_events = sub.add_parser("events", help="List stored events")
    _add_range_args(p_events)
    p_events.add_argument("--user-id", type=int, default=None)
    p_events.set_defaults(func=_cmd_events)

    sub.add_parser("projects", help="List stored projects").set_defaults(func=_cmd_projects)

    p_stats = sub.add_parser("stats", help="Compute dashboard statistics from the store")
    _add_range_args(p_stats)
    p_stats.add_argument("--user-id", dest="user_ids", type=int, action="append", default=None, help="Only count this user (repeatable)")
    p_stats.add_argument("--output", type=str, default="text", help="Output format (html, md, csv, json, text)")
    p_stats.add_argument("--out-file", type=str, default="", help="Output file path. If omitted a default name will be used")
    p_stats.add_argument("--open", action="store_true", help="Open the generated HTML report in the default browser")
    p_stats.set_defaults(func=_cmd_stats)

    p_serve = sub.add_parser("serve", help="Serve the dashboard and JSON API over HTTP")
    p_serve.add_argument("--host", type=str, default=None)
    p_serve.add_argument("--port", type=int, default=None)
    p_serve.set_defaults(func=_cmd_serve)

    p_cache = sub.add_parser("cache", help="Inspect or manage the HTTP cache")
    p_cache.add_argument("cache_action", choices=["info", "list", "get", "remove", "clear"])
    p_cache.add_argument("key", nargs="?", default="", help="Cache key for get/remove")
    p_cache.add_argument("--limit", type=int, default=1000)
    p_cache.add_argument("--force", action="store_true", help="Do not ask for confirmation")
    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = load_settings(args.config)
    except ConfigurationError as ex:
        parser.error(str(ex))
    setup_logging(args.log_level or settings['logging']['level'], json_format=args.log_json or bool(settings['logging']['json']))
    configure_retry(max_retries=args.max_retries, backoff_base=args.backoff_base, backoff_jitter=args.backoff_jitter, max_backoff=args.max_backoff)

    if args.command == "cache":
        if args.cache_action in ("get", "remove") and not args.key:
            parser.error(f"cache {args.cache_action} requires a key")
        return _handle_cache_command(args, settings)

    cache_path = args.cache or settings['storage']['cache_path']
    cache = _open_cache(cache_path, settings) if cache_path else None
    store = ActivityStore(args.db or settings['storage']['db_path'])
    service = DashboardService(store, window_days=int(settings['stats']['window_days']), top_n=int(settings['stats']['top_n']))
    try:
        return args.func(args, settings, service, cache)
    except ConfigurationError as ex:
        print(f"Configuration error: {ex}", file=sys.stderr)
        return 2
    except GitLabAPIError as ex:
        print(f"GitLab request failed: {ex}", file=sys.stderr)
        return 1
    except ValueError as ex:
        print(f"Invalid input: {ex}", file=sys.stderr)
        return 2
    finally:
        store.close()
        if cache:
            cache.close()


if __name__ == "__main__":
    sys.exit(main())
