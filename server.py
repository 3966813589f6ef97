"""
HTTP front end for the dashboard.

Routes (an optional /api prefix is accepted on all of them):
    POST /sync       pull from GitLab into the store
    GET  /users      stored users
    GET  /events     stored events (?since=&until=&userId=)
    GET  /projects   stored projects
    GET  /stats      DashboardStats JSON (?since=&until=&userIds=1,2, default last 30 days, all users)
    GET  /health     liveness
    GET  /           HTML dashboard (same query parameters as /stats)
"""
import json
import logging
from datetime import datetime, timezone
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Callable, Dict, Any, List, Optional
from urllib.parse import urlparse, parse_qs

from ingest.exceptions import ConfigurationError, GitLabAPIError
from ingest.gitlab import GitLabClient
from report.renderer import render
from service import DashboardService

logger = logging.getLogger(__name__)

# POST /sync body field -> build_client keyword
SYNC_BODY_FIELDS = {'baseUrl': 'url', 'privateToken': 'token', 'groupId': 'group_id', 'projectId': 'project_id'}


def _query(qs: Dict[str, list], name: str) -> Optional[str]:
    values = qs.get(name)
    return values[0] if values else None


def _user_ids(qs: Dict[str, list]) -> Optional[List[int]]:
    """Parse ?userIds=1,2,3 (the parameter may also repeat); None means every user."""
    raw = [part.strip() for value in qs.get('userIds', []) for part in value.split(',') if part.strip()]
    if not raw:
        return None
    try:
        return [int(part) for part in raw]
    except ValueError:
        raise ValueError(f"userIds must be comma-separated integers, got {','.join(raw)!r}")


def make_handler(service: DashboardService, client_factory: Callable[..., GitLabClient], sync_options: Optional[Dict[str, Any]] = None):
    """Build a request handler class bound to service; client_factory(**overrides) creates GitLab clients for /sync."""
    sync_options = dict(sync_options or {})

    class DashboardHandler(BaseHTTPRequestHandler):
        server_version = 'GitLabActivityDashboard/1.0'

        def log_message(self, format, *args):
            logger.debug("%s - %s", self.address_string(), format % args)

        def _send(self, status: int, body: str, content_type: str):
            data = body.encode('utf-8')
            self.send_response(status)
            self.send_header('Content-Type', content_type)
            self.send_header('Content-Length', str(len(data)))
            self.end_headers()
            self.wfile.write(data)

        def _json(self, status: int, payload: Any):
            self._send(status, json.dumps(payload, default=str), 'application/json')

        def _route(self):
            parsed = urlparse(self.path)
            path = parsed.path.rstrip('/') or '/'
            if path.startswith('/api/') or path == '/api':
                path = path[4:] or '/'
            return path, parse_qs(parsed.query)

        def do_GET(self):
            path, qs = self._route()
            try:
                if path == '/health':
                    self._json(200, {'status': 'ok'})
                elif path == '/users':
                    self._json(200, [u.to_dict() for u in service.list_users()])
                elif path == '/events':
                    events = service.list_events(_query(qs, 'since'), _query(qs, 'until'), _query(qs, 'userId'))
                    self._json(200, [e.to_dict() for e in events])
                elif path == '/projects':
                    self._json(200, [p.to_dict() for p in service.list_projects()])
                elif path == '/stats':
                    self._json(200, service.get_stats(_query(qs, 'since'), _query(qs, 'until'), user_ids=_user_ids(qs)).to_dict())
                elif path == '/':
                    since, until = _query(qs, 'since'), _query(qs, 'until')
                    stats = service.get_stats(since, until, user_ids=_user_ids(qs))
                    scope = f"{since or 'last %d days' % service.window_days} to {until or 'now'}"
                    html = render(stats, fmt='html', scope=scope, generated_at=datetime.now(timezone.utc).isoformat())
                    self._send(200, html, 'text/html; charset=utf-8')
                else:
                    self._json(404, {'error': f'Not found: {path}'})
            except ValueError as ex:
                self._json(400, {'error': str(ex)})
            except Exception:
                logger.exception("GET %s failed", path)
                self._json(500, {'error': f'Failed to handle {path}'})

        def _read_json_body(self) -> Dict[str, Any]:
            length = int(self.headers.get('Content-Length') or 0)
            if not length:
                return {}
            body = json.loads(self.rfile.read(length).decode('utf-8'))
            if not isinstance(body, dict):
                raise ValueError('Request body must be a JSON object')
            return body

        def do_POST(self):
            path, _ = self._route()
            if path != '/sync':
                self._json(404, {'error': f'Not found: {path}'})
                return
            try:
                body = self._read_json_body()
                overrides = {kw: body.get(field) for field, kw in SYNC_BODY_FIELDS.items()}
                client = client_factory(**overrides)
                result = service.sync(client, body.get('since'), body.get('until'), **sync_options)
            except (ValueError, ConfigurationError) as ex:
                self._json(400, {'error': str(ex) or 'baseUrl and privateToken are required'})
                return
            except GitLabAPIError as ex:
                logger.error("sync failed: %s", ex)
                self._json(502, {'error': 'Failed to sync data from GitLab', 'detail': str(ex), 'status': ex.status})
                return
            except Exception:
                logger.exception("POST %s failed", path)
                self._json(500, {'error': 'Failed to sync data from GitLab'})
                return
            self._json(200, result)

    return DashboardHandler


def make_server(service: DashboardService, client_factory: Callable[..., GitLabClient], host: str = '127.0.0.1', port: int = 8080, sync_options: Optional[Dict[str, Any]] = None) -> ThreadingHTTPServer:
    return ThreadingHTTPServer((host, port), make_handler(service, client_factory, sync_options))


def serve_forever(server: ThreadingHTTPServer):
    host, port = server.server_address[:2]
    logger.info("dashboard listening on http://%s:%s/", host, port)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("shutting down")
    finally:
        server.server_close()
