"""
Settings loading.
Defaults, overlaid by config/settings.yaml (or an explicit path), overlaid by environment variables.
"""
import copy
import os
from typing import Dict, Any, Optional, Mapping

import yaml

from ingest.exceptions import ConfigurationError

SETTINGS_FILENAME = 'settings.yaml'

DEFAULT_SETTINGS: Dict[str, Dict[str, Any]] = {
    'gitlab': {
        'url': 'https://gitlab.com',
        'token': None,
        'group_id': None,
        'project_id': None,
        'max_pages': 100,
        'per_page': 100,
        'max_workers': 4,
    },
    'storage': {
        'db_path': 'gitlab_activity.db',
        'cache_path': None,
        'cache_ttl_seconds': 3600,
        'cache_max_entries': 5000,
    },
    'stats': {
        'window_days': 30,
        'top_n': 10,
    },
    'sync': {
        'include_projects': True,
        'include_commits': False,
    },
    'server': {
        'host': '127.0.0.1',
        'port': 8080,
    },
    'logging': {
        'level': 'INFO',
        'json': False,
    },
}

# env var -> (section, key, converter)
ENV_OVERRIDES = {
    'GITLAB_URL': ('gitlab', 'url', str),
    'GITLAB_TOKEN': ('gitlab', 'token', str),
    'GITLAB_GROUP_ID': ('gitlab', 'group_id', str),
    'GITLAB_PROJECT_ID': ('gitlab', 'project_id', str),
    'GLDASH_MAX_WORKERS': ('gitlab', 'max_workers', int),
    'GLDASH_DB': ('storage', 'db_path', str),
    'GLDASH_CACHE': ('storage', 'cache_path', str),
    'GLDASH_LOG_LEVEL': ('logging', 'level', str),
}


def default_settings_path() -> str:
    return os.path.join(os.path.dirname(os.path.abspath(__file__)), 'config', SETTINGS_FILENAME)


def _merge(base: Dict[str, Dict[str, Any]], overlay: Mapping[str, Any], source: str):
    for section, values in (overlay or {}).items():
        if section not in base:
            raise ConfigurationError(f"Unknown settings section '{section}' in {source}")
        if not isinstance(values, dict):
            raise ConfigurationError(f"Settings section '{section}' in {source} must be a mapping")
        for k, v in values.items():
            if k not in base[section]:
                raise ConfigurationError(f"Unknown setting '{section}.{k}' in {source}")
            if v is not None:
                base[section][k] = v


def load_settings(path: Optional[str] = None, env: Optional[Mapping[str, str]] = None) -> Dict[str, Dict[str, Any]]:
    """
    Return the effective settings mapping.

    A missing file is fine (defaults apply); a file that is not valid YAML, or that names
    unknown sections or keys, raises ConfigurationError.
    """
    settings = copy.deepcopy(DEFAULT_SETTINGS)
    path = path or default_settings_path()
    if os.path.exists(path):
        try:
            with open(path, 'r', encoding='utf-8') as f:
                doc = yaml.safe_load(f) or {}
        except yaml.YAMLError as ex:
            raise ConfigurationError(f"Failed to parse settings file {path}: {ex}")
        if not isinstance(doc, dict):
            raise ConfigurationError(f"Settings file {path} must contain a mapping")
        _merge(settings, doc, path)

    env = os.environ if env is None else env
    for var, (section, key, conv) in ENV_OVERRIDES.items():
        raw = env.get(var)
        if raw:
            try:
                settings[section][key] = conv(raw)
            except ValueError:
                raise ConfigurationError(f"Environment variable {var}={raw!r} is not a valid {conv.__name__}")
    return settings
