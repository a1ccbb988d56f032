#!/usr/bin/env python3
"""
Orchestrator settings.

Settings describe how to drive the stack (file locations, service names,
timing, commands). They are distinct from the deployment config (.env), which
holds the values the stack itself runs with.

Resolution order, last wins:
1. Built-in defaults (config_constants)
2. pgdeploy.toml in the project directory, when present
3. Command-line overrides
"""

from __future__ import annotations

import logging
import shlex
import tomllib
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional

import tomli_w

from . import config_constants as const
from .errors import SettingsError

logger = logging.getLogger(__name__)

# TOML section -> {toml key: settings field}
SETTINGS_LAYOUT: Dict[str, Dict[str, str]] = {
    'deploy': {
        'env_file': 'env_file',
        'compose_command': 'compose_command',
        'compose_file': 'compose_file',
        'project_name': 'project_name',
    },
    'services': {
        'database': 'db_service',
        'cache': 'cache_service',
        'app': 'app_service',
    },
    'readiness': {
        'interval': 'readiness_interval',
        'timeout': 'readiness_timeout',
        'settle_delay': 'settle_delay',
    },
    'commands': {
        'migrate': 'migrate_command',
        'superuser': 'superuser_command',
    },
    'backup': {
        'directory': 'backup_dir',
    },
    'access': {
        'db_host': 'published_db_host',
        'db_port': 'published_db_port',
        'web_url': 'web_url',
        'api_docs_path': 'api_docs_path',
    },
}

_COMMAND_FIELDS = {'compose_command', 'migrate_command', 'superuser_command'}
_FLOAT_FIELDS = {'readiness_interval', 'readiness_timeout', 'settle_delay'}


@dataclass(frozen=True)
class OrchestratorSettings:
    project_dir: Path = Path('.')
    env_file: str = const.ENV_FILE
    compose_command: Optional[tuple] = None  # None: autodetect
    compose_file: Optional[str] = None
    project_name: Optional[str] = None
    db_service: str = const.DB_SERVICE
    cache_service: str = const.CACHE_SERVICE
    app_service: str = const.APP_SERVICE
    readiness_interval: float = const.DEFAULT_READINESS_INTERVAL
    readiness_timeout: float = const.DEFAULT_READINESS_TIMEOUT
    settle_delay: float = const.DEFAULT_SETTLE_DELAY
    migrate_command: tuple = const.DEFAULT_MIGRATE_COMMAND
    superuser_command: tuple = const.DEFAULT_SUPERUSER_COMMAND
    backup_dir: str = '.'
    published_db_host: str = const.DEFAULT_PUBLISHED_DB_HOST
    published_db_port: Optional[int] = None  # None: DB_PORT from .env
    web_url: str = const.DEFAULT_WEB_URL
    api_docs_path: str = const.DEFAULT_API_DOCS_PATH

    @property
    def env_path(self) -> Path:
        return self.project_dir / self.env_file

    @property
    def backup_path(self) -> Path:
        return self.project_dir / self.backup_dir

    @property
    def dependency_services(self) -> tuple:
        """Services started before migrations (everything but the app server)."""
        return (self.db_service, self.cache_service)

    @property
    def all_services(self) -> tuple:
        return (self.db_service, self.cache_service, self.app_service)

    def validate(self) -> "OrchestratorSettings":
        """
        Check value ranges.

        Raises:
            SettingsError: If a timing value is out of range or a command is empty
        """
        if self.readiness_interval <= 0:
            raise SettingsError("readiness.interval must be greater than 0")
        if self.readiness_timeout <= 0:
            raise SettingsError("readiness.timeout must be greater than 0")
        if self.settle_delay < 0:
            raise SettingsError("readiness.settle_delay must not be negative")
        if not self.migrate_command:
            raise SettingsError("commands.migrate must not be empty")
        if not self.superuser_command:
            raise SettingsError("commands.superuser must not be empty")
        if self.compose_command is not None and not self.compose_command:
            raise SettingsError("deploy.compose_command must not be empty")
        return self


def _coerce(field_name: str, value: Any, source: str) -> Any:
    if field_name in _COMMAND_FIELDS:
        if isinstance(value, str):
            return tuple(shlex.split(value))
        if isinstance(value, list) and all(isinstance(item, str) for item in value):
            return tuple(value)
        raise SettingsError(f"{source}: {field_name} must be a string or a list of strings")
    if field_name in _FLOAT_FIELDS:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise SettingsError(f"{source}: {field_name} must be a number")
        return float(value)
    if field_name == 'published_db_port':
        if isinstance(value, bool) or not isinstance(value, int):
            raise SettingsError(f"{source}: {field_name} must be an integer")
        return value
    if not isinstance(value, str):
        raise SettingsError(f"{source}: {field_name} must be a string")
    return value


def settings_from_dict(data: dict, project_dir: Path, source: str = '<dict>') -> OrchestratorSettings:
    """
    Build settings from a parsed pgdeploy.toml document.

    Raises:
        SettingsError: On unknown sections or keys, or mistyped values
    """
    values: Dict[str, Any] = {}
    for section, table in data.items():
        layout = SETTINGS_LAYOUT.get(section)
        if layout is None or not isinstance(table, dict):
            raise SettingsError(f"{source}: unknown section [{section}]")
        for key, value in table.items():
            field_name = layout.get(key)
            if field_name is None:
                raise SettingsError(f"{source}: unknown key '{key}' in [{section}]")
            values[field_name] = _coerce(field_name, value, source)
    return OrchestratorSettings(project_dir=project_dir, **values)


def load_settings(project_dir: Path, overrides: Optional[Dict[str, Any]] = None) -> OrchestratorSettings:
    """
    Load settings for ``project_dir`` and apply command-line overrides.

    Args:
        project_dir: Directory holding docker-compose.yml and .env
        overrides: Settings field values; ``None`` entries are ignored

    Returns:
        Validated settings

    Raises:
        SettingsError: If pgdeploy.toml is invalid or a value is out of range
    """
    project_dir = Path(project_dir)
    settings_path = project_dir / const.SETTINGS_FILE
    if settings_path.exists():
        logger.debug(f"Loading settings from {settings_path}")
        try:
            with open(settings_path, 'rb') as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise SettingsError(f"Invalid TOML in {settings_path}: {e}") from e
        settings = settings_from_dict(data, project_dir, str(settings_path))
    else:
        settings = OrchestratorSettings(project_dir=project_dir)

    if overrides:
        known = {f.name for f in fields(OrchestratorSettings)}
        applied = {k: v for k, v in overrides.items() if v is not None}
        unknown = set(applied) - known
        if unknown:
            raise SettingsError(f"Unknown settings: {', '.join(sorted(unknown))}")
        settings = replace(settings, **applied)
    return settings.validate()


def settings_to_toml(settings: OrchestratorSettings) -> str:
    """Render settings as a pgdeploy.toml document. Unset values are omitted."""
    document: Dict[str, Dict[str, Any]] = {}
    for section, layout in SETTINGS_LAYOUT.items():
        table: Dict[str, Any] = {}
        for key, field_name in layout.items():
            value = getattr(settings, field_name)
            if value is None:
                continue
            table[key] = list(value) if isinstance(value, tuple) else value
        if table:
            document[section] = table
    return tomli_w.dumps(document)
