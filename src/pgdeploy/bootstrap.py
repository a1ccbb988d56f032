#!/usr/bin/env python3
"""
Deployment config bootstrap.

The deployment config is a flat KEY=value file (.env) shared with docker
compose and the Django application. It is generated once, with random
secrets, the first time a deploy runs; afterwards it is only ever read.
Deleting the file is the only way to regenerate it.
"""

from __future__ import annotations

import base64
import logging
import os
import secrets
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Callable, Dict

from jinja2 import Environment, PackageLoader, StrictUndefined

from . import config_constants as const
from .console import info, success, warn
from .errors import ConfigReadError, ConfigWriteError

logger = logging.getLogger(__name__)

TokenSource = Callable[[int], bytes]

# .env key -> DeploymentConfig field, in file order
ENV_KEYS = {
    'USE_POSTGRES': 'use_postgres',
    'DB_NAME': 'db_name',
    'DB_USER': 'db_user',
    'DB_PASSWORD': 'db_password',
    'DB_HOST': 'db_host',
    'DB_PORT': 'db_port',
    'SECRET_KEY': 'secret_key',
    'DEBUG': 'debug',
    'ALLOWED_HOSTS': 'allowed_hosts',
    'REDIS_URL': 'redis_url',
    'CELERY_BROKER_URL': 'celery_broker_url',
    'CELERY_RESULT_BACKEND': 'celery_result_backend',
}

_TRUE_VALUES = {'1', 'true', 'yes', 'on'}


@dataclass(frozen=True)
class DeploymentConfig:
    """Settings persisted in the deployment .env file."""

    db_password: str
    secret_key: str
    use_postgres: bool = True
    db_name: str = const.DEFAULT_DB_NAME
    db_user: str = const.DEFAULT_DB_USER
    db_host: str = const.DEFAULT_DB_HOST
    db_port: int = const.DEFAULT_DB_PORT
    debug: bool = False
    allowed_hosts: tuple = const.DEFAULT_ALLOWED_HOSTS
    redis_url: str = const.DEFAULT_REDIS_URL
    celery_broker_url: str = const.DEFAULT_CELERY_BROKER_URL
    celery_result_backend: str = const.DEFAULT_CELERY_RESULT_BACKEND
    # Keys found in an existing file that pgdeploy does not manage
    extra: Dict[str, str] = field(default_factory=dict, compare=False)

    @classmethod
    def from_env(cls, env_vars: Dict[str, str]) -> "DeploymentConfig":
        """Build a config from parsed KEY=value pairs, defaulting missing keys."""
        values: dict = {}
        extra: Dict[str, str] = {}
        for key, raw in env_vars.items():
            name = ENV_KEYS.get(key)
            if name is None:
                extra[key] = raw
                continue
            if name in ('use_postgres', 'debug'):
                values[name] = raw.strip().lower() in _TRUE_VALUES
            elif name == 'allowed_hosts':
                values[name] = tuple(h.strip() for h in raw.split(',') if h.strip())
            elif name == 'db_port':
                try:
                    values[name] = int(raw)
                except ValueError:
                    warn(f"Ignoring non-numeric DB_PORT '{raw}', using {const.DEFAULT_DB_PORT}")
            else:
                values[name] = raw
        values.setdefault('db_password', '')
        values.setdefault('secret_key', '')
        return cls(extra=extra, **values)

    def template_context(self) -> dict:
        context = asdict(self)
        context.pop('extra')
        return context


def generate_secret(byte_length: int, token_source: TokenSource = secrets.token_bytes) -> str:
    """
    Generate a printable secret from ``byte_length`` random bytes.

    The bytes are base64 encoded, the same text shape ``openssl rand -base64``
    produces.

    Args:
        byte_length: Number of random bytes of entropy
        token_source: Callable returning ``n`` random bytes

    Returns:
        Base64 text of the random bytes

    Raises:
        ValueError: If byte_length is less than 1, or the source returned
            the wrong number of bytes
    """
    if byte_length < 1:
        raise ValueError("Secret length must be at least 1 byte")
    raw = token_source(byte_length)
    if len(raw) != byte_length:
        raise ValueError(
            f"Random source returned {len(raw)} bytes, expected {byte_length}"
        )
    return base64.b64encode(raw).decode('ascii')


def new_deployment_config(token_source: TokenSource = secrets.token_bytes) -> DeploymentConfig:
    """Create a config with fresh secrets and default values for the rest."""
    return DeploymentConfig(
        db_password=generate_secret(const.DB_PASSWORD_BYTES, token_source),
        secret_key=generate_secret(const.SECRET_KEY_BYTES, token_source),
    )


def parse_env_text(text: str, source: str = '<string>') -> Dict[str, str]:
    """
    Parse KEY=value lines.

    Blank lines and ``#`` comments are skipped, surrounding quotes are
    stripped from values. Lines without ``=`` are skipped with a warning.
    """
    env_vars: Dict[str, str] = {}
    for line_num, line in enumerate(text.splitlines(), 1):
        line = line.strip()

        if not line or line.startswith('#'):
            continue

        if '=' not in line:
            warn(f"Skipping invalid line {line_num} in {source}: '{line}'")
            continue

        key, val = line.split('=', 1)
        key = key.strip()
        val = val.strip()

        if len(val) >= 2 and val[0] == val[-1] and val[0] in ('"', "'"):
            val = val[1:-1]

        env_vars[key] = val
    return env_vars


def load_deployment_config(path: Path) -> DeploymentConfig:
    """
    Read and parse an existing deployment config file.

    Raises:
        ConfigReadError: If the file cannot be read or is not valid UTF-8
    """
    try:
        text = Path(path).read_text(encoding='utf-8')
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigReadError(f"Cannot read {path}: {e}") from e
    return DeploymentConfig.from_env(parse_env_text(text, str(path)))


def render_env_file(config: DeploymentConfig) -> str:
    """Render the .env file contents from the packaged template."""
    environment = Environment(
        loader=PackageLoader('pgdeploy', 'templates'),
        undefined=StrictUndefined,
        keep_trailing_newline=True,
    )
    template = environment.get_template(const.ENV_TEMPLATE)
    rendered = template.render(**config.template_context())
    logger.debug(f"Rendered {const.ENV_TEMPLATE}: {len(rendered)} bytes")
    return rendered


def write_env_file(path: Path, content: str) -> None:
    """
    Write the config file atomically with owner-only permissions.

    Raises:
        ConfigWriteError: If the directory or file cannot be created
    """
    path = Path(path)
    tmp = path.with_name(path.name + '.tmp')
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, 'w', encoding='utf-8', newline='\n') as f:
            f.write(content)
        os.replace(tmp, path)
    except OSError as e:
        if tmp.exists():
            tmp.unlink()
        raise ConfigWriteError(f"Cannot write {path}: {e}") from e


def ensure_config(path: Path, token_source: TokenSource = secrets.token_bytes) -> DeploymentConfig:
    """
    Return the deployment config at ``path``, creating it first if absent.

    An existing file is parsed and returned as-is; it is never rewritten.

    Args:
        path: Location of the .env file
        token_source: Random byte source used for new secrets

    Returns:
        The deployment config

    Raises:
        ConfigReadError: If the file exists but cannot be read
        ConfigWriteError: If the file is absent and cannot be created
    """
    path = Path(path)
    if path.exists():
        success(f"{path.name} file already exists")
        return load_deployment_config(path)

    warn(f"{path.name} file not found. Creating with generated secrets...")
    config = new_deployment_config(token_source)
    write_env_file(path, render_env_file(config))
    success(f"Created {path.name} file with secure random passwords")
    info(f"Config written to {path}")
    return config
