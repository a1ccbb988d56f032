#!/usr/bin/env python3
"""Deployment status snapshot and its operator-facing rendering."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from . import config_constants as const
from .bootstrap import DeploymentConfig
from .compose import ServiceState
from .console import heading, warn
from .errors import ServiceCommandError
from .settings import OrchestratorSettings


@dataclass(frozen=True)
class StatusSnapshot:
    services: tuple
    db_endpoint: str
    db_name: str
    db_user: str
    web_url: str
    api_docs_url: str
    command_hints: tuple = field(default=())

    def state_of(self, name: str) -> Optional[str]:
        for service in self.services:
            if service.name == name:
                return service.state
        return None


def build_command_hints(settings: OrchestratorSettings, db_name: str, db_user: str) -> tuple:
    compose = ' '.join(settings.compose_command or ('docker', 'compose'))
    return (
        ('View logs', f"{compose} logs -f"),
        ('Stop services', f"{compose} down"),
        ('Restart services', f"{compose} restart"),
        ('Connect to database',
         f"{compose} exec {settings.db_service} psql -U {db_user} -d {db_name}"),
    )


def report(manager, settings: OrchestratorSettings, config: Optional[DeploymentConfig] = None) -> StatusSnapshot:
    """
    Assemble the current status of the stack.

    Pure query: a failing state query marks every service ``unknown`` instead
    of raising. Without a deployment config the built-in defaults describe
    the database.
    """
    names = settings.all_services
    try:
        services = tuple(manager.status(names))
    except ServiceCommandError as e:
        warn(f"Could not query service state: {e}")
        services = tuple(ServiceState(name, 'unknown') for name in names)

    if config is None:
        db_name, db_user, db_port = (
            const.DEFAULT_DB_NAME, const.DEFAULT_DB_USER, const.DEFAULT_DB_PORT
        )
    else:
        db_name, db_user, db_port = config.db_name, config.db_user, config.db_port
    port = settings.published_db_port or db_port

    return StatusSnapshot(
        services=services,
        db_endpoint=f"{settings.published_db_host}:{port}",
        db_name=db_name,
        db_user=db_user,
        web_url=settings.web_url,
        api_docs_url=settings.web_url.rstrip('/') + settings.api_docs_path,
        command_hints=build_command_hints(settings, db_name, db_user),
    )


def format_status_lines(snapshot: StatusSnapshot) -> list:
    width = max((len(s.name) for s in snapshot.services), default=0)
    lines = [f"  {s.name:<{width}}  {s.state}" for s in snapshot.services]
    return lines


def print_status(snapshot: StatusSnapshot) -> None:
    print("", flush=True)
    heading("Deployment Status:")
    for line in format_status_lines(snapshot):
        print(line, flush=True)

    print("", flush=True)
    heading("Access Information:")
    print(f"PostgreSQL: {snapshot.db_endpoint}")
    print(f"Database: {snapshot.db_name}")
    print(f"Username: {snapshot.db_user}")
    print("Password: (check .env file)")
    print("")
    print(f"Web Application: {snapshot.web_url}")
    print(f"API Documentation: {snapshot.api_docs_url}")

    print("", flush=True)
    heading("Useful Commands:")
    for label, command in snapshot.command_hints:
        print(f"{label}: {command}")
    print("", flush=True)
