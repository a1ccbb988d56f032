#!/usr/bin/env python3
"""
Docker Compose service manager.

All interaction with running services goes through ComposeServiceManager:
starting and stopping services, querying their state, streaming logs and
executing commands inside containers. Services are addressed by their compose
service name only; containers and processes belong to docker.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Optional, Sequence

from . import config_constants as const
from .console import info
from .errors import LaunchError, PrerequisiteError, ServiceCommandError

logger = logging.getLogger(__name__)

COMPOSE_V2 = ('docker', 'compose')
COMPOSE_V1 = ('docker-compose',)

RUNNING_STATES = {'running'}


@dataclass(frozen=True)
class ServiceState:
    name: str
    state: str

    @property
    def is_running(self) -> bool:
        return self.state.lower() in RUNNING_STATES


def detect_compose_command() -> tuple:
    """
    Pick the compose CLI: the docker compose plugin (v2) when available,
    otherwise the standalone docker-compose binary (v1).

    Raises:
        PrerequisiteError: If neither is installed
    """
    if shutil.which('docker'):
        try:
            result = subprocess.run(
                [*COMPOSE_V2, 'version'],
                capture_output=True,
                text=True,
                timeout=10
            )
            if result.returncode == 0:
                return COMPOSE_V2
        except (FileNotFoundError, subprocess.TimeoutExpired):
            logger.debug("docker compose plugin not usable")
    if shutil.which('docker-compose'):
        return COMPOSE_V1
    raise PrerequisiteError(
        "Docker Compose is not installed. Please install Docker and Docker Compose first."
    )


def check_runtime_dependencies(compose_command: Sequence[str]) -> None:
    """
    Validate that docker and the selected compose CLI respond.

    Set SKIP_DEPENDENCY_CHECK=1 to bypass the check.

    Raises:
        PrerequisiteError: If a required binary is missing or broken
    """
    if os.getenv('SKIP_DEPENDENCY_CHECK') == '1':
        return

    checks = [
        (['docker', '--version'], 'Docker'),
        ([*compose_command, 'version'], 'Docker Compose'),
    ]
    for cmd, name in checks:
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=10)
        except (FileNotFoundError, subprocess.TimeoutExpired) as e:
            raise PrerequisiteError(f"{name} is not installed. Please install {name} first.") from e
        if result.returncode != 0:
            raise PrerequisiteError(
                f"{name} is not working (exit {result.returncode}): {' '.join(cmd)}"
            )
        info(f"{name} is installed")


def parse_ps_output(text: str) -> Dict[str, str]:
    """
    Parse ``compose ps --format json`` output into {service: state}.

    Compose releases differ: older ones print a single JSON array, newer ones
    one JSON object per line. Both are accepted.
    """
    text = text.strip()
    if not text:
        return {}

    if text.startswith('['):
        entries = json.loads(text)
    else:
        entries = [json.loads(line) for line in text.splitlines() if line.strip()]

    states: Dict[str, str] = {}
    for entry in entries:
        service = entry.get('Service') or entry.get('Name')
        if not service:
            continue
        states[service] = str(entry.get('State', 'unknown'))
    return states


class ComposeServiceManager:
    """Issue docker compose commands for one project directory."""

    def __init__(
        self,
        project_dir: Path,
        compose_command: Optional[Sequence[str]] = None,
        compose_file: Optional[str] = None,
        project_name: Optional[str] = None,
        env_file: Optional[str] = None,
    ) -> None:
        self.project_dir = Path(project_dir)
        self._compose_command = tuple(compose_command) if compose_command else None
        self.compose_file = compose_file
        self.project_name = project_name
        self.env_file = env_file

    @property
    def compose_command(self) -> tuple:
        if self._compose_command is None:
            self._compose_command = detect_compose_command()
            logger.debug(f"Using compose command: {' '.join(self._compose_command)}")
        return self._compose_command

    def check_prerequisites(self) -> None:
        check_runtime_dependencies(self.compose_command)

    def base_command(self) -> list:
        cmd = list(self.compose_command)
        if self.compose_file:
            cmd += ['-f', self.compose_file]
        if self.project_name:
            cmd += ['-p', self.project_name]
        if self.env_file and self.env_file != const.ENV_FILE:
            cmd += ['--env-file', self.env_file]
        return cmd

    def _run(self, args: Sequence[str], capture: bool = True, **kwargs) -> subprocess.CompletedProcess:
        cmd = self.base_command() + list(args)
        logger.debug(f"Running: {' '.join(cmd)}")
        try:
            if capture:
                return subprocess.run(
                    cmd, cwd=self.project_dir, capture_output=True, text=True, **kwargs
                )
            return subprocess.run(cmd, cwd=self.project_dir, **kwargs)
        except FileNotFoundError as e:
            raise PrerequisiteError(f"Command not found: {cmd[0]}") from e

    @staticmethod
    def _diagnostic(result: subprocess.CompletedProcess) -> str:
        for stream in (getattr(result, 'stderr', None), getattr(result, 'stdout', None)):
            if isinstance(stream, str) and stream.strip():
                return stream.strip()
        return f"exit code {result.returncode}"

    def start(self, names: Iterable[str]) -> None:
        """
        Start the named services detached and return without waiting.

        Raises:
            LaunchError: If compose reports a non-zero exit
        """
        names = list(names)
        info(f"Starting services: {', '.join(names)}")
        result = self._run(['up', '-d', *names])
        if result.returncode != 0:
            raise LaunchError(
                f"Failed to start {', '.join(names)}: {self._diagnostic(result)}"
            )

    def stop(self) -> None:
        """Stop and remove all project containers; volumes are kept."""
        result = self._run(['down'])
        if result.returncode != 0:
            raise ServiceCommandError(f"Failed to stop services: {self._diagnostic(result)}")

    def restart(self, names: Iterable[str] = ()) -> None:
        result = self._run(['restart', *names])
        if result.returncode != 0:
            raise ServiceCommandError(f"Failed to restart services: {self._diagnostic(result)}")

    def status(self, names: Iterable[str]) -> list:
        """
        Query the state of each named service.

        Services compose does not know about are reported as ``not created``.

        Raises:
            ServiceCommandError: If the state query fails or returns garbage
        """
        result = self._run(['ps', '--all', '--format', 'json'])
        if result.returncode != 0:
            raise ServiceCommandError(f"Failed to query service state: {self._diagnostic(result)}")
        try:
            states = parse_ps_output(result.stdout or '')
        except (json.JSONDecodeError, AttributeError) as e:
            raise ServiceCommandError(f"Unreadable service state output: {e}") from e
        return [ServiceState(name, states.get(name, 'not created')) for name in names]

    def logs(self, follow: bool = True, tail: Optional[int] = None) -> None:
        """Stream service logs to the terminal until they end or the operator interrupts."""
        args = ['logs']
        if follow:
            args.append('-f')
        if tail is not None:
            args += ['--tail', str(tail)]
        result = self._run(args, capture=False)
        if result.returncode != 0:
            raise ServiceCommandError(f"Log streaming exited with code {result.returncode}")

    def exec(
        self, service: str, command: Sequence[str], timeout: Optional[float] = None
    ) -> subprocess.CompletedProcess:
        """
        Execute a command in the running container of ``service``.

        No TTY is allocated and output is captured.

        Raises:
            subprocess.TimeoutExpired: If ``timeout`` seconds pass first
        """
        return self._run(['exec', '-T', service, *command], timeout=timeout)

    def run(self, service: str, command: Sequence[str], interactive: bool = False) -> subprocess.CompletedProcess:
        """Run a command in a one-off container of ``service``, removed afterwards."""
        if interactive:
            return self._run(['run', '--rm', service, *command], capture=False)
        return self._run(['run', '--rm', '-T', service, *command])

    def dump(self, service: str, command: Sequence[str], output_path: Path) -> subprocess.CompletedProcess:
        """Execute ``command`` in ``service`` writing its stdout into ``output_path``."""
        # Resolve the compose CLI before the output file exists
        compose_command = self.compose_command
        logger.debug(f"Dumping {service} with {' '.join(compose_command)} into {output_path}")
        with open(output_path, 'wb') as out:
            return self._run(
                ['exec', '-T', service, *command],
                capture=False,
                stdout=out,
                stderr=subprocess.PIPE,
            )
