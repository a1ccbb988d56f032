#!/usr/bin/env python3
"""
Stack orchestration steps and the actions behind each CLI verb.

Deploy runs the steps in dependency order:

    prerequisites -> config bootstrap -> start db + cache -> wait for db
    -> migrations -> optional superuser -> status

Any step failing with a fatal DeploymentError ends the sequence; services
already started are left running for inspection. A failed superuser
provisioning is only reported, since an account can be created later.
"""

from __future__ import annotations

import logging
import secrets
import subprocess
import time
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, Optional

from . import config_constants as const
from .bootstrap import DeploymentConfig, TokenSource, ensure_config, load_deployment_config
from .console import info, success, warn
from .errors import BackupError, ConfigReadError, MigrationError, ProvisionError
from .readiness import ReadinessPoll, wait_until_ready
from .settings import OrchestratorSettings
from .status import StatusSnapshot, print_status, report

logger = logging.getLogger(__name__)


def _diagnostic(result) -> str:
    for stream in (getattr(result, 'stderr', None), getattr(result, 'stdout', None)):
        if isinstance(stream, bytes):
            stream = stream.decode('utf-8', errors='replace')
        if isinstance(stream, str) and stream.strip():
            return stream.strip()
    return f"exit code {result.returncode}"


def start_services(manager, names: Iterable[str]) -> None:
    """Ask the service manager to start ``names``; readiness is not awaited."""
    names = list(names)
    info("Deploying PostgreSQL with Docker Compose...")
    manager.start(names)
    success(f"Started {', '.join(names)}")


def database_probe(manager, settings: OrchestratorSettings, config: DeploymentConfig) -> Callable[[], bool]:
    """
    Build a probe that is True once pg_isready accepts the configured user.

    Each call is capped at the probe timeout (never more than the whole
    readiness budget); a call that runs out counts as not ready.
    """
    command = ['pg_isready', '-U', config.db_user]
    timeout = min(const.DEFAULT_PROBE_TIMEOUT, settings.readiness_timeout)

    def probe() -> bool:
        try:
            result = manager.exec(settings.db_service, command, timeout=timeout)
        except subprocess.TimeoutExpired:
            logger.debug(f"pg_isready did not answer within {timeout:g}s")
            return False
        return result.returncode == 0

    return probe


def wait_for_database(
    manager,
    settings: OrchestratorSettings,
    config: DeploymentConfig,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> ReadinessPoll:
    return wait_until_ready(
        'PostgreSQL',
        database_probe(manager, settings, config),
        interval=settings.readiness_interval,
        timeout=settings.readiness_timeout,
        sleep=sleep,
        clock=clock,
    )


def run_migrations(manager, settings: OrchestratorSettings, sleep: Callable[[float], None] = time.sleep) -> None:
    """
    Run the schema migration command once in a one-off app container.

    A settle delay precedes the command: a database that accepts connections
    may still be finishing its own initialisation.

    Raises:
        MigrationError: If the migration command fails
    """
    info("Running database migrations...")
    if settings.settle_delay > 0:
        logger.debug(f"Settling for {settings.settle_delay:g}s before migrating")
        sleep(settings.settle_delay)

    result = manager.run(settings.app_service, settings.migrate_command)
    if result.returncode != 0:
        raise MigrationError(
            f"'{' '.join(settings.migrate_command)}' failed: {_diagnostic(result)}"
        )
    for line in (result.stdout or '').splitlines():
        logger.debug(f"  [MIGRATE] {line}")
    success("Database migrations completed")


def maybe_provision_account(manager, settings: OrchestratorSettings, confirm: Callable[[], bool]) -> bool:
    """
    Offer to create the Django superuser.

    Returns:
        True if an account was provisioned, False if the operator declined

    Raises:
        ProvisionError: If the provisioning command fails
    """
    if not confirm():
        info("Skipping superuser creation")
        return False

    result = manager.run(settings.app_service, settings.superuser_command, interactive=True)
    if result.returncode != 0:
        raise ProvisionError(f"createsuperuser exited with code {result.returncode}")
    success("Superuser created")
    return True


def backup_filename(now: datetime) -> str:
    return f"{const.BACKUP_PREFIX}{now.strftime(const.BACKUP_TIMESTAMP_FORMAT)}{const.BACKUP_SUFFIX}"


def create_backup(
    manager,
    settings: OrchestratorSettings,
    config: DeploymentConfig,
    now: Callable[[], datetime] = datetime.now,
) -> Path:
    """
    Dump the database into a timestamped .sql file.

    A failed dump leaves no partial file behind.

    Raises:
        BackupError: If the dump command fails or the file cannot be written
    """
    info("Creating database backup...")
    backup_dir = settings.backup_path
    output_path = backup_dir / backup_filename(now())
    command = ['pg_dump', '-U', config.db_user, config.db_name]

    try:
        backup_dir.mkdir(parents=True, exist_ok=True)
        result = manager.dump(settings.db_service, command, output_path)
    except OSError as e:
        output_path.unlink(missing_ok=True)
        raise BackupError(f"Cannot write {output_path}: {e}") from e
    except BaseException:
        # Interrupted or failed before pg_dump finished
        output_path.unlink(missing_ok=True)
        raise

    if result.returncode != 0:
        output_path.unlink(missing_ok=True)
        raise BackupError(f"pg_dump failed: {_diagnostic(result)}")

    success(f"Backup created: {output_path}")
    return output_path


class StackOrchestrator:
    """
    Runs the action for each verb against one project.

    Collaborators are injected so the whole surface can be driven without a
    terminal or docker: ``confirm`` answers the superuser question, ``sleep``
    and ``clock`` drive the readiness loop, ``token_source`` feeds secret
    generation and ``now`` names backup files.
    """

    def __init__(
        self,
        settings: OrchestratorSettings,
        manager,
        confirm: Callable[[], bool] = lambda: False,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        token_source: TokenSource = secrets.token_bytes,
        now: Callable[[], datetime] = datetime.now,
        follow_logs: bool = True,
        log_tail: Optional[int] = None,
    ) -> None:
        self.settings = settings
        self.manager = manager
        self.confirm = confirm
        self.sleep = sleep
        self.clock = clock
        self.token_source = token_source
        self.now = now
        self.follow_logs = follow_logs
        self.log_tail = log_tail

    def _existing_config(self) -> Optional[DeploymentConfig]:
        env_path = self.settings.env_path
        if env_path.exists():
            return load_deployment_config(env_path)
        return None

    def deploy(self) -> StatusSnapshot:
        info("Starting PostgreSQL deployment...")
        self.manager.check_prerequisites()
        config = ensure_config(self.settings.env_path, self.token_source)
        start_services(self.manager, self.settings.dependency_services)
        wait_for_database(self.manager, self.settings, config, self.sleep, self.clock)
        run_migrations(self.manager, self.settings, self.sleep)
        try:
            maybe_provision_account(self.manager, self.settings, self.confirm)
        except ProvisionError as e:
            warn(f"Superuser provisioning failed, continuing: {e}")
            warn("Create the account later with the app's createsuperuser command")
        snapshot = self.status(config)
        success("PostgreSQL deployment completed successfully!")
        return snapshot

    def status(self, config: Optional[DeploymentConfig] = None) -> StatusSnapshot:
        if config is None:
            try:
                config = self._existing_config()
            except ConfigReadError as e:
                warn(f"{e.message}; showing default database settings")
        snapshot = report(self.manager, self.settings, config)
        print_status(snapshot)
        return snapshot

    def logs(self) -> None:
        self.manager.logs(follow=self.follow_logs, tail=self.log_tail)

    def stop(self) -> None:
        self.manager.stop()
        success("Services stopped")

    def restart(self) -> None:
        self.manager.restart()
        success("Services restarted")

    def backup(self) -> Path:
        config = self._existing_config()
        if config is None:
            warn(f"{self.settings.env_file} not found, using default database name and user")
            config = DeploymentConfig(db_password='', secret_key='')
        return create_backup(self.manager, self.settings, config, self.now)
