#!/usr/bin/env python3
"""
Error taxonomy for pgdeploy.

Every failure a verb can end with is a DeploymentError subclass carrying the
process exit code the CLI returns for it. ProvisionError is the only one the
deploy sequence recovers from.
"""

from __future__ import annotations


class DeploymentError(Exception):
    """Base class for orchestration failures."""

    exit_code = 1
    step = "deployment"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class UnknownCommandError(DeploymentError):
    exit_code = 2
    step = "command dispatch"

    def __init__(self, verb: str) -> None:
        super().__init__(f"Unknown command: {verb}")
        self.verb = verb


class ConfigWriteError(DeploymentError):
    exit_code = 3
    step = "configuration bootstrap"


class LaunchError(DeploymentError):
    exit_code = 4
    step = "service launch"


class ReadinessTimeoutError(DeploymentError):
    """Raised when a service never reported ready within its time budget."""

    exit_code = 5
    step = "readiness check"

    def __init__(self, service: str, timeout: float, attempts: int) -> None:
        super().__init__(
            f"{service} failed to become ready within {timeout:g} seconds "
            f"({attempts} attempts)"
        )
        self.service = service
        self.timeout = timeout
        self.attempts = attempts


class MigrationError(DeploymentError):
    exit_code = 6
    step = "database migrations"


class BackupError(DeploymentError):
    exit_code = 7
    step = "database backup"


class ServiceCommandError(DeploymentError):
    """Raised when stop, restart or logs could not be carried out."""

    exit_code = 8
    step = "service command"


class PrerequisiteError(DeploymentError):
    exit_code = 9
    step = "prerequisite check"


class SettingsError(DeploymentError):
    exit_code = 10
    step = "settings"


class ProvisionError(DeploymentError):
    """Superuser provisioning failed. Logged; the deploy sequence continues."""

    exit_code = 11
    step = "superuser provisioning"


class ConfigReadError(DeploymentError):
    """An existing deployment config file could not be read or decoded."""

    exit_code = 12
    step = "configuration load"


INTERRUPTED_EXIT_CODE = 130
