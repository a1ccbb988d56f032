#!/usr/bin/env python3
"""
pgdeploy StackOrchestrator tests.

Drive every verb against an in-memory service manager and a fake clock, so no
docker daemon or terminal is involved.
"""

import subprocess
from datetime import datetime
from pathlib import Path

import pytest
import sys

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))
from pgdeploy.bootstrap import parse_env_text  # noqa: E402
from pgdeploy.dispatcher import dispatch  # noqa: E402
from pgdeploy.errors import (  # noqa: E402
    BackupError,
    ConfigReadError,
    ConfigWriteError,
    LaunchError,
    MigrationError,
    PrerequisiteError,
    ReadinessTimeoutError,
    ServiceCommandError,
)
from pgdeploy.orchestrator import StackOrchestrator, backup_filename  # noqa: E402
from pgdeploy.settings import OrchestratorSettings  # noqa: E402

from fake_services import FakeClock, FakeServiceManager  # noqa: E402

MIGRATE = ("python", "manage.py", "migrate")
SUPERUSER = ("python", "manage.py", "createsuperuser")


def _orchestrator(
    tmp_path, manager, clock=None, readiness_timeout=60.0, settle_delay=5.0, env_file=".env", **kwargs
):
    settings = OrchestratorSettings(
        project_dir=tmp_path,
        env_file=env_file,
        readiness_timeout=readiness_timeout,
        settle_delay=settle_delay,
    )
    clock = clock or FakeClock()
    return StackOrchestrator(settings, manager, sleep=clock.sleep, clock=clock, **kwargs)


class TestDeploy:
    def test_fresh_deploy_runs_steps_in_order(self, tmp_path):
        manager = FakeServiceManager(probe_results=[False] * 3)
        clock = FakeClock()
        orchestrator = _orchestrator(tmp_path, manager, clock)

        assert dispatch("deploy", orchestrator) == 0

        assert (tmp_path / ".env").exists()
        assert manager.calls[0] == ("check_prerequisites",)
        assert manager.calls[1] == ("start", ("db", "redis"))
        execs = [c for c in manager.calls if c[0] == "exec"]
        assert len(execs) == 4
        assert all(c[1:] == ("db", ("pg_isready", "-U", "postgres")) for c in execs)
        runs = [c for c in manager.calls if c[0] == "run"]
        assert runs == [("run", "web", MIGRATE, False)]
        assert manager.call_names()[-1] == "status"
        assert clock.sleeps == [1.0, 1.0, 1.0, 5.0]

    def test_deploy_snapshot_reports_running_services(self, tmp_path):
        orchestrator = _orchestrator(tmp_path, FakeServiceManager())

        snapshot = orchestrator.deploy()

        assert snapshot.state_of("db") == "running"
        assert snapshot.state_of("redis") == "running"
        assert snapshot.state_of("web") == "exited"
        assert snapshot.db_endpoint == "localhost:5432"

    def test_existing_env_drives_probe_user(self, tmp_path):
        (tmp_path / ".env").write_text("DB_USER=app\nDB_PASSWORD=x\nSECRET_KEY=y\n")
        manager = FakeServiceManager()

        _orchestrator(tmp_path, manager).deploy()

        assert ("exec", "db", ("pg_isready", "-U", "app")) in manager.calls
        assert (tmp_path / ".env").read_text() == "DB_USER=app\nDB_PASSWORD=x\nSECRET_KEY=y\n"

    def test_second_deploy_keeps_secrets(self, tmp_path):
        _orchestrator(tmp_path, FakeServiceManager()).deploy()
        first = parse_env_text((tmp_path / ".env").read_text())

        _orchestrator(tmp_path, FakeServiceManager()).deploy()

        assert parse_env_text((tmp_path / ".env").read_text()) == first

    def test_zero_settle_delay_skips_sleep(self, tmp_path):
        clock = FakeClock()

        _orchestrator(tmp_path, FakeServiceManager(), clock, settle_delay=0.0).deploy()

        assert clock.sleeps == []


class TestDeployFailures:
    def test_launch_failure_stops_before_probing(self, tmp_path):
        manager = FakeServiceManager(start_error=LaunchError("port is already allocated"))

        with pytest.raises(LaunchError):
            _orchestrator(tmp_path, manager).deploy()

        assert "exec" not in manager.call_names()

    def test_readiness_timeout_skips_migrations(self, tmp_path):
        manager = FakeServiceManager(probe_results=[False] * 100)
        clock = FakeClock()

        with pytest.raises(ReadinessTimeoutError) as excinfo:
            _orchestrator(tmp_path, manager, clock, readiness_timeout=3.0).deploy()

        assert excinfo.value.attempts == 4
        assert clock.now <= 3.0
        assert "run" not in manager.call_names()

    def test_migration_failure_leaves_services_running(self, tmp_path):
        manager = FakeServiceManager(migrate_rc=1)

        with pytest.raises(MigrationError, match="OperationalError"):
            _orchestrator(tmp_path, manager).deploy()

        assert "stop" not in manager.call_names()
        assert "status" not in manager.call_names()
        assert manager.running == {"db", "redis"}

    def test_migration_failure_exit_code(self, tmp_path):
        manager = FakeServiceManager(migrate_rc=1)

        assert dispatch("deploy", _orchestrator(tmp_path, manager)) == 6

    def test_config_write_failure_aborts_before_launch(self, tmp_path, capsys):
        (tmp_path / "conf").write_text("")
        manager = FakeServiceManager()
        orchestrator = _orchestrator(tmp_path, manager, env_file="conf/.env")

        with pytest.raises(ConfigWriteError):
            orchestrator.deploy()
        assert dispatch("deploy", orchestrator) == 3

        assert manager.calls == [("check_prerequisites",)] * 2
        assert "Configuration bootstrap failed" in capsys.readouterr().out

    def test_unreadable_env_aborts_before_launch(self, tmp_path, capsys):
        (tmp_path / ".env").write_bytes(b"DB_NAME=\xff\xfe\n")
        manager = FakeServiceManager()

        assert dispatch("deploy", _orchestrator(tmp_path, manager)) == 12

        assert manager.calls == [("check_prerequisites",)]
        assert "Configuration load failed" in capsys.readouterr().out
        assert (tmp_path / ".env").read_bytes() == b"DB_NAME=\xff\xfe\n"


class TestDatabaseProbe:
    def test_each_probe_call_is_time_limited(self, tmp_path):
        manager = FakeServiceManager(probe_results=[False])

        _orchestrator(tmp_path, manager, readiness_timeout=4.0).deploy()

        assert manager.exec_timeouts == [4.0, 4.0]

    def test_default_probe_limit(self, tmp_path):
        manager = FakeServiceManager()

        _orchestrator(tmp_path, manager).deploy()

        assert manager.exec_timeouts == [10.0]

    def test_hung_probe_counts_as_not_ready(self, tmp_path):
        hung = subprocess.TimeoutExpired(["pg_isready"], 10.0)
        manager = FakeServiceManager(probe_results=[hung, True])
        clock = FakeClock()

        dispatch("deploy", _orchestrator(tmp_path, manager, clock, settle_delay=0.0))

        assert len([c for c in manager.calls if c[0] == "exec"]) == 2
        assert clock.sleeps == [1.0]
        assert ("run", "web", MIGRATE, False) in manager.calls


class TestProvisioning:
    def test_declined_by_default(self, tmp_path):
        manager = FakeServiceManager()

        _orchestrator(tmp_path, manager).deploy()

        assert ("run", "web", SUPERUSER, True) not in manager.calls

    def test_confirmed_runs_interactively(self, tmp_path):
        manager = FakeServiceManager()

        _orchestrator(tmp_path, manager, confirm=lambda: True).deploy()

        assert ("run", "web", SUPERUSER, True) in manager.calls

    def test_failed_provisioning_does_not_fail_deploy(self, tmp_path, capsys):
        manager = FakeServiceManager(provision_rc=1)
        orchestrator = _orchestrator(tmp_path, manager, confirm=lambda: True)

        assert dispatch("deploy", orchestrator) == 0

        out = capsys.readouterr().out
        assert "createsuperuser exited with code 1" in out
        assert "PostgreSQL deployment completed successfully!" in out
        assert manager.call_names()[-1] == "status"


class TestStatus:
    def test_status_without_env_uses_defaults(self, tmp_path, capsys):
        manager = FakeServiceManager()

        snapshot = _orchestrator(tmp_path, manager).status()

        assert not (tmp_path / ".env").exists()
        assert snapshot.db_name == "poll_system_db"
        assert snapshot.db_user == "postgres"
        assert manager.calls == [("status", ("db", "redis", "web"))]
        out = capsys.readouterr().out
        assert "Deployment Status:" in out
        assert "API Documentation: http://localhost:8000/api/schema/swagger-ui/" in out

    def test_status_query_failure_marks_unknown(self, tmp_path):
        manager = FakeServiceManager(status_error=ServiceCommandError("daemon not running"))
        orchestrator = _orchestrator(tmp_path, manager)

        snapshot = orchestrator.status()

        assert [s.state for s in snapshot.services] == ["unknown"] * 3
        assert dispatch("status", orchestrator) == 0

    def test_status_with_undecodable_env_uses_defaults(self, tmp_path, capsys):
        (tmp_path / ".env").write_bytes(b"DB_NAME=\xff\xfe\n")
        orchestrator = _orchestrator(tmp_path, FakeServiceManager())

        assert dispatch("status", orchestrator) == 0

        snapshot = orchestrator.status()
        assert snapshot.db_name == "poll_system_db"
        assert "Cannot read" in capsys.readouterr().out


class TestServiceVerbs:
    def test_stop_restart_logs(self, tmp_path):
        manager = FakeServiceManager()
        orchestrator = _orchestrator(tmp_path, manager, follow_logs=False, log_tail=20)

        orchestrator.stop()
        orchestrator.restart()
        orchestrator.logs()

        assert manager.calls == [("stop",), ("restart", ()), ("logs", False, 20)]

    def test_unknown_verb_touches_nothing(self, tmp_path):
        manager = FakeServiceManager()

        assert dispatch("bogus", _orchestrator(tmp_path, manager)) == 2

        assert manager.calls == []
        assert not (tmp_path / ".env").exists()


class TestBackup:
    NOW = datetime(2026, 1, 1, 12, 0, 0)

    def test_backup_filename(self):
        assert backup_filename(self.NOW) == "backup_20260101_120000.sql"

    def test_backup_writes_timestamped_dump(self, tmp_path):
        manager = FakeServiceManager()

        path = _orchestrator(tmp_path, manager, now=lambda: self.NOW).backup()

        assert path == tmp_path / "backup_20260101_120000.sql"
        assert path.read_bytes() == b"-- PostgreSQL database dump\n"
        assert manager.calls == [
            ("dump", "db", ("pg_dump", "-U", "postgres", "poll_system_db"), path),
        ]

    def test_backup_uses_configured_database(self, tmp_path):
        (tmp_path / ".env").write_text("DB_NAME=custom\nDB_USER=app\nDB_PASSWORD=x\nSECRET_KEY=y\n")
        manager = FakeServiceManager()

        _orchestrator(tmp_path, manager, now=lambda: self.NOW).backup()

        assert manager.calls[0][2] == ("pg_dump", "-U", "app", "custom")

    def test_failed_backup_removes_partial_file(self, tmp_path):
        manager = FakeServiceManager(dump_rc=1)

        with pytest.raises(BackupError, match="does not exist"):
            _orchestrator(tmp_path, manager, now=lambda: self.NOW).backup()

        assert not (tmp_path / "backup_20260101_120000.sql").exists()

    def test_dump_error_removes_empty_file(self, tmp_path):
        manager = FakeServiceManager(dump_bytes=b"", dump_error=PrerequisiteError("Command not found: docker"))

        with pytest.raises(PrerequisiteError):
            _orchestrator(tmp_path, manager, now=lambda: self.NOW).backup()

        assert list(tmp_path.glob("backup_*.sql")) == []

    def test_interrupted_dump_removes_partial_file(self, tmp_path):
        manager = FakeServiceManager(dump_error=KeyboardInterrupt())

        with pytest.raises(KeyboardInterrupt):
            _orchestrator(tmp_path, manager, now=lambda: self.NOW).backup()

        assert list(tmp_path.glob("backup_*.sql")) == []

    def test_undecodable_env_fails_backup(self, tmp_path):
        (tmp_path / ".env").write_bytes(b"DB_NAME=\xff\xfe\n")
        manager = FakeServiceManager()

        with pytest.raises(ConfigReadError):
            _orchestrator(tmp_path, manager, now=lambda: self.NOW).backup()

        assert manager.calls == []
