#!/usr/bin/env python3
"""
pgdeploy CLI entry point.

    pgdeploy [deploy|status|logs|stop|restart|backup|help] [options]

No command means deploy. The exit code is 0 on success and the failing
step's error code otherwise (130 when interrupted).
"""

from __future__ import annotations

import argparse
import sys
import traceback
from pathlib import Path
from typing import Callable, Optional

from .compose import ComposeServiceManager
from .console import RED, RESET, YELLOW, color_enabled, configure_logging, error_line
from .dispatcher import DEFAULT_VERB, VERBS, dispatch
from .errors import INTERRUPTED_EXIT_CODE, SettingsError
from .orchestrator import StackOrchestrator
from .settings import OrchestratorSettings, load_settings, settings_to_toml

SUPERUSER_QUESTION = "Would you like to create a Django superuser? (y/n)"


def get_cli_version() -> str:
    try:
        from importlib.metadata import version as package_version

        return package_version("pgdeploy")
    except Exception:
        from . import __version__

        return __version__


def parse_arguments(argv: Optional[list] = None) -> argparse.Namespace:
    """
    Parse command-line arguments for pgdeploy.

    Supports arguments:
    1. command - deploy (default), status, logs, stop, restart, backup, help
    2. -d, --dir <path> - Project directory (default: current directory)
    3. -f, --file <name> - Compose file (default: compose's own lookup)
    4. -p, --project-name <name> - Compose project name
    5. --env-file <name> - Deployment config file (default: .env)
    6. --compose-command <cmd> - Compose CLI (default: autodetect)
    7. --timeout / --interval / --settle-delay <seconds> - Readiness timing
    8. -y, --yes / --skip-superuser - Answer the superuser question up front
    9. --no-follow, --tail <n> - Log streaming options
    10. --backup-dir <path> - Where backup files are written
    11. --print-config - Print resolved settings as TOML and exit
    12. --log-level <level> - Logging verbosity
    """
    parser = argparse.ArgumentParser(
        prog='pgdeploy',
        description='PostgreSQL stack deployment orchestrator for Docker Compose',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
Examples:
  # Bootstrap .env, start db + redis, migrate, report status
  %(prog)s

  # Deploy without the superuser prompt, allowing a slow database
  %(prog)s deploy --skip-superuser --timeout 120

  # Dump the database into ./backups
  %(prog)s backup --backup-dir backups

  # Show the last 100 log lines without following
  %(prog)s logs --no-follow --tail 100
        '''
    )

    parser.add_argument(
        'command',
        nargs='?',
        default=DEFAULT_VERB,
        metavar='command',
        help=f"One of: {', '.join(VERBS)} (default: {DEFAULT_VERB})"
    )
    parser.add_argument(
        '-d', '--dir',
        type=Path,
        default=Path('.'),
        metavar='PATH',
        help='Project directory containing the compose file (default: current directory)'
    )
    parser.add_argument(
        '-f', '--file',
        dest='compose_file',
        default=None,
        metavar='NAME',
        help='Compose file name'
    )
    parser.add_argument(
        '-p', '--project-name',
        default=None,
        metavar='NAME',
        help='Compose project name'
    )
    parser.add_argument(
        '--env-file',
        default=None,
        metavar='NAME',
        help='Deployment config file, relative to the project directory (default: .env)'
    )
    parser.add_argument(
        '--compose-command',
        default=None,
        metavar='CMD',
        help="Compose CLI to use, e.g. 'docker compose' or 'docker-compose' (default: autodetect)"
    )

    timing = parser.add_argument_group('Readiness')
    timing.add_argument('--timeout', type=float, default=None, metavar='SECONDS',
                        help='Seconds to wait for the database (default: 60)')
    timing.add_argument('--interval', type=float, default=None, metavar='SECONDS',
                        help='Seconds between readiness probes (default: 1)')
    timing.add_argument('--settle-delay', type=float, default=None, metavar='SECONDS',
                        help='Seconds to wait after readiness before migrating (default: 5)')

    superuser = parser.add_mutually_exclusive_group()
    superuser.add_argument('-y', '--yes', action='store_true',
                           help='Create the superuser without asking')
    superuser.add_argument('--skip-superuser', action='store_true',
                           help='Do not offer to create a superuser')

    parser.add_argument('--no-follow', action='store_true',
                        help='logs: print current logs and exit instead of following')
    parser.add_argument('--tail', type=int, default=None, metavar='N',
                        help='logs: number of lines to show per service')
    parser.add_argument('--backup-dir', default=None, metavar='PATH',
                        help='backup: directory for dump files (default: project directory)')
    parser.add_argument('--print-config', action='store_true',
                        help='Print resolved settings as TOML and exit')
    parser.add_argument('--log-level', default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        type=str.upper,
                        help='Logging verbosity (default: INFO)')
    parser.add_argument('--version', action='version',
                        version=f"pgdeploy {get_cli_version()}")

    return parser.parse_args(argv)


def prompt_yes_no(question: str, input_func: Callable[[], str] = input) -> bool:
    """Ask on stdin; only y/yes (any case) counts as yes. EOF counts as no."""
    print(question, flush=True)
    try:
        response = input_func()
    except EOFError:
        return False
    return response.strip().lower() in ('y', 'yes')


def settings_overrides(args: argparse.Namespace) -> dict:
    compose_command = tuple(args.compose_command.split()) if args.compose_command else None
    return {
        'compose_file': args.compose_file,
        'project_name': args.project_name,
        'env_file': args.env_file,
        'compose_command': compose_command,
        'readiness_timeout': args.timeout,
        'readiness_interval': args.interval,
        'settle_delay': args.settle_delay,
        'backup_dir': args.backup_dir,
    }


def build_orchestrator(settings: OrchestratorSettings, args: argparse.Namespace) -> StackOrchestrator:
    manager = ComposeServiceManager(
        project_dir=settings.project_dir,
        compose_command=settings.compose_command,
        compose_file=settings.compose_file,
        project_name=settings.project_name,
        env_file=settings.env_file,
    )
    if args.yes:
        confirm = lambda: True  # noqa: E731
    elif args.skip_superuser:
        confirm = lambda: False  # noqa: E731
    else:
        confirm = lambda: prompt_yes_no(SUPERUSER_QUESTION)  # noqa: E731
    return StackOrchestrator(
        settings,
        manager,
        confirm=confirm,
        follow_logs=not args.no_follow,
        log_tail=args.tail,
    )


def main(argv: Optional[list] = None) -> int:
    args = parse_arguments(argv)
    configure_logging(args.log_level)

    try:
        settings = load_settings(args.dir, settings_overrides(args))
    except SettingsError as e:
        error_line(f"Invalid settings: {e.message}")
        return e.exit_code

    if args.print_config:
        print(settings_to_toml(settings), end='', flush=True)
        return 0

    return dispatch(args.command, build_orchestrator(settings, args))


def run() -> None:
    """Console script entry point."""
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        tag = f"{YELLOW}[INTERRUPTED]{RESET}" if color_enabled() else "[INTERRUPTED]"
        print(f"\n{tag} Deployment interrupted by user", flush=True)
        sys.exit(INTERRUPTED_EXIT_CODE)
    except Exception as e:
        tag = f"{RED}[FATAL]{RESET}" if color_enabled() else "[FATAL]"
        print(f"{tag} Unexpected error: {e}", file=sys.stderr)
        traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    run()
