#!/usr/bin/env python3
"""
Verb dispatch.

dispatch() maps a verb to one StackOrchestrator action and turns the outcome
into a process exit code. It holds no state between calls.
"""

from __future__ import annotations

import logging

from .console import error_line, info
from .errors import DeploymentError, ReadinessTimeoutError, UnknownCommandError

logger = logging.getLogger(__name__)

DEFAULT_VERB = 'deploy'

# verb -> (StackOrchestrator method, help text)
VERBS = {
    'deploy': ('deploy', 'Deploy PostgreSQL (default)'),
    'status': ('status', 'Show deployment status'),
    'logs': ('logs', 'Show service logs'),
    'stop': ('stop', 'Stop all services'),
    'restart': ('restart', 'Restart all services'),
    'backup': ('backup', 'Create database backup'),
    'help': (None, 'Show this help message'),
}


def format_help(prog: str = 'pgdeploy') -> str:
    lines = [f"Usage: {prog} [command]", "", "Commands:"]
    width = max(len(verb) for verb in VERBS)
    for verb, (_, description) in VERBS.items():
        lines.append(f"  {verb:<{width}}  - {description}")
    return "\n".join(lines)


def dispatch(verb, orchestrator, prog: str = 'pgdeploy') -> int:
    """
    Run the action for ``verb`` and return the process exit code.

    ``None`` or an empty verb means deploy. Fatal errors are reported with the
    failing step and mapped to the error's exit code. KeyboardInterrupt is
    left to the caller.
    """
    verb = (verb or DEFAULT_VERB).strip().lower()

    if verb not in VERBS:
        err = UnknownCommandError(verb)
        error_line(err.message)
        print(f"Usage: {prog} [{'|'.join(VERBS)}]", flush=True)
        print(f"Use '{prog} help' for available commands", flush=True)
        return err.exit_code

    method_name, _ = VERBS[verb]
    if method_name is None:
        print(format_help(prog), flush=True)
        return 0

    logger.debug(f"Dispatching verb '{verb}'")
    try:
        getattr(orchestrator, method_name)()
    except DeploymentError as e:
        error_line(f"{e.step.capitalize()} failed: {e.message}")
        if isinstance(e, ReadinessTimeoutError):
            info(f"Configured readiness timeout: {e.timeout:g}s. "
                 f"Check the service logs, then re-run '{prog} {verb}'.")
        return e.exit_code
    return 0
