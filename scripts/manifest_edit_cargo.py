"""Invoke ``cargo`` to refresh a workspace lock file.

Dependency resolution is never performed here: when an edit introduces or
drops a package, ``cargo update --workspace`` rewrites ``Cargo.lock`` and
this module only wraps that invocation with a timeout and diagnostics.
"""

from __future__ import annotations

import dataclasses as dc
import logging
import os
import shlex
import typing as typ
from contextlib import ExitStack

from manifest_edit_errors import CargoCommandError
from plumbum import local
from plumbum.commands import CommandNotFound
from plumbum.commands.processes import ProcessTimedOut

if typ.TYPE_CHECKING:
    from pathlib import Path

LOGGER = logging.getLogger(__name__)

__all__ = [
    "DEFAULT_TIMEOUT_SECS",
    "CommandResult",
    "refresh_lockfile",
    "run_cargo",
]

DEFAULT_TIMEOUT_SECS: typ.Final[int] = 300


@dc.dataclass(frozen=True)
class CommandResult:
    """Result of a cargo command execution."""

    command: list[str]
    return_code: int
    stdout: str
    stderr: str


def run_cargo(
    workspace_root: Path,
    args: typ.Sequence[str],
    *,
    timeout_secs: int = DEFAULT_TIMEOUT_SECS,
    env_overrides: typ.Mapping[str, str] | None = None,
) -> CommandResult:
    """Run ``cargo`` with ``args`` inside ``workspace_root``.

    Raises
    ------
    CargoCommandError
        Raised when cargo is missing, times out or exits with a non-zero
        status. Captured output is logged before raising.
    """
    command = ["cargo", *args]
    try:
        invocation = local["cargo"][list(args)]
        with ExitStack() as stack:
            stack.enter_context(local.cwd(workspace_root))
            if env_overrides:
                stack.enter_context(local.env(**env_overrides))
            return_code, stdout, stderr = invocation.run(
                retcode=None,
                timeout=timeout_secs,
            )
    except CommandNotFound as error:
        message = "cargo was not found on PATH"
        raise CargoCommandError(message) from error
    except ProcessTimedOut as error:
        LOGGER.exception(
            "cargo command timed out after %s seconds: %s",
            timeout_secs,
            shlex.join(command),
        )
        message = f"cargo command timed out after {timeout_secs} seconds"
        raise CargoCommandError(message) from error

    result = CommandResult(
        command=command, return_code=return_code, stdout=stdout, stderr=stderr
    )
    if result.return_code != 0:
        _report_failure(result)
    return result


def _report_failure(result: CommandResult) -> typ.NoReturn:
    joined_command = shlex.join(result.command)
    LOGGER.error("cargo command failed: %s", joined_command)
    if result.stdout:
        LOGGER.error("cargo stdout:%s%s", os.linesep, result.stdout)
    if result.stderr:
        LOGGER.error("cargo stderr:%s%s", os.linesep, result.stderr)
    message = f"cargo command failed: {joined_command} (exit code {result.return_code})"
    raise CargoCommandError(message)


def refresh_lockfile(
    workspace_root: Path,
    *,
    offline: bool = False,
    timeout_secs: int = DEFAULT_TIMEOUT_SECS,
) -> CommandResult:
    """Let cargo reconcile ``Cargo.lock`` with the edited manifests."""
    args = ["update", "--workspace"]
    if offline:
        args.append("--offline")
    LOGGER.info("refreshing lock file in %s", workspace_root)
    return run_cargo(workspace_root, args, timeout_secs=timeout_secs)
