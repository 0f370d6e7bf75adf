"""Command execution for builds.

This module handles:
- Running host commands (archival copy, move, recursive delete) with a
  uniform success/failure contract
- Capturing stdout/stderr to the job build log
- Enforcing command timeouts
- Running ordered command lists inside a rootfs through chroot
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from rootfs_builder.errors import (
    COMMAND_TIMEOUT,
    ExecutionError,
    NotFoundError,
)
from rootfs_builder.types import CommandResult

if TYPE_CHECKING:
    from rootfs_builder.builds.rootfs import RootfsImage

logger = logging.getLogger(__name__)

# Lines of captured output quoted in error messages
ERROR_OUTPUT_LINES = 20


def _tail(output: str | None, lines: int = ERROR_OUTPUT_LINES) -> str:
    if not output:
        return ""
    return "\n".join(output.strip().splitlines()[-lines:])


def run_command(
    cmd: list[str],
    timeout: int | None = None,
    env_override: dict[str, str] | None = None,
    log_path: Path | None = None,
    cwd: Path | None = None,
) -> CommandResult:
    """Execute a host command and wait for it.

    When ``log_path`` is given, the command line, its combined output and
    its exit status are appended to that file; otherwise output is captured
    and returned.

    Args:
        cmd: Command as list of strings.
        timeout: Timeout in seconds (None = no timeout).
        env_override: Environment variables set on top of the current ones.
        log_path: Optional log file to append output to.
        cwd: Optional working directory.

    Returns:
        CommandResult of the successful command.

    Raises:
        ExecutionError: If the command cannot start, times out or exits
            non-zero.
    """
    cmd_str = shlex.join(cmd)
    logger.debug("Executing: %s", cmd_str)

    env: dict[str, str] | None = None
    if env_override:
        env = dict(os.environ)
        env.update(env_override)

    started_at = datetime.now(timezone.utc)
    output: str | None = None

    try:
        if log_path is not None:
            with log_path.open("a") as log_file:
                log_file.write(f"# Command: {cmd_str}\n")
                log_file.flush()
                result = subprocess.run(
                    cmd,
                    cwd=cwd,
                    stdout=log_file,
                    stderr=subprocess.STDOUT,
                    timeout=timeout,
                    env=env,
                    check=False,
                )
                log_file.write(f"# Exit code: {result.returncode}\n\n")
        else:
            result = subprocess.run(
                cmd,
                cwd=cwd,
                capture_output=True,
                text=True,
                timeout=timeout,
                env=env,
                check=False,
            )
            output = (result.stdout or "") + (result.stderr or "")

    except subprocess.TimeoutExpired as e:
        message = f"Command timed out after {timeout} seconds: {cmd_str}"
        logger.error(message)
        if log_path is not None:
            with log_path.open("a") as log_file:
                log_file.write(f"\n# TIMEOUT after {timeout} seconds\n")
        raise ExecutionError(
            message, command=cmd_str, exit_code=-1, code=COMMAND_TIMEOUT
        ) from e

    except OSError as e:
        message = f"Failed to execute {cmd_str}: {e}"
        logger.error(message)
        raise ExecutionError(message, command=cmd_str) from e

    finished_at = datetime.now(timezone.utc)

    if result.returncode != 0:
        message = f"Command failed with exit code {result.returncode}: {cmd_str}"
        if log_path is not None:
            logger.error("%s. See log: %s", message, log_path)
        else:
            logger.error(message)
            tail = _tail(output)
            if tail:
                message = f"{message}\n{tail}"
        raise ExecutionError(message, command=cmd_str, exit_code=result.returncode)

    return CommandResult(
        command=cmd_str,
        exit_code=result.returncode,
        started_at=started_at,
        finished_at=finished_at,
        output=output,
    )


class ChrootExecuter:
    """Run an ordered list of shell commands inside a rootfs.

    Commands run one at a time through ``chroot <root> /bin/sh -c``, in the
    order they were added. The first command exiting non-zero stops the run
    and is reported as an ExecutionError naming that command. Commands are
    neither reordered nor deduplicated.
    """

    def __init__(
        self,
        rootfs: RootfsImage,
        timeout: int | None = None,
        log_path: Path | None = None,
    ) -> None:
        self.rootfs = rootfs
        self.timeout = timeout
        self.log_path = log_path
        self._commands: list[str] = []

    @property
    def commands(self) -> tuple[str, ...]:
        """Commands queued so far."""
        return tuple(self._commands)

    def add_command(self, cmd: str) -> None:
        """Queue a shell command."""
        self._commands.append(cmd)

    def run(self) -> list[CommandResult]:
        """Execute the queued commands in order.

        Returns:
            One CommandResult per command.

        Raises:
            NotFoundError: If the rootfs has no location.
            ExecutionError: On the first command that fails.
        """
        root = self.rootfs.path
        if root is None or not root.is_dir():
            raise NotFoundError(f"No such rootfs: {root}", code="rootfs_not_found")

        env = self.rootfs.chroot_env()
        results: list[CommandResult] = []
        for cmd in self._commands:
            logger.info("[chroot %s] %s", root.name, cmd)
            try:
                result = run_command(
                    ["chroot", str(root), "/bin/sh", "-c", cmd],
                    timeout=self.timeout,
                    env_override=env,
                    log_path=self.log_path,
                )
            except ExecutionError as e:
                raise ExecutionError(
                    f"Command failed in chroot {root} "
                    f"(exit code {e.exit_code}): {cmd}",
                    command=cmd,
                    exit_code=e.exit_code,
                    code=e.code,
                ) from e
            results.append(result)
        return results


__all__ = [
    "ChrootExecuter",
    "run_command",
]
