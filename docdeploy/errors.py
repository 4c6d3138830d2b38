"""Exceptions raised by the bootstrap and deploy workflows.

Every failure in docdeploy is ultimately "an external command failed" or
"the configuration cannot be used". Both workflows stop at the first
exception; nothing is retried or rolled back.
"""

from __future__ import annotations

import shlex
import typing as typ


class DocDeployError(Exception):
    """Base exception for all docdeploy errors."""


class ExecutableNotFoundError(DocDeployError):
    """Required CLI tool is not installed."""


class ConfigError(DocDeployError):
    """Configuration is missing a required value or holds an invalid one."""


class ConfigWriteError(DocDeployError):
    """A configuration file could not be written to disk."""


class CommandFailedError(DocDeployError):
    """An external command exited with a non-zero status.

    Attributes
    ----------
    command
        The argv of the failing command (the failing stage for pipelines).
    returncode
        Exit status reported by the process.

    """

    command: tuple[str, ...]
    returncode: int

    def __init__(self, command: typ.Sequence[str], returncode: int) -> None:
        """Record the failing command and its exit status."""
        self.command = tuple(command)
        self.returncode = returncode
        super().__init__(
            f"Command failed with exit status {returncode}: {shlex.join(self.command)}"
        )


class CommandTimeoutError(DocDeployError):
    """An external command did not finish within its timeout."""

    command: tuple[str, ...]
    timeout: float

    def __init__(self, command: typ.Sequence[str], timeout: float) -> None:
        """Record the command that timed out."""
        self.command = tuple(command)
        self.timeout = timeout
        super().__init__(
            f"Command timed out after {timeout} seconds: {shlex.join(self.command)}"
        )


__all__ = [
    "CommandFailedError",
    "CommandTimeoutError",
    "ConfigError",
    "ConfigWriteError",
    "DocDeployError",
    "ExecutableNotFoundError",
]
