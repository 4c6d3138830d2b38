"""Running external commands with strict-mode semantics.

Every helper here behaves like a shell script under ``set -euxo pipefail``:
the command line is traced before it runs, a non-zero exit raises, and a
pipeline fails when any of its stages fails. Subprocess errors are translated
into :mod:`docdeploy.errors` exceptions at this seam so the workflows only
ever see one exception hierarchy.

Examples
--------
Run a command and capture its output:

    result = run_command(["kubectl", "get", "pods"], capture=True)

Stream one command into another:

    run_pipeline([["docker", "save", image], ["ssh", host, "--", "ctr", ...]])

"""

from __future__ import annotations

import os
import shlex
import shutil
import subprocess
import time
import typing as typ

from docdeploy.errors import (
    CommandFailedError,
    CommandTimeoutError,
    ExecutableNotFoundError,
)
from docdeploy.logging import get_logger, log_debug, log_info

if typ.TYPE_CHECKING:
    from pathlib import Path

logger = get_logger(__name__)


def require_exe(name: str) -> None:
    """Verify a CLI tool is available in PATH.

    Parameters
    ----------
    name : str
        Name of the executable to check for.

    Raises
    ------
    ExecutableNotFoundError
        If the executable is not found in PATH.

    """
    if shutil.which(name) is None:
        msg = f"Required executable '{name}' not found in PATH"
        raise ExecutableNotFoundError(msg)


def command_env(**overrides: str) -> dict[str, str]:
    """Return a copy of the current environment with ``overrides`` applied."""
    env = dict(os.environ)
    env.update(overrides)
    return env


def trace_line(*stages: typ.Sequence[str]) -> str:
    """Render one or more argv lists the way ``set -x`` would echo them."""
    return " | ".join(shlex.join(list(stage)) for stage in stages)


def run_command(  # noqa: PLR0913
    args: typ.Sequence[str],
    *,
    env: dict[str, str] | None = None,
    cwd: Path | None = None,
    stdin_text: str | None = None,
    capture: bool = False,
    timeout: float | None = None,
) -> subprocess.CompletedProcess[str]:
    """Run a single external command and fail loudly.

    Parameters
    ----------
    args : Sequence[str]
        Command argv. Executed without a shell.
    env : dict[str, str] | None
        Full environment for the child; inherits ours when ``None``.
    cwd : Path | None
        Working directory for the child.
    stdin_text : str | None
        Text written to the child's standard input.
    capture : bool
        Capture stdout/stderr instead of letting them reach the terminal.
    timeout : float | None
        Seconds to wait before giving up.

    Returns
    -------
    subprocess.CompletedProcess[str]
        The completed process (with output when ``capture`` is set).

    Raises
    ------
    ExecutableNotFoundError
        If the executable cannot be started.
    CommandFailedError
        If the command exits non-zero.
    CommandTimeoutError
        If the command exceeds ``timeout``.

    """
    argv = list(args)
    log_info(logger, "+ %s", trace_line(argv))
    try:
        return subprocess.run(  # noqa: S603
            argv,
            input=stdin_text,
            capture_output=capture,
            text=True,
            check=True,
            env=env,
            cwd=cwd,
            timeout=timeout,
        )
    except FileNotFoundError as e:
        msg = f"Required executable '{argv[0]}' not found in PATH"
        raise ExecutableNotFoundError(msg) from e
    except subprocess.CalledProcessError as e:
        raise CommandFailedError(argv, e.returncode) from e
    except subprocess.TimeoutExpired as e:
        raise CommandTimeoutError(argv, timeout or 0) from e


def _kill_all(procs: list[subprocess.Popen[bytes]]) -> None:
    for proc in procs:
        if proc.poll() is None:
            proc.kill()
        proc.wait()


def _start_stages(
    stages: list[list[str]], env: dict[str, str] | None
) -> list[subprocess.Popen[bytes]]:
    """Start every stage with stdout of each feeding stdin of the next."""
    procs: list[subprocess.Popen[bytes]] = []
    upstream: typ.IO[bytes] | None = None
    for index, argv in enumerate(stages):
        last = index == len(stages) - 1
        try:
            proc = subprocess.Popen(  # noqa: S603
                argv,
                stdin=upstream,
                stdout=None if last else subprocess.PIPE,
                env=env,
            )
        except FileNotFoundError as e:
            if upstream is not None:
                upstream.close()
            _kill_all(procs)
            msg = f"Required executable '{argv[0]}' not found in PATH"
            raise ExecutableNotFoundError(msg) from e
        # Close our copy so the upstream stage sees SIGPIPE if this one exits.
        if upstream is not None:
            upstream.close()
        upstream = proc.stdout
        procs.append(proc)
    return procs


def run_pipeline(
    stages: typ.Sequence[typ.Sequence[str]],
    *,
    env: dict[str, str] | None = None,
    timeout: float | None = None,
) -> None:
    """Run ``stage1 | stage2 | ...`` with ``pipefail`` semantics.

    Bytes flow between stages untouched; the last stage writes to our stdout.
    All stages are waited for. When several fail, the right-most failure is
    reported, matching bash's ``pipefail``.

    Parameters
    ----------
    stages : Sequence[Sequence[str]]
        Argv of each pipeline stage, in order. At least one is required.
    env : dict[str, str] | None
        Environment shared by every stage.
    timeout : float | None
        Overall deadline in seconds for the whole pipeline.

    Raises
    ------
    ValueError
        If ``stages`` is empty.
    ExecutableNotFoundError
        If any stage cannot be started.
    CommandFailedError
        If any stage exits non-zero.
    CommandTimeoutError
        If the pipeline exceeds ``timeout``; every stage is killed.

    """
    argvs = [list(stage) for stage in stages]
    if not argvs:
        msg = "a pipeline needs at least one stage"
        raise ValueError(msg)

    log_info(logger, "+ %s", trace_line(*argvs))
    procs = _start_stages(argvs, env)

    deadline = None if timeout is None else time.monotonic() + timeout
    for proc, argv in zip(procs, argvs, strict=True):
        remaining = None if deadline is None else max(deadline - time.monotonic(), 0)
        try:
            proc.wait(timeout=remaining)
        except subprocess.TimeoutExpired as e:
            _kill_all(procs)
            raise CommandTimeoutError(argv, timeout or 0) from e
        log_debug(logger, "%s exited with status %d", argv[0], proc.returncode)

    failures = [
        (argv, proc.returncode)
        for proc, argv in zip(procs, argvs, strict=True)
        if proc.returncode != 0
    ]
    if failures:
        argv, returncode = failures[-1]
        raise CommandFailedError(argv, returncode)


__all__ = [
    "command_env",
    "require_exe",
    "run_command",
    "run_pipeline",
    "trace_line",
]
