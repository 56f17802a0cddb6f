"""Subprocess helpers for releaseflow stages."""

from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass, field
from pathlib import Path

from .context import dbg, err, get_remaining_time, get_stage_env, out


@dataclass
class RunResult:
    """
    Result from running a subprocess.

    Attributes:
        returncode: The exit code of the process.
        stdout: Captured stdout.
        stderr: Captured stderr.
        command: The command that was executed.

    """

    returncode: int
    stdout: str = ""
    stderr: str = ""
    command: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def failed(self) -> bool:
        return self.returncode != 0


class SubprocessError(Exception):
    """Raised when a subprocess fails and check=True."""

    def __init__(self, result: RunResult):
        self.result = result
        cmd_str = " ".join(result.command)
        super().__init__(f"Command '{cmd_str}' failed with exit code {result.returncode}")


def run(
    *args: str | Path,
    cwd: str | Path | None = None,
    env: dict[str, str] | None = None,
    capture: bool = False,
    check: bool = False,
    timeout: float | None = None,
) -> RunResult:
    """
    Run a subprocess command.

    By default each output line is forwarded to the stage output (`out` for
    stdout, `err` for stderr) after the process exits. With `capture=True`
    the output is only returned, for parsing.

    The environment is the current environment, overlaid with the pipeline and
    stage environment, overlaid with `env`.

    Without an explicit `timeout`, a stage with a timeout bounds the command by
    the time the stage has left.

    Raises:
        SubprocessError: If check=True and the command fails
        FileNotFoundError: If the command is not found
        subprocess.TimeoutExpired: If `timeout` elapses (the process is killed)

    Example:
        >>> result = run("git", "status", "--porcelain", capture=True)
        >>> if result.stdout:
        ...     out("Working directory has changes")

    """
    cmd = [str(arg) for arg in args]

    run_env = os.environ.copy()
    run_env.update(get_stage_env())
    if env:
        run_env.update(env)

    if timeout is None:
        timeout = get_remaining_time()

    dbg(f"$ {' '.join(cmd)}")
    completed = subprocess.run(
        cmd,
        cwd=str(cwd) if cwd else None,
        env=run_env,
        capture_output=True,
        text=True,
        timeout=timeout,
    )
    result = RunResult(
        returncode=completed.returncode,
        stdout=completed.stdout,
        stderr=completed.stderr,
        command=cmd,
    )

    if not capture:
        for line in result.stdout.splitlines():
            out(line)
        for line in result.stderr.splitlines():
            err(line)

    if check and result.failed:
        raise SubprocessError(result)

    return result
