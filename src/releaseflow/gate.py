"""Pull-request gate stages: the test suite and the linter.

Both stages are exit-code-only: zero passes, anything else fails. They
produce no artifacts and are never retried.
"""

from __future__ import annotations

from .context import get_settings, out
from .result import Err, Ok, Result
from .stage import stage
from .subprocess import run


def install_toolchain(channel: str, components: list[str] | None = None) -> None:
    """
    Install a rustup toolchain channel, with optional components.

    Raises:
        SubprocessError: If rustup fails.

    """
    args = ["rustup", "toolchain", "install", channel, "--profile", "minimal", "--no-self-update"]
    for component in components or []:
        args.extend(["--component", component])
    run(*args, check=True)


def run_checked(command: list[str], *, toolchain: str | None = None) -> Result[None]:
    """Run `command`, pinning the toolchain channel, and map its exit code to a result."""
    if not command:
        return Err("Empty command")
    env = {"RUSTUP_TOOLCHAIN": toolchain} if toolchain else None
    out(f"$ {' '.join(command)}")
    result = run(*command, env=env)
    if result.failed:
        return Err(f"'{' '.join(command)}' exited with code {result.returncode}")
    return Ok(None)


@stage
def test_stable() -> Result[None]:
    """Run the test suite on the stable toolchain."""
    settings = get_settings().gate
    if settings.install_toolchain:
        install_toolchain(settings.toolchain)
    return run_checked(settings.test_command, toolchain=settings.toolchain)


@stage
def clippy() -> Result[None]:
    """Run static analysis over the test targets, with warnings as errors."""
    settings = get_settings().gate
    if settings.install_toolchain:
        install_toolchain(settings.lint_toolchain, settings.lint_components)
    return run_checked(settings.lint_command, toolchain=settings.lint_toolchain)
