"""Execution context for releaseflow stages."""

from __future__ import annotations

import os
import time
import tomllib
import uuid
from contextvars import ContextVar
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal

if TYPE_CHECKING:
    from .config import Settings
    from .pipeline import PipelineContext

# Debug mode flag
_debug_mode: bool = False

# Active settings (set by the CLI, defaults otherwise)
_settings: Settings | None = None

SECRETS_FILE = Path.home() / ".releaseflow" / "secrets.toml"


@dataclass
class OutputLine:
    """A captured line of output."""

    level: Literal["out", "dbg", "err"]
    message: str


@dataclass
class StageContext:
    """
    Execution context for a single stage run.

    Every stage gets a fresh context, so nothing a stage records is visible to
    another stage except through its declared outputs.
    """

    stage_name: str
    output: list[OutputLine] = field(default_factory=list)

    declared_outputs: list[str] = field(default_factory=list)
    declared_secrets: list[str] = field(default_factory=list)

    # Environment overlay for subprocesses (pipeline env + stage env)
    env: dict[str, str] = field(default_factory=dict)

    # time.monotonic() value after which the stage has overrun its timeout
    deadline: float | None = None

    stage_outputs: dict[str, str] = field(default_factory=dict)

    def remaining_seconds(self) -> float | None:
        """Seconds left before the deadline (never negative), or None without one."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def capture_out(self, message: str) -> None:
        self.output.append(OutputLine(level="out", message=message))

    def capture_dbg(self, message: str) -> None:
        self.output.append(OutputLine(level="dbg", message=message))

    def capture_err(self, message: str) -> None:
        self.output.append(OutputLine(level="err", message=message))

    def set_output(self, name: str, value: str) -> None:
        """
        Set a stage output value.

        Outputs are write-once. In GitHub Actions the value is also appended to
        the file named by GITHUB_OUTPUT.
        """
        if name not in self.declared_outputs:
            raise ValueError(
                f"Output '{name}' not declared in @stage(outputs=[...]). Declared outputs: {self.declared_outputs}"
            )
        if name in self.stage_outputs:
            raise ValueError(f"Output '{name}' of stage '{self.stage_name}' was already set")
        self.stage_outputs[name] = value

        github_output = os.environ.get("GITHUB_OUTPUT")
        if github_output:
            with open(github_output, "a") as f:
                if "\n" in value:
                    delimiter = f"ghadelimiter_{uuid.uuid4()}"
                    f.write(f"{name}<<{delimiter}\n{value}\n{delimiter}\n")
                else:
                    f.write(f"{name}={value}\n")

    def get_secret(self, name: str) -> str:
        """
        Get a secret value.

        Reads from the environment first, then from ~/.releaseflow/secrets.toml.
        """
        if name not in self.declared_secrets:
            raise ValueError(
                f"Secret '{name}' not declared in @stage(secrets=[...]). Declared secrets: {self.declared_secrets}"
            )

        value = os.environ.get(name)
        if value is not None:
            return value

        if SECRETS_FILE.exists():
            try:
                with open(SECRETS_FILE, "rb") as f:
                    secrets = tomllib.load(f)
            except (OSError, tomllib.TOMLDecodeError) as e:
                raise RuntimeError(f"Failed to read secrets file {SECRETS_FILE}: {e}") from e
            if name in secrets:
                return str(secrets[name])

        raise ValueError(f"Secret '{name}' not found. Set as environment variable or add to {SECRETS_FILE}")


_current_stage_context: ContextVar[StageContext | None] = ContextVar("releaseflow_stage_context", default=None)

_current_pipeline_context: ContextVar[PipelineContext | None] = ContextVar(
    "releaseflow_pipeline_context", default=None
)


def get_context() -> StageContext | None:
    """Get the current stage context, or None if not in a stage."""
    return _current_stage_context.get()


def set_context(ctx: StageContext | None) -> None:
    _current_stage_context.set(ctx)


def get_pipeline_context() -> PipelineContext | None:
    """Get the pipeline being planned, or None outside a @pipeline body."""
    return _current_pipeline_context.get()


def set_pipeline_context(ctx: PipelineContext | None) -> None:
    _current_pipeline_context.set(ctx)


def set_debug(enabled: bool) -> None:
    global _debug_mode
    _debug_mode = enabled


def is_debug() -> bool:
    return _debug_mode


def set_settings(settings: Settings | None) -> None:
    """Install the settings used by stage bodies (None restores defaults)."""
    global _settings
    _settings = settings


def get_settings() -> Settings:
    """Get the active settings, falling back to defaults."""
    global _settings
    if _settings is None:
        from .config import Settings

        _settings = Settings()
    return _settings


def get_stage_env() -> dict[str, str]:
    """Environment overlay for subprocesses started from the current stage."""
    ctx = _current_stage_context.get()
    if ctx is None:
        return {}
    return dict(ctx.env)


def get_remaining_time() -> float | None:
    """Seconds the current stage has left, or None outside a stage or without a timeout."""
    ctx = _current_stage_context.get()
    if ctx is None:
        return None
    return ctx.remaining_seconds()


def out(message: str) -> None:
    """
    Output a message.

    Inside a stage the message is captured and shown by the executor once the
    stage finishes; outside a stage it is printed directly.
    """
    ctx = _current_stage_context.get()
    if ctx is not None:
        ctx.capture_out(message)
    else:
        print(message, flush=True)


def dbg(message: str) -> None:
    """Output a debug message (shown only in debug mode)."""
    ctx = _current_stage_context.get()
    if ctx is not None:
        ctx.capture_dbg(message)
    elif _debug_mode:
        print(f"[debug] {message}", flush=True)


def err(message: str) -> None:
    """Output an error line (stderr of a subprocess, for instance)."""
    ctx = _current_stage_context.get()
    if ctx is not None:
        ctx.capture_err(message)
    else:
        import sys

        print(message, file=sys.stderr, flush=True)


def set_output(name: str, value: Any) -> None:
    """
    Set a stage output value.

    Must be called from within a stage that declared the output in @stage(outputs=[...]).

    Example:
        @stage(outputs=["version"])
        def get_release_version(*, ref: str) -> Result[None]:
            releaseflow.set_output("version", extract_version(ref))
            return Ok(None)

    """
    ctx = _current_stage_context.get()
    if ctx is None:
        raise RuntimeError("set_output() must be called from within a stage context")
    ctx.set_output(name, str(value))


def get_secret(name: str) -> str:
    """
    Get a secret value.

    Must be called from within a stage that declared the secret in @stage(secrets=[...]).
    """
    ctx = _current_stage_context.get()
    if ctx is None:
        raise RuntimeError("get_secret() must be called from within a stage context")
    return ctx.get_secret(name)
