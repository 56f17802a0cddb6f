"""Stage decorator for releaseflow."""

from __future__ import annotations

import functools
import inspect
import traceback
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, ParamSpec, Protocol, TypeVar, cast, overload

from .context import StageContext, get_context, set_context
from .result import Err, Ok, Result

P = ParamSpec("P")
T = TypeVar("T")


@dataclass(frozen=True)
class SetupStep:
    """An extra GHA step rendered before the stage runs (e.g. a tool install)."""

    name: str
    run: str | None = None
    uses: str | None = None
    with_params: dict[str, Any] = field(default_factory=dict)


class StageWrapper(Protocol[P, T]):
    """Protocol describing a stage-decorated function."""

    _stage_info: StageInfo

    def __call__(self, *args: P.args, **kwargs: P.kwargs) -> Result[T]: ...


@dataclass
class StageInfo:
    """Metadata about a stage."""

    name: str
    module: str
    fn: Callable[..., Any]  # The wrapped function (with context/exception handling)
    original_fn: Callable[..., Any]
    signature: inspect.Signature
    doc: str | None

    outputs: list[str] = field(default_factory=list)
    secrets: list[str] = field(default_factory=list)

    # Execution environment requirements
    timeout_minutes: float | None = None
    checkout: bool = True
    full_history: bool = False
    env: dict[str, str] = field(default_factory=dict)
    setup: list[SetupStep] = field(default_factory=list)  # Rendered before the stage step in GHA

    @property
    def full_name(self) -> str:
        return f"{self.module}:{self.name}"

    @property
    def cli_name(self) -> str:
        return self.name.replace("_", "-")

    @property
    def required_inputs(self) -> list[str]:
        """Parameters without a default value."""
        return [
            name
            for name, param in self.signature.parameters.items()
            if param.default is inspect.Parameter.empty
            and param.kind not in (inspect.Parameter.VAR_KEYWORD, inspect.Parameter.VAR_POSITIONAL)
        ]

    def accepts_input(self, name: str) -> bool:
        params = self.signature.parameters
        if name in params:
            return True
        return any(p.kind is inspect.Parameter.VAR_KEYWORD for p in params.values())


@overload
def stage(fn: Callable[P, Result[T]]) -> StageWrapper[P, T]: ...


@overload
def stage(
    *,
    outputs: list[str] | None = None,
    secrets: list[str] | None = None,
    timeout_minutes: float | None = None,
    checkout: bool = True,
    full_history: bool = False,
    env: dict[str, str] | None = None,
    setup: list[SetupStep] | None = None,
) -> Callable[[Callable[P, Result[T]]], StageWrapper[P, T]]: ...


def stage(
    fn: Callable[P, Result[T]] | None = None,
    *,
    outputs: list[str] | None = None,
    secrets: list[str] | None = None,
    timeout_minutes: float | None = None,
    checkout: bool = True,
    full_history: bool = False,
    env: dict[str, str] | None = None,
    setup: list[SetupStep] | None = None,
) -> StageWrapper[P, T] | Callable[[Callable[P, Result[T]]], StageWrapper[P, T]]:
    """
    Decorator to mark a function as a pipeline stage.

    The decorated function:
    - Runs in its own StageContext
    - Has exceptions caught and converted to Err results
    - Fails if it succeeds without setting every declared output

    Args:
        outputs: Names of the outputs this stage publishes via set_output().
        secrets: Names of the secrets this stage reads via get_secret().
        timeout_minutes: Upper bound on the stage runtime (None waits forever).
        checkout: Whether the stage needs a source checkout.
        full_history: Whether the checkout must contain the full commit history.
        env: Extra environment for subprocesses started by the stage.
        setup: Extra GHA steps the job runs before the stage (tool installs).

    Usage:
        @stage(outputs=["version"])
        def get_release_version(*, ref: str) -> Result[None]:
            releaseflow.set_output("version", extract_version(ref))
            return Ok(None)

    """

    def decorator(fn: Callable[P, Result[T]]) -> StageWrapper[P, T]:
        sig = inspect.signature(fn)
        if any(p.kind is inspect.Parameter.POSITIONAL_ONLY for p in sig.parameters.values()):
            raise TypeError(f"@stage function {fn.__name__} cannot take positional-only parameters")

        @functools.wraps(fn)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> Result[T]:
            return _run_with_context(info, fn, args, kwargs)

        info = StageInfo(
            name=fn.__name__,
            module=fn.__module__,
            fn=wrapper,
            original_fn=fn,
            signature=sig,
            doc=fn.__doc__,
            outputs=outputs or [],
            secrets=secrets or [],
            timeout_minutes=timeout_minutes,
            checkout=checkout,
            full_history=full_history,
            env=env or {},
            setup=list(setup or []),
        )

        wrapper._stage_info = info  # type: ignore[attr-defined]

        return cast(StageWrapper[P, T], wrapper)

    if fn is not None:
        return decorator(fn)
    return decorator


def _execute_stage(fn: Callable[..., Any], args: tuple[Any, ...], kwargs: dict[str, Any]) -> Result[Any]:
    """Execute a stage function, catching exceptions."""
    try:
        result = fn(*args, **kwargs)
        if not isinstance(result, Result):
            return Ok(result)
        return result
    except Exception as e:
        return Err(f"{type(e).__name__}: {e}", traceback=traceback.format_exc())


def _run_with_context(
    stage_info: StageInfo, fn: Callable[..., Any], args: tuple[Any, ...], kwargs: dict[str, Any]
) -> Result[Any]:
    """
    Execute a stage with a fresh context.

    If a context is already active (the executor installed one), it is reused so
    the executor can read the captured output afterwards.
    """
    existing_ctx = get_context()
    if existing_ctx is not None and existing_ctx.stage_name == stage_info.name:
        ctx = existing_ctx
    else:
        ctx = StageContext(
            stage_name=stage_info.name,
            declared_outputs=list(stage_info.outputs),
            declared_secrets=list(stage_info.secrets),
            env=dict(stage_info.env),
        )

    installed = ctx is not existing_ctx
    if installed:
        set_context(ctx)
    try:
        result = _execute_stage(fn, args, kwargs)
    finally:
        if installed:
            set_context(existing_ctx)

    if not result.ok:
        return result

    missing = [name for name in stage_info.outputs if name not in ctx.stage_outputs]
    if missing:
        return Err(f"Stage '{stage_info.name}' succeeded without setting declared outputs: {', '.join(missing)}")

    return result.with_outputs(ctx.stage_outputs)


def get_stage_info(obj: Any) -> StageInfo:
    """Return the StageInfo attached to a @stage function."""
    info = getattr(obj, "_stage_info", None)
    if info is None:
        raise TypeError(f"Expected a @stage-decorated function, got {type(obj).__name__}")
    return cast(StageInfo, info)
