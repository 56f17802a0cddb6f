"""Command-line interface for releaseflow."""

from __future__ import annotations

import inspect
import os
import sys
import time
import typing
from pathlib import Path
from typing import Any, get_args, get_origin

import click
from click.core import ParameterSource

from .config import load_settings
from .context import StageContext, get_settings, is_debug, set_context, set_debug, set_settings
from .errors import ConfigError, InvalidVersionError, PipelineDefinitionError
from .events import TriggerEvent
from .executor import PipelineResult, execute_pipeline
from .gha import input_env_var, stale_workflows, write_workflows
from .output import configure_output, get_output_manager
from .release import ReleaseState, ReleaseTracker
from .result import Result
from .stage import StageInfo, get_stage_info
from .version import extract_version
from .workflows import PIPELINES, STAGES


def _get_console():
    """Get console from OutputManager to respect NO_COLOR settings."""
    return get_output_manager().console


def _get_click_type(annotation: Any) -> tuple[Any, bool]:
    """
    Convert a Python type annotation to a Click type.

    Returns (click_type, is_required).
    """
    if get_origin(annotation) is not None:
        args = get_args(annotation)
        if type(None) in args:
            non_none_types = [a for a in args if a is not type(None)]
            if len(non_none_types) == 1:
                inner_type, _ = _get_click_type(non_none_types[0])
                return inner_type, False

    if annotation is int:
        return click.INT, True
    elif annotation is float:
        return click.FLOAT, True
    elif annotation is bool:
        return click.BOOL, True
    elif annotation is Path:
        return click.Path(path_type=Path), True
    return click.STRING, True


def _build_stage_command(stage_info: StageInfo) -> click.Command:
    """
    Build a Click command running a single stage.

    Every stage parameter becomes an option that can also be supplied through
    its RELEASEFLOW_INPUT_<NAME> environment variable; generated workflows use
    the latter. A variable that is set but empty supplies an empty string.
    """
    try:
        type_hints = typing.get_type_hints(stage_info.original_fn)
    except Exception:
        type_hints = {}

    params: list[click.Option] = []
    required_inputs: set[str] = set()
    for param_name, param in stage_info.signature.parameters.items():
        if param.kind in (inspect.Parameter.VAR_KEYWORD, inspect.Parameter.VAR_POSITIONAL):
            continue
        annotation = type_hints.get(param_name, param.annotation)
        if annotation is inspect.Parameter.empty:
            annotation = str

        click_type, type_required = _get_click_type(annotation)
        has_default = param.default is not inspect.Parameter.empty

        if not has_default and type_required:
            required_inputs.add(param_name)

        # Required inputs are checked in the callback: click treats an empty
        # environment variable as unset, but an empty input is a valid value
        option_kwargs: dict[str, Any] = {
            "type": click_type,
            "required": False,
            "envvar": input_env_var(param_name),
            "show_envvar": True,
        }
        if has_default:
            option_kwargs["default"] = param.default
        params.append(click.Option([f"--{param_name.replace('_', '-')}", param_name], **option_kwargs))

    def callback(**kwargs: Any) -> None:
        """Run the stage in its own context and report the result."""
        click_ctx = click.get_current_context()
        for option in params:
            name = option.name
            assert name is not None
            envvar = input_env_var(name)
            from_default = click_ctx.get_parameter_source(name) is ParameterSource.DEFAULT
            if from_default and os.environ.get(envvar) == "":
                kwargs[name] = option.type_cast_value(click_ctx, "")
            elif name in required_inputs and kwargs[name] is None:
                raise click.MissingParameter(ctx=click_ctx, param=option)

        output_mgr = get_output_manager()
        ctx = StageContext(
            stage_name=stage_info.name,
            declared_outputs=list(stage_info.outputs),
            declared_secrets=list(stage_info.secrets),
            env=dict(stage_info.env),
        )

        output_mgr.print_stage_header(stage_info.cli_name, is_last=True)
        start_time = time.perf_counter()
        set_context(ctx)
        try:
            result: Result[Any] = stage_info.fn(**kwargs)
        finally:
            set_context(None)
        elapsed = time.perf_counter() - start_time

        output_mgr.print_lines(ctx.output, show_debug=is_debug())
        error = result.error
        if result.traceback and is_debug():
            error = f"{error}\n{result.traceback}"
        output_mgr.print_stage_status(
            stage_info.cli_name, "success" if result.ok else "failure", elapsed, error=error
        )
        if result.ok and result.outputs:
            output_mgr.print_outputs(dict(result.outputs))

        if not result.ok:
            sys.exit(1)

    return click.Command(
        name=stage_info.cli_name,
        callback=callback,
        params=params,
        help=stage_info.doc,
    )


def _finish(result: PipelineResult) -> None:
    if not result.success:
        sys.exit(1)


def _execute(pipeline_name: str, trigger_event: TriggerEvent, *, verbose: bool, **kwargs: Any) -> PipelineResult:
    try:
        return execute_pipeline(PIPELINES[pipeline_name], trigger_event, verbose=verbose, **kwargs)
    except PipelineDefinitionError as e:
        get_output_manager().print_error(str(e))
        sys.exit(1)


@click.group(name="releaseflow")
@click.option("--debug/--no-debug", default=False, help="Enable debug output")
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="Configuration file (default: releaseflow.toml or [tool.releaseflow] in pyproject.toml)",
)
@click.option("--color/--no-color", default=None, help="Force colored output on or off")
def cli(debug: bool, config_path: Path | None, color: bool | None) -> None:
    """Pull-request gate and tag-driven release pipelines."""
    set_debug(debug)
    if color is not None:
        configure_output(force_color=color)
    try:
        set_settings(load_settings(config_path))
    except ConfigError as e:
        get_output_manager().print_error(str(e))
        sys.exit(1)


@cli.command()
@click.option("--base-ref", default=None, help="Target branch of the pull request")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Show all stage output")
def gate(base_ref: str | None, verbose: bool) -> None:
    """Run the pull-request gate: tests and lints, concurrently."""
    trigger_event = TriggerEvent.pull_request(base_ref=base_ref)
    _finish(_execute("ci", trigger_event, verbose=verbose))


@cli.command()
@click.option("--ref", required=True, help="Pushed tag, e.g. refs/tags/v1.2.3 or v1.2.3")
@click.option("--repository", default=None, help="owner/name of the GitHub repository")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Show all stage output")
def release(ref: str, repository: str | None, verbose: bool) -> None:
    """Run the release pipeline for a pushed tag."""
    if repository is not None:
        settings = get_settings()
        settings.publish.repository = repository

    trigger_event = TriggerEvent.tag_push(ref)
    tracker = ReleaseTracker()
    result = _execute("release", trigger_event, verbose=verbose, listeners=[tracker])

    state_style = "green" if tracker.state is ReleaseState.PUBLISHED else "red"
    _get_console().print(f"Release state: [{state_style}]{tracker.state.value}[/{state_style}]")
    if tracker.failed_stage:
        _get_console().print(f"Failed stage: {tracker.failed_stage}")
    _finish(result)


@cli.command()
@click.argument("ref")
@click.option("--strict/--no-strict", default=None, help="Require a semantic version after the prefix")
def version(ref: str, strict: bool | None) -> None:
    """Print the release version for a tag ref."""
    settings = get_settings().release
    try:
        click.echo(
            extract_version(
                ref,
                prefix=settings.tag_prefix,
                strict=settings.strict_versions if strict is None else strict,
            )
        )
    except InvalidVersionError as e:
        get_output_manager().print_error(str(e))
        sys.exit(1)


@cli.command(name="run")
@click.argument("pipeline_name", metavar="PIPELINE", type=click.Choice(sorted(PIPELINES)))
@click.option(
    "--event",
    "event_name",
    type=click.Choice(["push", "pull_request", "workflow_dispatch"]),
    default=None,
    help="Event to simulate (default: the pipeline's own trigger)",
)
@click.option("--ref", default="", help="Git ref of the event")
@click.option("--from-env", is_flag=True, default=False, help="Read the event from GITHUB_* variables")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Show all stage output")
def run_pipeline(pipeline_name: str, event_name: str | None, ref: str, from_env: bool, verbose: bool) -> None:
    """Run a pipeline locally."""
    if from_env:
        try:
            trigger_event = TriggerEvent.from_env()
        except ValueError as e:
            get_output_manager().print_error(str(e))
            sys.exit(1)
        check_trigger = True
    elif event_name is None:
        trigger_event = TriggerEvent(name="workflow_dispatch", ref=ref)
        check_trigger = False
    else:
        trigger_event = TriggerEvent(name=event_name, ref=ref)  # type: ignore[arg-type]
        check_trigger = True

    listeners = [ReleaseTracker()] if pipeline_name == "release" else []
    _finish(_execute(pipeline_name, trigger_event, verbose=verbose, check_trigger=check_trigger, listeners=listeners))


@cli.command(name="generate-gha")
@click.option(
    "--output-dir",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Directory for the workflow files (default: .github/workflows)",
)
@click.option("--check", is_flag=True, default=False, help="Fail if the committed workflows are out of date")
def generate_gha(output_dir: Path | None, check: bool) -> None:
    """Generate GitHub Actions workflows for the pipelines."""
    settings = get_settings().workflow
    target = output_dir or settings.output_dir

    if check:
        stale = stale_workflows(PIPELINES.values(), target, settings)
        for path in stale:
            get_output_manager().print_error(f"{path} is out of date. Run: releaseflow generate-gha")
        if stale:
            sys.exit(1)
        _get_console().print(f"[green]✓[/green] {len(PIPELINES)} workflow(s) up to date")
        return

    for path in write_workflows(PIPELINES.values(), target, settings):
        _get_console().print(f"[green]✓[/green] Wrote {path}")


@cli.group()
def stage() -> None:
    """Run a single stage (used by the generated workflows)."""


for _stage in STAGES:
    stage.add_command(_build_stage_command(get_stage_info(_stage)))


def main() -> None:
    cli()
