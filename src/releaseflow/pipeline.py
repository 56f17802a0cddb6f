"""Pipeline graphs: named stages with typed inputs, outputs and dependencies.

A pipeline is a plain function decorated with @pipeline. Its body declares
jobs with `job()`; each job runs one stage. Dependencies are either explicit
(`needs=[...]`) or inferred from output references:

    @pipeline(trigger=on_push(tags=["v*"]))
    def release() -> None:
        version = job(get_release_version, inputs={"ref": event.ref})
        notes = job(changelog, inputs={"version": version.get("version")})
        job(
            publish_github,
            inputs={"version": version.get("version"), "release_body": notes.get("release_body")},
        )

The graph is verified while it is built: inputs must match the stage's
signature, references must name declared outputs, and cycles are rejected.
"""

from __future__ import annotations

import fnmatch
import functools
import inspect
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, overload

from .context import get_pipeline_context, set_pipeline_context
from .errors import PipelineDefinitionError
from .stage import StageInfo, get_stage_info

if TYPE_CHECKING:
    from .events import TriggerEvent
    from .stage import StageWrapper


# =============================================================================
# Reference types
# =============================================================================


@dataclass(frozen=True)
class StageOutputRef:
    """Reference to a named output of another job.

    Created by JobSpec.get(output_name). Using it as an input makes the
    consuming job depend on the producing one.
    """

    job_id: str
    output_name: str

    def __repr__(self) -> str:
        return f"StageOutputRef({self.job_id}.{self.output_name})"

    def to_gha_expr(self) -> str:
        return f"${{{{ needs.{self.job_id}.outputs.{self.output_name} }}}}"


@dataclass(frozen=True)
class EventRef:
    """Reference to a field of the triggering event (e.g. `event.ref`)."""

    path: str

    def __repr__(self) -> str:
        return f"EventRef({self.path})"

    def to_gha_expr(self) -> str:
        return f"${{{{ github.{self.path} }}}}"

    def resolve(self, trigger_event: TriggerEvent) -> Any:
        value = trigger_event.lookup(self.path)
        if value is None:
            raise ValueError(f"Event field '{self.path}' is not set for a {trigger_event.name} event")
        return value


class _EventNamespace:
    """Namespace of references to the triggering event."""

    @property
    def ref(self) -> EventRef:
        """The full ref (e.g. 'refs/tags/v1.2.3')."""
        return EventRef("ref")

    @property
    def ref_name(self) -> EventRef:
        """The short ref name (e.g. 'v1.2.3')."""
        return EventRef("ref_name")

    @property
    def sha(self) -> EventRef:
        return EventRef("sha")

    @property
    def repository(self) -> EventRef:
        return EventRef("repository")

    @property
    def head_ref(self) -> EventRef:
        return EventRef("head_ref")


event = _EventNamespace()


# =============================================================================
# Triggers
# =============================================================================


@dataclass
class Trigger:
    """Base class for pipeline triggers."""

    def __or__(self, other: Trigger) -> CombinedTrigger:
        return CombinedTrigger([self, other])

    def to_gha_dict(self) -> dict[str, Any]:
        raise NotImplementedError

    def matches(self, trigger_event: TriggerEvent) -> bool:
        raise NotImplementedError


@dataclass
class CombinedTrigger(Trigger):
    """Multiple triggers combined with OR."""

    triggers: list[Trigger]

    def __or__(self, other: Trigger) -> CombinedTrigger:
        return CombinedTrigger(self.triggers + [other])

    def to_gha_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        for trigger in self.triggers:
            result.update(trigger.to_gha_dict())
        return result

    def matches(self, trigger_event: TriggerEvent) -> bool:
        return any(t.matches(trigger_event) for t in self.triggers)


def _match_any(name: str, patterns: list[str]) -> bool:
    return any(fnmatch.fnmatchcase(name, pattern) for pattern in patterns)


@dataclass
class PushTrigger(Trigger):
    """Trigger on push events, optionally filtered by branch or tag patterns."""

    branches: list[str] | None = None
    tags: list[str] | None = None

    def to_gha_dict(self) -> dict[str, Any]:
        config: dict[str, Any] = {}
        if self.branches:
            config["branches"] = self.branches
        if self.tags:
            config["tags"] = self.tags
        return {"push": config or None}

    def matches(self, trigger_event: TriggerEvent) -> bool:
        if trigger_event.name != "push":
            return False
        if not self.branches and not self.tags:
            return True
        if trigger_event.ref_type == "tag":
            return bool(self.tags) and _match_any(trigger_event.ref_name, self.tags or [])
        if trigger_event.ref_type == "branch":
            return bool(self.branches) and _match_any(trigger_event.ref_name, self.branches or [])
        return False


@dataclass
class PullRequestTrigger(Trigger):
    """Trigger on pull request events."""

    branches: list[str] | None = None
    types: list[str] | None = None

    def to_gha_dict(self) -> dict[str, Any]:
        config: dict[str, Any] = {}
        if self.branches:
            config["branches"] = self.branches
        if self.types:
            config["types"] = self.types
        return {"pull_request": config or None}

    def matches(self, trigger_event: TriggerEvent) -> bool:
        if trigger_event.name != "pull_request":
            return False
        if self.branches and trigger_event.base_ref is not None:
            return _match_any(trigger_event.base_ref, self.branches)
        return True


@dataclass
class WorkflowDispatchTrigger(Trigger):
    """Trigger on manual dispatch."""

    def to_gha_dict(self) -> dict[str, Any]:
        return {"workflow_dispatch": None}

    def matches(self, trigger_event: TriggerEvent) -> bool:
        return trigger_event.name == "workflow_dispatch"


def on_push(branches: list[str] | None = None, tags: list[str] | None = None) -> PushTrigger:
    return PushTrigger(branches=branches, tags=tags)


def on_pull_request(branches: list[str] | None = None, types: list[str] | None = None) -> PullRequestTrigger:
    return PullRequestTrigger(branches=branches, types=types)


def on_workflow_dispatch() -> WorkflowDispatchTrigger:
    return WorkflowDispatchTrigger()


# =============================================================================
# JobSpec
# =============================================================================


@dataclass
class JobSpec:
    """A stage placed in a pipeline.

    Attributes:
        job_id: Unique identifier within the pipeline (kebab-case stage name by default)
        stage_info: The stage this job runs
        inputs: Literal values or references passed to the stage
        needs: Explicit dependencies (inferred ones are added in get_all_dependencies)
        runs_on: Runner label used when rendering to GitHub Actions
        timeout_minutes: Overrides the stage's own timeout when set

    """

    job_id: str
    stage_info: StageInfo
    inputs: dict[str, Any] = field(default_factory=dict)
    needs: list[JobSpec] = field(default_factory=list)
    runs_on: str = "ubuntu-latest"
    name: str | None = None
    timeout_minutes: float | None = None

    _inferred_deps: list[JobSpec] = field(default_factory=list, repr=False)

    @property
    def display_name(self) -> str:
        return self.name or self.job_id

    @property
    def effective_timeout(self) -> float | None:
        if self.timeout_minutes is not None:
            return self.timeout_minutes
        return self.stage_info.timeout_minutes

    def get(self, output_name: str) -> StageOutputRef:
        """Get a reference to an output of this job.

        Raises:
            PipelineDefinitionError: If the stage does not declare the output.

        """
        if output_name not in self.stage_info.outputs:
            available = ", ".join(self.stage_info.outputs) or "(none)"
            raise PipelineDefinitionError(
                f"Stage '{self.stage_info.name}' has no output '{output_name}'. Declared outputs: {available}"
            )
        return StageOutputRef(self.job_id, output_name)

    def get_all_dependencies(self) -> list[JobSpec]:
        """Explicit and inferred dependencies, without duplicates, in declaration order."""
        seen: set[str] = set()
        all_deps = []
        for dep in self.needs + self._inferred_deps:
            if dep.job_id not in seen:
                seen.add(dep.job_id)
                all_deps.append(dep)
        return all_deps

    def __repr__(self) -> str:
        return f"JobSpec({self.job_id})"


@dataclass
class PipelineContext:
    """Jobs declared so far while a @pipeline body runs."""

    pipeline_name: str
    jobs: list[JobSpec] = field(default_factory=list)
    registry: dict[str, JobSpec] = field(default_factory=dict)

    def add_job(self, job_spec: JobSpec) -> None:
        self.jobs.append(job_spec)
        self.registry[job_spec.job_id] = job_spec


def job(
    stage: StageWrapper[..., Any],
    *,
    inputs: dict[str, Any] | None = None,
    needs: list[JobSpec] | None = None,
    runs_on: str = "ubuntu-latest",
    job_id: str | None = None,
    name: str | None = None,
    timeout_minutes: float | None = None,
) -> JobSpec:
    """Add a stage to the pipeline being built.

    Can only be called inside a @pipeline-decorated function.

    Raises:
        RuntimeError: If called outside a @pipeline function
        TypeError: If `stage` is not a @stage-decorated function
        PipelineDefinitionError: If the inputs do not fit the stage's signature

    """
    ctx = get_pipeline_context()
    if ctx is None:
        raise RuntimeError("job() can only be called inside a @pipeline-decorated function.")

    stage_info = get_stage_info(stage)
    actual_job_id = job_id or stage_info.cli_name

    if actual_job_id in ctx.registry:
        raise PipelineDefinitionError(
            f"Duplicate job_id '{actual_job_id}' in pipeline '{ctx.pipeline_name}'. Use job_id='...' to disambiguate."
        )

    job_spec = JobSpec(
        job_id=actual_job_id,
        stage_info=stage_info,
        inputs=dict(inputs or {}),
        needs=list(needs or []),
        runs_on=runs_on,
        name=name,
        timeout_minutes=timeout_minutes,
    )

    _check_inputs(job_spec)
    _infer_dependencies(job_spec, ctx)

    ctx.add_job(job_spec)
    return job_spec


def _check_inputs(job_spec: JobSpec) -> None:
    """Verify the inputs against the stage's signature."""
    info = job_spec.stage_info
    for input_name in job_spec.inputs:
        if not info.accepts_input(input_name):
            raise PipelineDefinitionError(
                f"Job '{job_spec.job_id}': stage '{info.name}' has no parameter '{input_name}'"
            )
    missing = [name for name in info.required_inputs if name not in job_spec.inputs]
    if missing:
        raise PipelineDefinitionError(
            f"Job '{job_spec.job_id}': missing required input(s) for stage '{info.name}': {', '.join(missing)}"
        )


def _infer_dependencies(job_spec: JobSpec, ctx: PipelineContext) -> None:
    """Infer dependencies from StageOutputRef inputs."""
    inferred: list[JobSpec] = []

    for value in job_spec.inputs.values():
        if isinstance(value, StageOutputRef):
            dep_job = ctx.registry.get(value.job_id)
            if dep_job is None:
                raise PipelineDefinitionError(
                    f"Job '{job_spec.job_id}' references unknown job '{value.job_id}'. "
                    f"Make sure the job is created before referencing its outputs."
                )
            if value.output_name not in dep_job.stage_info.outputs:
                raise PipelineDefinitionError(
                    f"Job '{job_spec.job_id}' references undeclared output '{value.output_name}' of '{value.job_id}'"
                )
            if dep_job not in inferred:
                inferred.append(dep_job)

    for dep in job_spec.needs:
        if ctx.registry.get(dep.job_id) is not dep:
            raise PipelineDefinitionError(
                f"Job '{job_spec.job_id}' needs '{dep.job_id}', which is not part of pipeline '{ctx.pipeline_name}'"
            )

    job_spec._inferred_deps = inferred


# =============================================================================
# Graph helpers
# =============================================================================


def _dependency_maps(jobs: list[JobSpec]) -> tuple[dict[str, int], dict[str, list[str]]]:
    job_ids = {j.job_id for j in jobs}
    in_degree: dict[str, int] = {j.job_id: 0 for j in jobs}
    dependents: dict[str, list[str]] = {j.job_id: [] for j in jobs}
    for job_spec in jobs:
        for dep in job_spec.get_all_dependencies():
            if dep.job_id in job_ids:
                in_degree[job_spec.job_id] += 1
                dependents[dep.job_id].append(job_spec.job_id)
    return in_degree, dependents


def topological_sort(jobs: list[JobSpec]) -> list[JobSpec]:
    """
    Sort jobs so that dependencies come before dependents.

    Raises PipelineDefinitionError if there's a cycle.
    """
    job_map = {j.job_id: j for j in jobs}
    in_degree, dependents = _dependency_maps(jobs)

    queue = [jid for jid, deg in in_degree.items() if deg == 0]
    result: list[JobSpec] = []

    while queue:
        job_id = queue.pop(0)
        result.append(job_map[job_id])
        for dependent_id in dependents[job_id]:
            in_degree[dependent_id] -= 1
            if in_degree[dependent_id] == 0:
                queue.append(dependent_id)

    if len(result) != len(jobs):
        remaining = [j.job_id for j in jobs if j not in result]
        raise PipelineDefinitionError(f"Dependency cycle detected involving jobs: {remaining}")

    return result


def group_jobs_by_level(jobs: list[JobSpec]) -> list[list[JobSpec]]:
    """Group jobs into levels; jobs within a level are mutually independent."""
    if not jobs:
        return []

    job_map = {j.job_id: j for j in jobs}
    in_degree, dependents = _dependency_maps(jobs)

    levels: list[list[JobSpec]] = []
    # Preserve declaration order within a level
    remaining = [j.job_id for j in jobs]

    while remaining:
        level = [job_map[jid] for jid in remaining if in_degree[jid] == 0]
        if not level:
            raise PipelineDefinitionError(f"Dependency cycle detected involving jobs: {remaining}")
        levels.append(level)
        for job_spec in level:
            remaining.remove(job_spec.job_id)
            for dependent_id in dependents[job_spec.job_id]:
                in_degree[dependent_id] -= 1

    return levels


# =============================================================================
# @pipeline
# =============================================================================


@dataclass
class PipelineInfo:
    """Metadata about a pipeline."""

    name: str
    module: str
    original_fn: Callable[..., None]
    doc: str | None
    trigger: Trigger | None = None
    env: dict[str, str] = field(default_factory=dict)
    permissions: dict[str, str] = field(default_factory=dict)

    @property
    def full_name(self) -> str:
        return f"{self.module}:{self.name}"

    @property
    def cli_name(self) -> str:
        return self.name.replace("_", "-")


class PipelineWrapper:
    """Wrapper for @pipeline-decorated functions.

    Calling the wrapper builds (and verifies) the job graph without running
    anything; use an executor to run it.
    """

    def __init__(self, info: PipelineInfo):
        self._pipeline_info = info
        functools.update_wrapper(self, info.original_fn)

    def __call__(self) -> list[JobSpec]:
        """Build the pipeline and return its jobs in declaration order."""
        ctx = PipelineContext(pipeline_name=self._pipeline_info.name)
        previous = get_pipeline_context()
        set_pipeline_context(ctx)
        try:
            self._pipeline_info.original_fn()
        finally:
            set_pipeline_context(previous)

        # Rejects cycles
        topological_sort(ctx.jobs)
        return ctx.jobs

    def plan(self) -> list[JobSpec]:
        """Alias for calling the wrapper."""
        return self()

    @property
    def info(self) -> PipelineInfo:
        return self._pipeline_info

    def __repr__(self) -> str:
        return f"Pipeline({self._pipeline_info.name})"


@overload
def pipeline(fn: Callable[[], None]) -> PipelineWrapper: ...


@overload
def pipeline(
    *,
    trigger: Trigger | None = None,
    env: dict[str, str] | None = None,
    permissions: dict[str, str] | None = None,
    name: str | None = None,
) -> Callable[[Callable[[], None]], PipelineWrapper]: ...


def pipeline(
    fn: Callable[[], None] | None = None,
    *,
    trigger: Trigger | None = None,
    env: dict[str, str] | None = None,
    permissions: dict[str, str] | None = None,
    name: str | None = None,
) -> PipelineWrapper | Callable[[Callable[[], None]], PipelineWrapper]:
    """
    Decorator to declare a pipeline.

    Args:
        trigger: Event filter (on_push, on_pull_request, ...). Combine with `|`.
        env: Environment applied to every stage of the run.
        permissions: Token permissions for the rendered workflow.
        name: Pipeline name (defaults to the function name).

    """

    def decorator(func: Callable[[], None]) -> PipelineWrapper:
        if inspect.signature(func).parameters:
            raise TypeError(f"@pipeline function {func.__name__} must not take parameters")
        info = PipelineInfo(
            name=name or func.__name__,
            module=func.__module__,
            original_fn=func,
            doc=func.__doc__,
            trigger=trigger,
            env=dict(env or {}),
            permissions=dict(permissions or {}),
        )
        return PipelineWrapper(info)

    if fn is not None:
        return decorator(fn)
    return decorator
