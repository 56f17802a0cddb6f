"""Local execution of pipelines.

Jobs are grouped into dependency levels. Every job of a level runs
concurrently on its own daemon thread with a fresh StageContext, so stages
only see what their resolved inputs carry. A stage that overruns its timeout
is reported as failed and abandoned; `run()` kills its subprocesses at the
same deadline. A job whose dependency failed or was skipped is skipped.
Nothing is retried.
"""

from __future__ import annotations

import functools
import threading
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any

from .context import OutputLine, StageContext, is_debug, set_context
from .errors import PipelineDefinitionError
from .events import TriggerEvent
from .output import get_output_manager
from .pipeline import EventRef, JobSpec, PipelineWrapper, StageOutputRef, group_jobs_by_level


class StageStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"


@dataclass
class StageRun:
    """Outcome of one job in a pipeline run."""

    job_id: str
    stage_name: str
    status: StageStatus
    elapsed_seconds: float = 0.0
    outputs: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    output_lines: list[OutputLine] = field(default_factory=list)
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.status is StageStatus.SUCCESS


@dataclass
class PipelineResult:
    """Outcome of a pipeline run."""

    pipeline_name: str
    success: bool
    elapsed_seconds: float
    stage_runs: list[StageRun] = field(default_factory=list)

    @property
    def failed_stages(self) -> list[StageRun]:
        return [r for r in self.stage_runs if r.status is StageStatus.FAILURE]

    @property
    def skipped_stages(self) -> list[StageRun]:
        return [r for r in self.stage_runs if r.status is StageStatus.SKIPPED]

    def get(self, job_id: str) -> StageRun:
        for stage_run in self.stage_runs:
            if stage_run.job_id == job_id:
                return stage_run
        raise KeyError(job_id)

    def status_of(self, job_id: str) -> StageStatus:
        return self.get(job_id).status


StageListener = Callable[[JobSpec, StageRun], None]


class _StageThread(threading.Thread):
    """Daemon thread running one job and keeping its outcome."""

    def __init__(self, job_id: str, body: Callable[[], StageRun]):
        super().__init__(name=f"releaseflow-stage-{job_id}", daemon=True)
        self._body = body
        self.started_at = time.perf_counter()
        self.stage_run: StageRun | None = None
        self.exception: BaseException | None = None

    def run(self) -> None:
        try:
            self.stage_run = self._body()
        except BaseException as e:
            # Re-raised by the executor in the calling thread
            self.exception = e


def resolve_inputs(
    job_spec: JobSpec,
    job_outputs: Mapping[str, Mapping[str, str]],
    trigger_event: TriggerEvent,
) -> dict[str, Any]:
    """Replace references in a job's inputs with concrete values."""
    resolved: dict[str, Any] = {}
    for name, value in job_spec.inputs.items():
        if isinstance(value, StageOutputRef):
            upstream = job_outputs.get(value.job_id)
            if upstream is None or value.output_name not in upstream:
                available = list(upstream.keys()) if upstream else []
                raise ValueError(
                    f"Output '{value.output_name}' not found in job '{value.job_id}'. Available outputs: {available}"
                )
            resolved[name] = upstream[value.output_name]
        elif isinstance(value, EventRef):
            resolved[name] = value.resolve(trigger_event)
        else:
            resolved[name] = value
    return resolved


class PipelineExecutor:
    """Runs a pipeline in the current process."""

    def __init__(
        self,
        *,
        verbose: bool = False,
        check_trigger: bool = True,
        listeners: Sequence[StageListener] | None = None,
    ):
        self.verbose = verbose
        self.check_trigger = check_trigger
        self.listeners: list[StageListener] = list(listeners or [])

    def add_listener(self, listener: StageListener) -> None:
        self.listeners.append(listener)

    def execute(self, pipeline: PipelineWrapper, trigger_event: TriggerEvent) -> PipelineResult:
        """Run every job of `pipeline` for `trigger_event`.

        Raises:
            PipelineDefinitionError: If the graph is invalid or the event does not match the trigger.

        """
        start_time = time.perf_counter()
        info = pipeline.info
        output_mgr = get_output_manager()

        if self.check_trigger and info.trigger is not None and not info.trigger.matches(trigger_event):
            raise PipelineDefinitionError(
                f"Pipeline '{info.name}' is not triggered by a {trigger_event.name} event on '{trigger_event.ref}'"
            )

        jobs = pipeline()
        levels = group_jobs_by_level(jobs)

        output_mgr.print_pipeline_header(info.name)

        job_outputs: dict[str, Mapping[str, str]] = {}
        not_succeeded: set[str] = set()
        stage_runs: list[StageRun] = []

        for level_idx, level in enumerate(levels):
            is_last_level = level_idx == len(levels) - 1

            runnable: list[JobSpec] = []
            for job_spec in level:
                if any(dep.job_id in not_succeeded for dep in job_spec.get_all_dependencies()):
                    skipped = StageRun(
                        job_id=job_spec.job_id,
                        stage_name=job_spec.stage_info.name,
                        status=StageStatus.SKIPPED,
                        error="Skipped due to failed dependency",
                    )
                    stage_runs.append(skipped)
                    not_succeeded.add(job_spec.job_id)
                    self._notify(job_spec, skipped)
                    self._print_stage_run(job_spec, skipped, is_last=is_last_level and len(level) == 1)
                else:
                    runnable.append(job_spec)

            if not runnable:
                continue

            results = self._run_level(runnable, job_outputs, trigger_event, info.env)

            parallel = len(runnable) > 1
            if parallel:
                output_mgr.print_parallel_header([j.job_id for j in runnable])

            for idx, job_spec in enumerate(runnable):
                stage_run = results[job_spec.job_id]
                stage_runs.append(stage_run)
                if stage_run.success:
                    job_outputs[job_spec.job_id] = stage_run.outputs
                else:
                    not_succeeded.add(job_spec.job_id)
                self._notify(job_spec, stage_run)
                is_last = is_last_level and idx == len(runnable) - 1
                self._print_stage_run(job_spec, stage_run, is_last=is_last, parallel=parallel)

        elapsed = time.perf_counter() - start_time
        success = all(r.success for r in stage_runs)
        output_mgr.print_pipeline_status(info.name, success, elapsed, len(stage_runs))

        return PipelineResult(
            pipeline_name=info.name,
            success=success,
            elapsed_seconds=elapsed,
            stage_runs=stage_runs,
        )

    def _notify(self, job_spec: JobSpec, stage_run: StageRun) -> None:
        for listener in self.listeners:
            listener(job_spec, stage_run)

    def _run_level(
        self,
        jobs: list[JobSpec],
        job_outputs: Mapping[str, Mapping[str, str]],
        trigger_event: TriggerEvent,
        pipeline_env: Mapping[str, str],
    ) -> dict[str, StageRun]:
        """Run independent jobs concurrently and wait for all of them."""
        started_threads: list[tuple[JobSpec, _StageThread, float | None]] = []
        for job_spec in jobs:
            timeout_minutes = job_spec.effective_timeout
            deadline = None if timeout_minutes is None else time.monotonic() + timeout_minutes * 60
            ctx = StageContext(
                stage_name=job_spec.stage_info.name,
                declared_outputs=list(job_spec.stage_info.outputs),
                declared_secrets=list(job_spec.stage_info.secrets),
                env={**pipeline_env, **job_spec.stage_info.env},
                deadline=deadline,
            )
            thread = _StageThread(
                job_spec.job_id,
                functools.partial(self._run_job, job_spec, ctx, job_outputs, trigger_event),
            )
            thread.start()
            started_threads.append((job_spec, thread, deadline))

        results: dict[str, StageRun] = {}
        for job_spec, thread, deadline in started_threads:
            thread.join(None if deadline is None else max(0.0, deadline - time.monotonic()))
            if thread.is_alive():
                # The thread is a daemon: it is abandoned and cannot hold up interpreter exit
                results[job_spec.job_id] = StageRun(
                    job_id=job_spec.job_id,
                    stage_name=job_spec.stage_info.name,
                    status=StageStatus.FAILURE,
                    elapsed_seconds=time.perf_counter() - thread.started_at,
                    error=(
                        f"Stage '{job_spec.stage_info.name}' timed out after "
                        f"{job_spec.effective_timeout:g} minute(s)"
                    ),
                )
                continue
            if thread.exception is not None:
                raise thread.exception
            assert thread.stage_run is not None
            results[job_spec.job_id] = thread.stage_run
        return results

    def _run_job(
        self,
        job_spec: JobSpec,
        ctx: StageContext,
        job_outputs: Mapping[str, Mapping[str, str]],
        trigger_event: TriggerEvent,
    ) -> StageRun:
        """Worker-thread body: resolve inputs and run the stage in its own context."""
        start_time = time.perf_counter()
        set_context(ctx)
        try:
            try:
                kwargs = resolve_inputs(job_spec, job_outputs, trigger_event)
            except ValueError as e:
                return StageRun(
                    job_id=job_spec.job_id,
                    stage_name=job_spec.stage_info.name,
                    status=StageStatus.FAILURE,
                    elapsed_seconds=time.perf_counter() - start_time,
                    output_lines=list(ctx.output),
                    error=str(e),
                )

            result = job_spec.stage_info.fn(**kwargs)
            error = result.error
            if result.traceback and is_debug():
                error = f"{error}\n{result.traceback}"
            return StageRun(
                job_id=job_spec.job_id,
                stage_name=job_spec.stage_info.name,
                status=StageStatus.SUCCESS if result.ok else StageStatus.FAILURE,
                elapsed_seconds=time.perf_counter() - start_time,
                outputs=result.outputs if result.ok else MappingProxyType({}),
                output_lines=list(ctx.output),
                error=error,
            )
        finally:
            set_context(None)

    def _print_stage_run(
        self, job_spec: JobSpec, stage_run: StageRun, *, is_last: bool = False, parallel: bool = False
    ) -> None:
        output_mgr = get_output_manager()
        output_mgr.print_stage_header(job_spec.display_name, is_last=is_last, parallel=parallel)

        if self.verbose or stage_run.status is StageStatus.FAILURE:
            lines = stage_run.output_lines if self.verbose else stage_run.output_lines[-10:]
            output_mgr.print_lines(lines, parallel=parallel, show_debug=is_debug())
        else:
            # Successful and quiet: the last few messages, without stderr
            output_mgr.print_lines(
                [line for line in stage_run.output_lines if line.level != "err"][-10:],
                parallel=parallel,
                show_debug=is_debug(),
            )

        output_mgr.print_stage_status(
            job_spec.display_name,
            stage_run.status.value,
            stage_run.elapsed_seconds,
            error=stage_run.error,
            parallel=parallel,
        )
        if self.verbose and stage_run.success and stage_run.outputs:
            output_mgr.print_outputs(dict(stage_run.outputs), parallel=parallel)


def execute_pipeline(
    pipeline: PipelineWrapper,
    trigger_event: TriggerEvent,
    *,
    verbose: bool = False,
    check_trigger: bool = True,
    listeners: Sequence[StageListener] | None = None,
) -> PipelineResult:
    """Run a pipeline locally."""
    executor = PipelineExecutor(verbose=verbose, check_trigger=check_trigger, listeners=listeners)
    return executor.execute(pipeline, trigger_event)
