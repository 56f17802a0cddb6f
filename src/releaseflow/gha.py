"""GitHub Actions workflow generation for releaseflow pipelines.

Each pipeline becomes one workflow file and each job one GHA job. A job
checks out the source (with full history when the stage asks for it), installs
releaseflow, runs any setup steps the stage declares (tool installs) and
runs `releaseflow stage <name>`. Stage inputs travel through
environment variables so multi-line values such as release notes are passed
verbatim.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from io import StringIO
from pathlib import Path
from typing import Any

from ruamel.yaml import YAML
from ruamel.yaml.scalarstring import LiteralScalarString

from .config import WorkflowSettings
from .pipeline import EventRef, JobSpec, PipelineWrapper, StageOutputRef

INPUT_ENV_PREFIX = "RELEASEFLOW_INPUT_"


def input_env_var(name: str) -> str:
    """Environment variable carrying stage input `name`."""
    return f"{INPUT_ENV_PREFIX}{name.upper()}"


# =============================================================================
# Workflow Dataclasses
# =============================================================================


@dataclass
class StepSpec:
    """A step within a GHA job."""

    name: str
    run: str | None = None
    uses: str | None = None
    with_: dict[str, Any] | None = None
    env: dict[str, str] | None = None
    id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"name": self.name}
        if self.id:
            d["id"] = self.id
        if self.uses:
            d["uses"] = self.uses
        if self.with_:
            d["with"] = self.with_
        if self.run:
            d["run"] = LiteralScalarString(self.run) if "\n" in self.run else self.run
        if self.env:
            d["env"] = self.env
        return d


@dataclass
class WorkflowJob:
    """A job within a GHA workflow."""

    name: str | None = None
    runs_on: str = "ubuntu-latest"
    needs: list[str] = field(default_factory=list)
    outputs: dict[str, str] = field(default_factory=dict)
    steps: list[StepSpec] = field(default_factory=list)
    timeout_minutes: float | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {}
        if self.name:
            d["name"] = self.name
        d["runs-on"] = self.runs_on
        if self.needs:
            d["needs"] = self.needs
        if self.timeout_minutes is not None:
            timeout = self.timeout_minutes
            d["timeout-minutes"] = int(timeout) if float(timeout).is_integer() else timeout
        if self.outputs:
            d["outputs"] = self.outputs
        d["steps"] = [s.to_dict() for s in self.steps]
        return d


def generate_workflow_header(source: str | None = None) -> str:
    """Header comment prepended to generated workflow files."""
    lines = [
        "# ============================================================================",
        "# GENERATED FILE - DO NOT EDIT MANUALLY",
        "#",
        "# This workflow is generated by releaseflow. To modify:",
        "#   1. Edit the pipeline definition",
        "#   2. Run: releaseflow generate-gha",
        "#   3. Commit the regenerated file",
        "#",
    ]
    if source:
        lines.append(f"# Source: {source}")
    lines.extend(
        [
            "# ============================================================================",
            "",
        ]
    )
    return "\n".join(lines)


@dataclass
class WorkflowSpec:
    """A complete GHA workflow."""

    name: str
    on: dict[str, Any]
    jobs: dict[str, WorkflowJob]
    permissions: dict[str, str] = field(default_factory=dict)
    env: dict[str, str] = field(default_factory=dict)
    source: str | None = None

    def __str__(self) -> str:
        triggers = ", ".join(self.on.keys())
        return f"WorkflowSpec({self.name}) - {len(self.jobs)} job(s), on: {triggers}"

    __repr__ = __str__

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"name": self.name, "on": self.on}
        if self.permissions:
            d["permissions"] = self.permissions
        if self.env:
            d["env"] = self.env
        d["jobs"] = {job_id: job.to_dict() for job_id, job in self.jobs.items()}
        return d

    def to_yaml(self, *, include_header: bool = False) -> str:
        yaml = YAML()
        yaml.default_flow_style = False
        yaml.width = 4096

        stream = StringIO()
        yaml.dump(self.to_dict(), stream)
        content = stream.getvalue()

        if include_header:
            return generate_workflow_header(self.source or f"pipeline: {self.name}") + content
        return content


# =============================================================================
# Rendering
# =============================================================================


def _input_expr(value: Any) -> str:
    if isinstance(value, (StageOutputRef, EventRef)):
        return value.to_gha_expr()
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _build_stage_step(job_spec: JobSpec, settings: WorkflowSettings) -> StepSpec:
    info = job_spec.stage_info
    env: dict[str, str] = {input_env_var(name): _input_expr(value) for name, value in job_spec.inputs.items()}
    for secret in info.secrets:
        env[secret] = f"${{{{ secrets.{secret} }}}}"

    title = (info.doc or info.name).strip().splitlines()[0].rstrip(".")
    return StepSpec(
        name=title,
        id="run",
        run=f"{settings.cli_command} stage {info.cli_name}",
        env=env or None,
    )


def render_job(job_spec: JobSpec, settings: WorkflowSettings) -> WorkflowJob:
    """Render one pipeline job as a GHA job."""
    info = job_spec.stage_info
    steps: list[StepSpec] = []

    if info.checkout:
        steps.append(
            StepSpec(
                name="Checkout",
                uses="actions/checkout@v4",
                with_={"fetch-depth": 0} if info.full_history else None,
            )
        )
    steps.append(
        StepSpec(
            name="Set up Python",
            uses="actions/setup-python@v5",
            with_={"python-version": settings.python_version},
        )
    )
    steps.append(StepSpec(name="Install releaseflow", run=settings.install_command))
    for setup_step in info.setup:
        steps.append(
            StepSpec(
                name=setup_step.name,
                run=setup_step.run,
                uses=setup_step.uses,
                with_=dict(setup_step.with_params) or None,
            )
        )
    steps.append(_build_stage_step(job_spec, settings))

    runs_on = job_spec.runs_on if job_spec.runs_on != "ubuntu-latest" else settings.runs_on
    return WorkflowJob(
        name=job_spec.name,
        runs_on=runs_on,
        needs=[dep.job_id for dep in job_spec.get_all_dependencies()],
        outputs={name: f"${{{{ steps.run.outputs.{name} }}}}" for name in info.outputs},
        steps=steps,
        timeout_minutes=job_spec.effective_timeout,
    )


def render_pipeline_workflow(pipeline: PipelineWrapper, settings: WorkflowSettings | None = None) -> WorkflowSpec:
    """Render a pipeline into a WorkflowSpec."""
    settings = settings or WorkflowSettings()
    info = pipeline.info
    jobs = pipeline()

    on = info.trigger.to_gha_dict() if info.trigger is not None else {"workflow_dispatch": None}
    return WorkflowSpec(
        name=info.name,
        on=on,
        jobs={job_spec.job_id: render_job(job_spec, settings) for job_spec in jobs},
        permissions=dict(info.permissions),
        env=dict(info.env),
        source=f"pipeline: {info.full_name}",
    )


def workflow_path(pipeline: PipelineWrapper, output_dir: Path) -> Path:
    return output_dir / f"{pipeline.info.name}.yml"


def write_workflows(
    pipelines: Iterable[PipelineWrapper],
    output_dir: Path,
    settings: WorkflowSettings | None = None,
) -> list[Path]:
    """Write one `<pipeline>.yml` per pipeline into `output_dir`."""
    output_dir.mkdir(parents=True, exist_ok=True)
    written = []
    for wrapper in pipelines:
        spec = render_pipeline_workflow(wrapper, settings)
        path = workflow_path(wrapper, output_dir)
        path.write_text(spec.to_yaml(include_header=True))
        written.append(path)
    return written


def stale_workflows(
    pipelines: Iterable[PipelineWrapper],
    output_dir: Path,
    settings: WorkflowSettings | None = None,
) -> list[Path]:
    """Workflow files that are missing or differ from what would be generated."""
    stale = []
    for wrapper in pipelines:
        path = workflow_path(wrapper, output_dir)
        expected = render_pipeline_workflow(wrapper, settings).to_yaml(include_header=True)
        if not path.exists() or path.read_text() != expected:
            stale.append(path)
    return stale
