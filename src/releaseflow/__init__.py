"""
Releaseflow - a pull-request gate and a tag-driven release pipeline.

Basic usage:

    import releaseflow

    @releaseflow.stage(outputs=["greeting"])
    def greet(*, name: str) -> releaseflow.Result[str]:
        releaseflow.out(f"Hello, {name}!")
        releaseflow.set_output("greeting", name)
        return releaseflow.Ok(name)

    @releaseflow.pipeline(trigger=releaseflow.on_push(tags=["v*"]))
    def hello() -> None:
        releaseflow.job(greet, inputs={"name": releaseflow.event.ref_name})

    result = releaseflow.execute_pipeline(hello, releaseflow.TriggerEvent.tag_push("v1.0.0"))
    assert result.success
"""

from . import gha
from .changelog import build_changelog, ensure_full_history, generate_changelog
from .config import Settings, find_config, load_settings
from .context import (
    StageContext,
    dbg,
    err,
    get_context,
    get_secret,
    get_settings,
    is_debug,
    out,
    set_debug,
    set_output,
    set_settings,
)
from .errors import (
    ChangelogError,
    ConfigError,
    InvalidTransitionError,
    InvalidVersionError,
    PipelineDefinitionError,
    PublishError,
    ReleaseflowError,
)
from .events import TriggerEvent
from .executor import PipelineExecutor, PipelineResult, StageRun, StageStatus, execute_pipeline
from .pipeline import (
    CombinedTrigger,
    EventRef,
    JobSpec,
    PipelineWrapper,
    PullRequestTrigger,
    PushTrigger,
    StageOutputRef,
    Trigger,
    WorkflowDispatchTrigger,
    event,
    job,
    on_pull_request,
    on_push,
    on_workflow_dispatch,
    pipeline,
)
from .publish import publish_github, publish_release
from .release import ReleaseState, ReleaseTracker
from .result import Err, Ok, Result
from .stage import SetupStep, StageInfo, stage
from .subprocess import RunResult, SubprocessError, run
from .version import extract_version, get_release_version, parse_semver
from .workflows import PIPELINES, pr_gate

__all__ = [
    # Core
    "stage",
    "StageInfo",
    "SetupStep",
    "Result",
    "Ok",
    "Err",
    # Context
    "StageContext",
    "get_context",
    "out",
    "dbg",
    "err",
    "set_output",
    "get_secret",
    "set_debug",
    "is_debug",
    "get_settings",
    "set_settings",
    # Pipelines
    "pipeline",
    "job",
    "event",
    "JobSpec",
    "PipelineWrapper",
    "StageOutputRef",
    "EventRef",
    "Trigger",
    "CombinedTrigger",
    "PushTrigger",
    "PullRequestTrigger",
    "WorkflowDispatchTrigger",
    "on_push",
    "on_pull_request",
    "on_workflow_dispatch",
    "TriggerEvent",
    # Execution
    "PipelineExecutor",
    "PipelineResult",
    "StageRun",
    "StageStatus",
    "execute_pipeline",
    # Subprocess
    "run",
    "RunResult",
    "SubprocessError",
    # Release
    "extract_version",
    "parse_semver",
    "get_release_version",
    "generate_changelog",
    "ensure_full_history",
    "build_changelog",
    "publish_release",
    "publish_github",
    "ReleaseState",
    "ReleaseTracker",
    "PIPELINES",
    "pr_gate",
    # Config
    "Settings",
    "find_config",
    "load_settings",
    # Errors
    "ReleaseflowError",
    "PipelineDefinitionError",
    "InvalidVersionError",
    "InvalidTransitionError",
    "ChangelogError",
    "PublishError",
    "ConfigError",
    # Modules
    "gha",
]

__version__ = "0.1.0"
