"""The pipelines shipped with releaseflow."""

from __future__ import annotations

from . import gate
from .changelog import build_changelog
from .context import get_settings
from .pipeline import event, job, on_pull_request, on_push, pipeline
from .publish import publish_github
from .version import get_release_version


@pipeline(
    name="ci",
    trigger=on_pull_request(),
    env={"RUSTFLAGS": "-Dwarnings"},
    permissions={"contents": "read"},
)
def pr_gate() -> None:
    """Block merges on test failures and lint warnings."""
    job(gate.test_stable, job_id="test", name="test-stable")
    job(gate.clippy, timeout_minutes=get_settings().gate.lint_timeout_minutes)


@pipeline(trigger=on_push(tags=["v*"]), permissions={"contents": "write"})
def release() -> None:
    """Derive the version from the pushed tag, generate the changelog and publish the release."""
    version = job(get_release_version, inputs={"ref": event.ref})
    notes = job(build_changelog, job_id="changelog", inputs={"version": version.get("version")})
    job(
        publish_github,
        inputs={
            "version": version.get("version"),
            "release_body": notes.get("release_body"),
        },
    )


PIPELINES = {wrapper.info.name: wrapper for wrapper in (pr_gate, release)}

# Every stage a pipeline can run; each is also a `releaseflow stage` command
STAGES = (gate.test_stable, gate.clippy, get_release_version, build_changelog, publish_github)
