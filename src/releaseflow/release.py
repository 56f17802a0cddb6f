"""State machine of a release run.

    Triggered -> VersionExtracted -> ChangelogGenerated -> Published

Failed is reachable from every non-terminal state. Failed and Published are
terminal, and no state is entered twice within a run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from .errors import InvalidTransitionError

if TYPE_CHECKING:
    from .executor import StageRun
    from .pipeline import JobSpec


class ReleaseState(str, Enum):
    TRIGGERED = "triggered"
    VERSION_EXTRACTED = "version_extracted"
    CHANGELOG_GENERATED = "changelog_generated"
    PUBLISHED = "published"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (ReleaseState.PUBLISHED, ReleaseState.FAILED)


_NEXT_STATE = {
    ReleaseState.TRIGGERED: ReleaseState.VERSION_EXTRACTED,
    ReleaseState.VERSION_EXTRACTED: ReleaseState.CHANGELOG_GENERATED,
    ReleaseState.CHANGELOG_GENERATED: ReleaseState.PUBLISHED,
}

# Release job id -> state its success leads to
STAGE_STATES = {
    "get-release-version": ReleaseState.VERSION_EXTRACTED,
    "changelog": ReleaseState.CHANGELOG_GENERATED,
    "publish-github": ReleaseState.PUBLISHED,
}


@dataclass
class ReleaseTracker:
    """
    Follows a release pipeline run and enforces its state machine.

    Register it as an executor listener:

        tracker = ReleaseTracker()
        execute_pipeline(release, event, listeners=[tracker])
        tracker.state  # ReleaseState.PUBLISHED

    """

    state: ReleaseState = ReleaseState.TRIGGERED
    history: list[ReleaseState] = field(default_factory=lambda: [ReleaseState.TRIGGERED])
    version: str | None = None
    release_body: str | None = None
    failed_stage: str | None = None

    def advance(self, target: ReleaseState) -> None:
        """
        Move to `target`.

        Raises:
            InvalidTransitionError: If `target` does not follow the current state.

        """
        if self.state.terminal:
            raise InvalidTransitionError(f"Release already {self.state.value}; cannot move to {target.value}")
        if target is not ReleaseState.FAILED and _NEXT_STATE[self.state] is not target:
            raise InvalidTransitionError(f"Illegal release transition {self.state.value} -> {target.value}")
        self.state = target
        self.history.append(target)

    def __call__(self, job_spec: JobSpec, stage_run: StageRun) -> None:
        target = STAGE_STATES.get(job_spec.job_id)
        if target is None:
            return

        if stage_run.success:
            self.advance(target)
            if target is ReleaseState.VERSION_EXTRACTED:
                self.version = stage_run.outputs.get("version")
            elif target is ReleaseState.CHANGELOG_GENERATED:
                self.release_body = stage_run.outputs.get("release_body")
        elif not self.state.terminal:
            # Skipped stages follow an earlier failure, which is already recorded
            self.failed_stage = job_spec.job_id
            self.advance(ReleaseState.FAILED)
