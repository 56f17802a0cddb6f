"""Source-control events that trigger pipelines."""

from __future__ import annotations

import os
from collections.abc import Mapping
from typing import Any, Literal

from pydantic import BaseModel

TAG_PREFIX = "refs/tags/"
BRANCH_PREFIX = "refs/heads/"


class TriggerEvent(BaseModel):
    """
    The event a pipeline run was started for.

    Only the fields the pipelines consume are modelled: the pushed ref for tag
    pushes and the proposed revision for pull requests.
    """

    name: Literal["push", "pull_request", "workflow_dispatch"]
    ref: str = ""
    sha: str | None = None
    repository: str | None = None
    head_ref: str | None = None
    base_ref: str | None = None

    model_config = {"frozen": True}

    @property
    def ref_type(self) -> str | None:
        if self.ref.startswith(TAG_PREFIX):
            return "tag"
        if self.ref.startswith(BRANCH_PREFIX):
            return "branch"
        return None

    @property
    def ref_name(self) -> str:
        """The short ref name (`v1.2.3` for `refs/tags/v1.2.3`)."""
        for prefix in (TAG_PREFIX, BRANCH_PREFIX):
            if self.ref.startswith(prefix):
                return self.ref[len(prefix) :]
        return self.ref

    def lookup(self, path: str) -> Any:
        """Resolve a dotted attribute path such as `ref` or `ref_name`."""
        value: Any = self
        for part in path.split("."):
            value = getattr(value, part, None)
            if value is None:
                return None
        return value

    @classmethod
    def tag_push(cls, tag_ref: str, **kwargs: Any) -> TriggerEvent:
        """Build a push event for a tag (accepts `v1.2.3` or `refs/tags/v1.2.3`)."""
        if not tag_ref.startswith("refs/"):
            tag_ref = f"{TAG_PREFIX}{tag_ref}"
        return cls(name="push", ref=tag_ref, **kwargs)

    @classmethod
    def pull_request(cls, head_ref: str | None = None, **kwargs: Any) -> TriggerEvent:
        return cls(name="pull_request", head_ref=head_ref, **kwargs)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> TriggerEvent:
        """Build the event from the GITHUB_* variables set by GitHub Actions."""
        env = os.environ if environ is None else environ
        name = env.get("GITHUB_EVENT_NAME", "push")
        if name not in ("push", "pull_request", "workflow_dispatch"):
            raise ValueError(f"Unsupported event: {name}")
        return cls(
            name=name,  # type: ignore[arg-type]
            ref=env.get("GITHUB_REF", ""),
            sha=env.get("GITHUB_SHA"),
            repository=env.get("GITHUB_REPOSITORY"),
            head_ref=env.get("GITHUB_HEAD_REF") or None,
            base_ref=env.get("GITHUB_BASE_REF") or None,
        )
