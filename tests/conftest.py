"""Pytest configuration for releaseflow tests."""

from dataclasses import dataclass, field

import pytest


@pytest.fixture(autouse=True)
def reset_state(monkeypatch: pytest.MonkeyPatch, tmp_path):
    """Reset all state between tests and disable colors for CLI invocations."""
    from releaseflow import context
    from releaseflow.context import set_context, set_debug, set_pipeline_context, set_settings
    from releaseflow.output import reset_output_manager

    # Rich ignores NO_COLOR when FORCE_COLOR is set
    monkeypatch.delenv("FORCE_COLOR", raising=False)
    monkeypatch.setenv("NO_COLOR", "1")

    # Stages must not write into a real GHA output file or see CI variables
    for name in ("GITHUB_OUTPUT", "GITHUB_ACTIONS", "GITHUB_TOKEN", "GITHUB_REPOSITORY"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(context, "SECRETS_FILE", tmp_path / "no-secrets.toml")

    set_context(None)
    set_pipeline_context(None)
    set_settings(None)
    set_debug(False)
    reset_output_manager()

    yield

    set_context(None)
    set_pipeline_context(None)
    set_settings(None)
    set_debug(False)
    reset_output_manager()


# =============================================================================
# Fake GitHub client
# =============================================================================


@dataclass
class FakeRelease:
    tag_name: str
    name: str
    body: str
    draft: bool = False
    prerelease: bool = False

    @property
    def html_url(self) -> str:
        return f"https://github.com/acme/widget/releases/tag/{self.tag_name}"

    def update_release(self, name: str, message: str, draft: bool = False, prerelease: bool = False) -> "FakeRelease":
        self.name = name
        self.body = message
        self.draft = draft
        self.prerelease = prerelease
        return self


@dataclass
class FakeRepo:
    releases: dict[str, FakeRelease] = field(default_factory=dict)
    fail_with: Exception | None = None

    def get_release(self, tag: str) -> FakeRelease:
        from github import UnknownObjectException

        if tag not in self.releases:
            raise UnknownObjectException(404, {"message": "Not Found"}, None)
        return self.releases[tag]

    def create_git_release(self, *, tag: str, name: str, message: str, draft: bool, prerelease: bool) -> FakeRelease:
        if self.fail_with is not None:
            raise self.fail_with
        release = FakeRelease(tag_name=tag, name=name, body=message, draft=draft, prerelease=prerelease)
        self.releases[tag] = release
        return release


@dataclass
class FakeGithub:
    repo: FakeRepo = field(default_factory=FakeRepo)
    requested: list[str] = field(default_factory=list)

    def get_repo(self, full_name: str) -> FakeRepo:
        self.requested.append(full_name)
        return self.repo


@pytest.fixture
def fake_github() -> FakeGithub:
    return FakeGithub()


@pytest.fixture
def github(fake_github: FakeGithub, monkeypatch: pytest.MonkeyPatch) -> FakeGithub:
    """Route publish_github to `fake_github` with a token and repository in the environment."""
    from releaseflow import changelog, publish

    monkeypatch.setenv("GITHUB_TOKEN", "token")
    monkeypatch.setenv("GITHUB_REPOSITORY", "acme/widget")
    monkeypatch.setattr(publish, "make_client", lambda token, **kwargs: fake_github)
    monkeypatch.setattr(changelog, "ensure_full_history", lambda: False)
    return fake_github
