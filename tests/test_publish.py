"""Tests for publishing releases on GitHub."""

from typing import Any

import pytest
from github import GithubException

from releaseflow import PublishError
from releaseflow import publish
from releaseflow.publish import publish_github, publish_release, resolve_repository


class TestResolveRepository:
    def test_configured_wins(self) -> None:
        assert resolve_repository("acme/widget", {"GITHUB_REPOSITORY": "other/repo"}) == "acme/widget"

    def test_from_environment(self) -> None:
        assert resolve_repository(None, {"GITHUB_REPOSITORY": "acme/widget"}) == "acme/widget"

    def test_missing(self) -> None:
        with pytest.raises(PublishError, match="No repository"):
            resolve_repository(None, {})

    def test_malformed(self) -> None:
        with pytest.raises(PublishError, match="owner/name"):
            resolve_repository("widget", {})


class TestPublishRelease:
    def test_creates_release_named_after_tag(self, fake_github) -> None:
        release = publish_release(fake_github, "acme/widget", tag="v1.2.3", body="## v1.2.3")

        assert fake_github.requested == ["acme/widget"]
        assert release.tag_name == "v1.2.3"
        assert release.name == "v1.2.3"
        assert release.body == "## v1.2.3"

    def test_updates_existing_release(self, fake_github) -> None:
        publish_release(fake_github, "acme/widget", tag="v1.2.3", body="old body", name="old")

        release = publish_release(fake_github, "acme/widget", tag="v1.2.3", body="new body")

        assert release.body == "new body"
        assert release.name == "v1.2.3"
        assert list(fake_github.repo.releases) == ["v1.2.3"]

    def test_flags_passed_through(self, fake_github) -> None:
        release = publish_release(
            fake_github, "acme/widget", tag="v2.0.0-rc.1", body="", name="RC", draft=True, prerelease=True
        )
        assert (release.name, release.draft, release.prerelease) == ("RC", True, True)

    def test_github_error(self, fake_github) -> None:
        fake_github.repo.fail_with = GithubException(403, {"message": "Forbidden"}, None)
        with pytest.raises(PublishError, match="403"):
            publish_release(fake_github, "acme/widget", tag="v1", body="")


class TestPublishGithubStage:
    def test_publishes_with_token(self, fake_github, monkeypatch: pytest.MonkeyPatch) -> None:
        tokens: list[str] = []

        def fake_client(token: str, **kwargs: Any):
            tokens.append(token)
            return fake_github

        monkeypatch.setenv("GITHUB_TOKEN", "secret-token")
        monkeypatch.setenv("GITHUB_REPOSITORY", "acme/widget")
        monkeypatch.setattr(publish, "make_client", fake_client)

        result = publish_github(version="v1.2.3", release_body="## v1.2.3")

        assert result.ok
        assert result.value() == "https://github.com/acme/widget/releases/tag/v1.2.3"
        assert tokens == ["secret-token"]
        assert fake_github.repo.releases["v1.2.3"].body == "## v1.2.3"

    def test_prerelease_versions_marked(self, github) -> None:
        assert publish_github(version="v2.0.0-rc.1", release_body="").ok
        assert publish_github(version="v2.0.0", release_body="").ok

        assert github.repo.releases["v2.0.0-rc.1"].prerelease is True
        assert github.repo.releases["v2.0.0"].prerelease is False

    def test_prerelease_setting_marks_every_release(self, github) -> None:
        from releaseflow import Settings, set_settings

        settings = Settings()
        settings.publish.prerelease = True
        set_settings(settings)

        assert publish_github(version="v2.0.0", release_body="").ok
        assert github.repo.releases["v2.0.0"].prerelease is True

    def test_missing_token_fails(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("GITHUB_REPOSITORY", "acme/widget")
        result = publish_github(version="v1.2.3", release_body="")
        assert result.failed
        assert "GITHUB_TOKEN" in (result.error or "")


def test_make_client_uses_token_auth() -> None:
    client = publish.make_client("abc", api_url="https://github.example.com/api/v3", timeout=30)
    assert client is not None
