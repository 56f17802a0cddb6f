"""Tests for release notes generation."""

from pathlib import Path
from types import SimpleNamespace

import pytest
from git import Repo

from releaseflow import ChangelogError
from releaseflow import changelog
from releaseflow.changelog import (
    build_changelog,
    ensure_full_history,
    generate_changelog,
    git_cliff_command,
    is_shallow,
)
from releaseflow.subprocess import RunResult


@pytest.fixture
def cliff_config(tmp_path: Path) -> Path:
    config = tmp_path / "cliff.toml"
    config.write_text("[changelog]\n")
    return config


def test_git_cliff_command() -> None:
    assert git_cliff_command("v1.2.3", config_path=Path("cliff.toml"), extra_args=["--verbose"]) == [
        "git-cliff",
        "--config",
        "cliff.toml",
        "--latest",
        "--tag",
        "v1.2.3",
        "--verbose",
    ]


class TestGenerateChangelog:
    def test_returns_stdout(self, cliff_config: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        calls = []

        def fake_run(*args, **kwargs):
            calls.append((args, kwargs))
            return RunResult(returncode=0, stdout="## v1.2.3\n\n- Fix things\n\n", stderr="INFO processing")

        monkeypatch.setattr(changelog, "run", fake_run)
        body = generate_changelog("v1.2.3", config_path=cliff_config)

        assert body == "## v1.2.3\n\n- Fix things"
        args, kwargs = calls[0]
        assert args[:2] == ("git-cliff", "--config")
        assert "--latest" in args
        assert kwargs["capture"] is True

    def test_missing_config(self, tmp_path: Path) -> None:
        with pytest.raises(ChangelogError, match="not found"):
            generate_changelog("v1", config_path=tmp_path / "absent.toml")

    def test_relative_config_resolved_against_cwd(self, cliff_config: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(changelog, "run", lambda *a, **k: RunResult(returncode=0, stdout="notes"))
        assert generate_changelog("v1", config_path=Path("cliff.toml"), cwd=cliff_config.parent) == "notes"

    def test_command_failure(self, cliff_config: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(
            changelog, "run", lambda *a, **k: RunResult(returncode=1, stderr="ERROR no commits found")
        )
        with pytest.raises(ChangelogError, match="no commits found"):
            generate_changelog("v1", config_path=cliff_config)

    def test_command_not_installed(self, cliff_config: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        def missing(*args, **kwargs):
            raise FileNotFoundError(args[0])

        monkeypatch.setattr(changelog, "run", missing)
        with pytest.raises(ChangelogError, match="git-cliff not found"):
            generate_changelog("v1", config_path=cliff_config)


class TestHistory:
    def test_is_shallow(self, tmp_path: Path) -> None:
        repo = SimpleNamespace(git_dir=str(tmp_path))
        assert not is_shallow(repo)  # type: ignore[arg-type]
        (tmp_path / "shallow").write_text("abc\n")
        assert is_shallow(repo)  # type: ignore[arg-type]

    def test_full_clone_needs_no_fetch(self, tmp_path: Path) -> None:
        Repo.init(tmp_path)
        assert ensure_full_history(tmp_path) is False

    def test_failed_unshallow(self, tmp_path: Path) -> None:
        repo = Repo.init(tmp_path)
        (Path(repo.git_dir) / "shallow").write_text("")
        # No remote to fetch from
        with pytest.raises(ChangelogError, match="Failed to fetch"):
            ensure_full_history(tmp_path)

    def test_not_a_repository(self, tmp_path: Path) -> None:
        with pytest.raises(ChangelogError, match="Not a git repository"):
            ensure_full_history(tmp_path / "does-not-exist")


class TestBuildChangelogStage:
    def test_sets_release_body(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(changelog, "ensure_full_history", lambda: False)
        monkeypatch.setattr(changelog, "generate_changelog", lambda version, **kwargs: f"## {version}\n- change")

        result = build_changelog(version="v1.2.3")
        assert result.ok
        assert result.outputs == {"release_body": "## v1.2.3\n- change"}

    def test_failure_has_no_outputs(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def broken(version, **kwargs):
            raise ChangelogError("git-cliff failed: boom")

        monkeypatch.setattr(changelog, "ensure_full_history", lambda: False)
        monkeypatch.setattr(changelog, "generate_changelog", broken)

        result = build_changelog(version="v1.2.3")
        assert result.failed
        assert "boom" in (result.error or "")
        assert result.outputs == {}
