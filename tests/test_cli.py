"""Tests for the command-line interface."""

from pathlib import Path

import pytest
from click.testing import CliRunner

import releaseflow
from releaseflow import changelog, gate
from releaseflow.cli import _build_stage_command, cli
from releaseflow.stage import get_stage_info
from releaseflow.subprocess import RunResult
from releaseflow.version import get_release_version


@pytest.fixture(autouse=True)
def in_tmp_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Run every command in an empty directory so no config file is picked up."""
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


def test_help(runner: CliRunner) -> None:
    result = runner.invoke(cli, ["--help"])
    assert result.exit_code == 0
    for command in ("gate", "release", "version", "run", "generate-gha", "stage"):
        assert command in result.output


class TestVersion:
    def test_prints_version(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["version", "refs/tags/v1.2.3"])
        assert result.exit_code == 0
        assert result.output == "v1.2.3\n"

    def test_lenient_by_default(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["version", "refs/tags/nightly"])
        assert result.exit_code == 0
        assert result.output == "nightly\n"

    def test_strict(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["version", "--strict", "refs/tags/nightly"])
        assert result.exit_code == 1
        assert "not a semantic version" in result.output

    def test_strict_from_config(self, runner: CliRunner, in_tmp_dir: Path) -> None:
        (in_tmp_dir / "releaseflow.toml").write_text("[release]\nstrict_versions = true\n")
        assert runner.invoke(cli, ["version", "refs/tags/nightly"]).exit_code == 1
        assert runner.invoke(cli, ["version", "--no-strict", "refs/tags/nightly"]).exit_code == 0


def test_missing_config_file(runner: CliRunner) -> None:
    result = runner.invoke(cli, ["--config", "missing.toml", "version", "v1"])
    assert result.exit_code == 1
    assert "Config file not found" in result.output


class TestStageCommand:
    def test_options_built_from_signature(self) -> None:
        cmd = _build_stage_command(get_stage_info(get_release_version))
        assert cmd.name == "get-release-version"
        option = cmd.params[0]
        assert option.name == "ref"
        assert option.envvar == "RELEASEFLOW_INPUT_REF"

    def test_run_stage_writes_github_output(
        self, runner: CliRunner, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        output_file = tmp_path / "github_output"
        monkeypatch.setenv("GITHUB_OUTPUT", str(output_file))

        result = runner.invoke(cli, ["stage", "get-release-version", "--ref", "refs/tags/v1.0.0"])

        assert result.exit_code == 0, result.output
        assert "release version=v1.0.0" in result.output
        assert output_file.read_text() == "version=v1.0.0\n"

    def test_input_from_environment(self, runner: CliRunner) -> None:
        result = runner.invoke(
            cli, ["stage", "get-release-version"], env={"RELEASEFLOW_INPUT_REF": "refs/tags/v3.0.0"}
        )
        assert result.exit_code == 0, result.output
        assert "release version=v3.0.0" in result.output

    def test_version_stage_reads_config_from_checkout(self, runner: CliRunner, in_tmp_dir: Path) -> None:
        (in_tmp_dir / "releaseflow.toml").write_text("[release]\nstrict_versions = true\n")
        result = runner.invoke(cli, ["stage", "get-release-version", "--ref", "refs/tags/nightly"])
        assert result.exit_code == 1
        assert "not a semantic version" in result.output

    def test_missing_input(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["stage", "publish-github"], env={"RELEASEFLOW_INPUT_VERSION": "v2.0.0"})
        assert result.exit_code == 2
        assert "Missing option '--release-body'" in result.output

    def test_empty_environment_input_is_empty_string(self, runner: CliRunner, github) -> None:
        result = runner.invoke(
            cli,
            ["stage", "publish-github"],
            env={"RELEASEFLOW_INPUT_VERSION": "v2.0.0", "RELEASEFLOW_INPUT_RELEASE_BODY": ""},
        )
        assert result.exit_code == 0, result.output
        assert github.repo.releases["v2.0.0"].body == ""

    def test_empty_environment_input_overrides_default(self, runner: CliRunner) -> None:
        seen: list[str] = []

        @releaseflow.stage
        def greet(*, name: str = "world") -> releaseflow.Result[None]:
            seen.append(name)
            return releaseflow.Ok(None)

        cmd = _build_stage_command(get_stage_info(greet))
        assert runner.invoke(cmd, [], env={"RELEASEFLOW_INPUT_NAME": ""}).exit_code == 0
        assert runner.invoke(cmd, []).exit_code == 0
        assert runner.invoke(cmd, ["--name", "there"], env={"RELEASEFLOW_INPUT_NAME": ""}).exit_code == 0
        assert seen == ["", "world", "there"]

    def test_failing_stage_exits_nonzero(self, runner: CliRunner, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(gate, "run", lambda *args, **kwargs: RunResult(returncode=101, command=list(args)))
        result = runner.invoke(cli, ["stage", "test-stable"])
        assert result.exit_code == 1
        assert "exited with code 101" in result.output


class TestGate:
    def test_passes(self, runner: CliRunner, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(gate, "run", lambda *args, **kwargs: RunResult(returncode=0, command=list(args)))
        result = runner.invoke(cli, ["gate"])
        assert result.exit_code == 0, result.output
        assert "ci succeeded" in result.output

    def test_fails(self, runner: CliRunner, monkeypatch: pytest.MonkeyPatch) -> None:
        def fake_run(*args, **kwargs) -> RunResult:
            return RunResult(returncode=1 if "--tests" in args else 0, command=list(args))

        monkeypatch.setattr(gate, "run", fake_run)
        result = runner.invoke(cli, ["gate"])
        assert result.exit_code == 1
        assert "ci failed" in result.output


class TestRelease:
    def test_publishes(self, runner: CliRunner, github, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(changelog, "generate_changelog", lambda version, **kwargs: f"## {version}")

        result = runner.invoke(cli, ["release", "--ref", "v1.2.3"])

        assert result.exit_code == 0, result.output
        assert "Release state: published" in result.output
        assert github.repo.releases["v1.2.3"].body == "## v1.2.3"

    def test_repository_option(self, runner: CliRunner, github, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(changelog, "generate_changelog", lambda version, **kwargs: "notes")
        monkeypatch.delenv("GITHUB_REPOSITORY")

        result = runner.invoke(cli, ["release", "--ref", "v1.2.3", "--repository", "acme/other"])

        assert result.exit_code == 0, result.output
        assert github.requested == ["acme/other"]

    def test_changelog_failure(self, runner: CliRunner, github, monkeypatch: pytest.MonkeyPatch) -> None:
        def broken(version, **kwargs):
            raise changelog.ChangelogError("git-cliff failed")

        monkeypatch.setattr(changelog, "generate_changelog", broken)

        result = runner.invoke(cli, ["release", "--ref", "v1.2.3"])

        assert result.exit_code == 1
        assert "Release state: failed" in result.output
        assert "Failed stage: changelog" in result.output
        assert github.repo.releases == {}

    def test_non_tag_ref_rejected(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["release", "--ref", "refs/heads/main"])
        assert result.exit_code == 1
        assert "not triggered" in result.output


class TestRun:
    def test_unknown_pipeline(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["run", "nope"])
        assert result.exit_code == 2

    def test_run_ci(self, runner: CliRunner, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(gate, "run", lambda *args, **kwargs: RunResult(returncode=0, command=list(args)))
        result = runner.invoke(cli, ["run", "ci", "--event", "pull_request"])
        assert result.exit_code == 0, result.output

    def test_event_mismatch(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["run", "release", "--event", "pull_request"])
        assert result.exit_code == 1

    def test_from_env(self, runner: CliRunner, github, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(changelog, "generate_changelog", lambda version, **kwargs: "notes")
        result = runner.invoke(
            cli,
            ["run", "release", "--from-env"],
            env={"GITHUB_EVENT_NAME": "push", "GITHUB_REF": "refs/tags/v4.0.0"},
        )
        assert result.exit_code == 0, result.output
        assert "v4.0.0" in github.repo.releases


class TestGenerateGha:
    def test_writes_and_checks(self, runner: CliRunner, in_tmp_dir: Path) -> None:
        result = runner.invoke(cli, ["generate-gha"])
        assert result.exit_code == 0, result.output
        workflows = in_tmp_dir / ".github" / "workflows"
        assert sorted(p.name for p in workflows.iterdir()) == ["ci.yml", "release.yml"]

        assert runner.invoke(cli, ["generate-gha", "--check"]).exit_code == 0

        (workflows / "release.yml").write_text("stale\n")
        result = runner.invoke(cli, ["generate-gha", "--check"])
        assert result.exit_code == 1
        assert "out of date" in result.output

    def test_output_dir(self, runner: CliRunner, in_tmp_dir: Path) -> None:
        result = runner.invoke(cli, ["generate-gha", "--output-dir", "out"])
        assert result.exit_code == 0, result.output
        assert (in_tmp_dir / "out" / "ci.yml").exists()
