"""Tests for console and GitHub Actions output."""

import pytest

from releaseflow.output import OutputManager, escape_command_data, escape_command_property


def test_escape_command_data() -> None:
    assert escape_command_data("50% done\r\nnext") == "50%25 done%0D%0Anext"


def test_escape_command_property() -> None:
    assert escape_command_property("lint: clippy, stable") == "lint%3A clippy%2C stable"


class TestGithubActions:
    @pytest.fixture
    def manager(self, monkeypatch: pytest.MonkeyPatch) -> OutputManager:
        monkeypatch.setenv("GITHUB_ACTIONS", "true")
        return OutputManager()

    def test_failure_annotation_is_escaped(self, manager: OutputManager, capsys: pytest.CaptureFixture[str]) -> None:
        manager.print_stage_status("build: docs, api", "failure", 1.0, error="coverage 40%\nbelow threshold")

        lines = capsys.readouterr().out.splitlines()
        assert lines[0] == "::error title=build%3A docs%2C api::coverage 40%25%0Abelow threshold"
        assert lines[-1] == "::endgroup::"

    def test_success_has_no_annotation(self, manager: OutputManager, capsys: pytest.CaptureFixture[str]) -> None:
        manager.print_stage_status("clippy", "success", 2.5)

        out = capsys.readouterr().out
        assert "::error" not in out
        assert "clippy success in 2.50s" in out

    def test_group_and_error_messages(self, manager: OutputManager, capsys: pytest.CaptureFixture[str]) -> None:
        manager.print_stage_header("changelog")
        manager.print_error("first\nsecond")

        assert capsys.readouterr().out.splitlines() == ["::group::changelog", "::error::first%0Asecond"]
