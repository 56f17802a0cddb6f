"""Configuration for releaseflow.

Settings are read from `releaseflow.toml`, or from the `[tool.releaseflow]`
table of `pyproject.toml`. Every field has a default matching the stock
workflows, so an empty configuration is valid:

    [gate]
    test_command = ["cargo", "test"]
    lint_timeout_minutes = 45

    [changelog]
    config_path = "cliff.toml"

    [publish]
    repository = "owner/repo"
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from .errors import ConfigError

CONFIG_FILENAME = "releaseflow.toml"


class GateSettings(BaseModel):
    """Pull-request gate: test and lint commands and their toolchains."""

    model_config = {"extra": "forbid"}

    install_toolchain: bool = True
    toolchain: str = "stable"
    test_command: list[str] = Field(default_factory=lambda: ["cargo", "test"])

    lint_toolchain: str = "stable"
    lint_components: list[str] = Field(default_factory=lambda: ["clippy"])
    lint_command: list[str] = Field(default_factory=lambda: ["cargo", "clippy", "--tests"])
    lint_timeout_minutes: float | None = 45


class ChangelogSettings(BaseModel):
    """Changelog generation via git-cliff."""

    model_config = {"extra": "forbid"}

    command: str = "git-cliff"
    config_path: Path = Path("cliff.toml")
    extra_args: list[str] = Field(default_factory=lambda: ["--verbose"])
    fetch_full_history: bool = True


class PublishSettings(BaseModel):
    """Release publishing on GitHub."""

    model_config = {"extra": "forbid"}

    repository: str | None = None
    api_url: str | None = None
    timeout: int = 120
    draft: bool = False
    prerelease: bool = False


class ReleaseSettings(BaseModel):
    """Release trigger and version extraction."""

    model_config = {"extra": "forbid"}

    tag_prefix: str = "refs/tags/"
    strict_versions: bool = False


class WorkflowSettings(BaseModel):
    """Parameters of the rendered GitHub Actions workflows."""

    model_config = {"extra": "forbid"}

    runs_on: str = "ubuntu-latest"
    python_version: str = "3.11"
    install_command: str = "pip install releaseflow"
    cli_command: str = "releaseflow"
    output_dir: Path = Path(".github/workflows")


class Settings(BaseModel):
    """Complete releaseflow configuration."""

    model_config = {"extra": "forbid"}

    gate: GateSettings = Field(default_factory=GateSettings)
    changelog: ChangelogSettings = Field(default_factory=ChangelogSettings)
    publish: PublishSettings = Field(default_factory=PublishSettings)
    release: ReleaseSettings = Field(default_factory=ReleaseSettings)
    workflow: WorkflowSettings = Field(default_factory=WorkflowSettings)


def _read_toml(path: Path) -> dict[str, Any]:
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigError(f"Failed to read {path}: {e}") from e


def find_config(directory: Path | None = None) -> Path | None:
    """
    Locate the configuration file for `directory` (default: cwd).

    `releaseflow.toml` wins over a `pyproject.toml` with a `[tool.releaseflow]` table.
    """
    base = directory or Path.cwd()
    candidate = base / CONFIG_FILENAME
    if candidate.exists():
        return candidate
    pyproject = base / "pyproject.toml"
    if pyproject.exists() and "releaseflow" in _read_toml(pyproject).get("tool", {}):
        return pyproject
    return None


def load_settings(path: Path | None = None) -> Settings:
    """
    Load settings from `path`, or from the discovered config file.

    Returns defaults when no configuration exists.

    Raises:
        ConfigError: If the file cannot be parsed or fails validation.

    """
    if path is None:
        path = find_config()
        if path is None:
            return Settings()
    elif not path.exists():
        raise ConfigError(f"Config file not found: {path}")

    data = _read_toml(path)
    if path.name == "pyproject.toml":
        data = data.get("tool", {}).get("releaseflow", {})

    try:
        return Settings.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {path}:\n{e}") from e
