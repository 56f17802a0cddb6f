"""Release notes generation.

The notes come from git-cliff, run against the full commit history and
restricted to the latest (not yet released) range, labelled with the new
version. Nothing is written back: no changelog file, no commit, no tag.
"""

from __future__ import annotations

from pathlib import Path

from git import Repo
from git.exc import GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from .context import dbg, get_settings, out, set_output
from .errors import ChangelogError
from .result import Ok, Result
from .stage import SetupStep, stage
from .subprocess import run

# git-cliff is published on PyPI as a prebuilt binary wheel
INSTALL_GIT_CLIFF = SetupStep(name="Install git-cliff", run="pip install git-cliff")


def is_shallow(repo: Repo) -> bool:
    """A shallow clone has a `shallow` file in its git directory."""
    return (Path(repo.git_dir) / "shallow").exists()


def ensure_full_history(path: Path | str = ".") -> bool:
    """
    Make sure the repository at `path` has its full history and tags.

    Returns True if a fetch was needed.

    Raises:
        ChangelogError: If `path` is not a git repository or the fetch fails.

    """
    try:
        repo = Repo(path, search_parent_directories=True)
    except (InvalidGitRepositoryError, NoSuchPathError) as e:
        raise ChangelogError(f"Not a git repository: {path}") from e

    if not is_shallow(repo):
        return False

    dbg(f"{repo.working_dir} is a shallow clone, fetching full history")
    try:
        repo.git.fetch("--unshallow", "--tags")
    except GitCommandError as e:
        raise ChangelogError(f"Failed to fetch full history: {e}") from e
    return True


def git_cliff_command(
    version: str,
    *,
    config_path: Path,
    command: str = "git-cliff",
    extra_args: list[str] | None = None,
) -> list[str]:
    return [command, "--config", str(config_path), "--latest", "--tag", version, *(extra_args or [])]


def generate_changelog(
    version: str,
    *,
    config_path: Path = Path("cliff.toml"),
    command: str = "git-cliff",
    extra_args: list[str] | None = None,
    cwd: Path | None = None,
) -> str:
    """
    Run git-cliff for the latest range, tagged `version`, and return the notes.

    Raises:
        ChangelogError: If the configuration is missing or git-cliff fails.

    """
    resolved_config = (cwd / config_path) if cwd and not config_path.is_absolute() else config_path
    if not resolved_config.exists():
        raise ChangelogError(f"Changelog configuration not found: {resolved_config}")

    cmd = git_cliff_command(version, config_path=config_path, command=command, extra_args=extra_args)
    try:
        result = run(*cmd, cwd=cwd, capture=True)
    except FileNotFoundError as e:
        raise ChangelogError(f"{command} not found. Install it from https://git-cliff.org") from e

    # git-cliff logs to stderr
    for line in result.stderr.splitlines():
        dbg(line)

    if result.failed:
        detail = result.stderr.strip() or result.stdout.strip() or f"exit code {result.returncode}"
        raise ChangelogError(f"{command} failed: {detail}")

    return result.stdout.rstrip("\n")


@stage(outputs=["release_body"], full_history=True, setup=[INSTALL_GIT_CLIFF])
def build_changelog(*, version: str) -> Result[str]:
    """Generate changelog."""
    settings = get_settings().changelog
    if settings.fetch_full_history and ensure_full_history():
        out("Fetched full history")

    body = generate_changelog(
        version,
        config_path=settings.config_path,
        command=settings.command,
        extra_args=settings.extra_args,
    )
    set_output("release_body", body)
    out(f"Generated release notes for {version} ({len(body.splitlines())} lines)")
    return Ok(body)
