"""Publishing the release record on GitHub."""

from __future__ import annotations

import os
from collections.abc import Mapping

from github import Auth, Github, GithubException, UnknownObjectException
from github.GitRelease import GitRelease

from .context import get_secret, get_settings, out
from .errors import PublishError
from .result import Ok, Result
from .stage import stage
from .version import is_prerelease

TOKEN_SECRET = "GITHUB_TOKEN"


def resolve_repository(configured: str | None = None, environ: Mapping[str, str] | None = None) -> str:
    """Return `owner/name` from the configuration or GITHUB_REPOSITORY."""
    env = os.environ if environ is None else environ
    repository = configured or env.get("GITHUB_REPOSITORY")
    if not repository:
        raise PublishError("No repository configured. Set publish.repository or GITHUB_REPOSITORY.")
    if repository.count("/") != 1:
        raise PublishError(f"Repository must be 'owner/name', got '{repository}'")
    return repository


def make_client(token: str, *, api_url: str | None = None, timeout: int = 120) -> Github:
    if api_url:
        return Github(auth=Auth.Token(token), base_url=api_url, timeout=timeout)
    return Github(auth=Auth.Token(token), timeout=timeout)


def publish_release(
    gh: Github,
    repository: str,
    *,
    tag: str,
    body: str,
    name: str | None = None,
    draft: bool = False,
    prerelease: bool = False,
) -> GitRelease:
    """
    Create the release for `tag`, or update it if one already exists.

    The tag is both the lookup key and the display name (unless `name` is given).
    A partially created release is left as-is on failure.

    Raises:
        PublishError: If GitHub rejects any request.

    """
    display_name = name or tag
    try:
        repo = gh.get_repo(repository)
        try:
            existing: GitRelease | None = repo.get_release(tag)
        except UnknownObjectException:
            existing = None

        if existing is None:
            return repo.create_git_release(
                tag=tag,
                name=display_name,
                message=body,
                draft=draft,
                prerelease=prerelease,
            )

        return existing.update_release(
            name=display_name,
            message=body,
            draft=draft,
            prerelease=prerelease,
        )
    except GithubException as e:
        raise PublishError(f"GitHub rejected release '{tag}' for {repository}: {e.status} {e.data}") from e


@stage(secrets=[TOKEN_SECRET])
def publish_github(*, version: str, release_body: str) -> Result[str]:
    """Create GitHub release."""
    settings = get_settings().publish
    repository = resolve_repository(settings.repository)
    gh = make_client(get_secret(TOKEN_SECRET), api_url=settings.api_url, timeout=settings.timeout)

    release = publish_release(
        gh,
        repository,
        tag=version,
        body=release_body,
        draft=settings.draft,
        prerelease=settings.prerelease or is_prerelease(version),
    )
    out(f"Published {release.tag_name}: {release.html_url}")
    return Ok(release.html_url)
