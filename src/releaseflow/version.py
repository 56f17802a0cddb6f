"""Release version extraction from tag references."""

from __future__ import annotations

from typing import Final

import semver

from .context import get_settings, out, set_output
from .errors import InvalidVersionError
from .result import Ok, Result
from .stage import stage

TAG_REF_PREFIX: Final = "refs/tags/"


def extract_version(ref: str, *, prefix: str = TAG_REF_PREFIX, strict: bool = False) -> str:
    """
    Strip the tag prefix from `ref`: `refs/tags/v1.2.3` -> `v1.2.3`.

    Whatever follows the prefix is accepted as-is. A ref without the prefix is
    returned unchanged.

    With `strict=True` the result must also be a semantic version, with or
    without a leading `v`.

    Raises:
        InvalidVersionError: In strict mode, if the result is not a semantic version.

    """
    version = ref.removeprefix(prefix)
    if strict:
        parse_semver(version)
    return version


def parse_semver(version: str) -> semver.Version:
    """Parse `v1.2.3` / `1.2.3` (pre-release and build metadata allowed)."""
    try:
        return semver.Version.parse(version.removeprefix("v"))
    except ValueError as e:
        raise InvalidVersionError(f"'{version}' is not a semantic version: {e}") from e


def is_prerelease(version: str) -> bool:
    """True for versions with a pre-release part, e.g. `v1.0.0-rc.1`."""
    try:
        return parse_semver(version).prerelease is not None
    except InvalidVersionError:
        return False


@stage(outputs=["version"])
def get_release_version(*, ref: str) -> Result[str]:
    """Get release version from tag."""
    settings = get_settings().release
    version = extract_version(ref, prefix=settings.tag_prefix, strict=settings.strict_versions)
    set_output("version", version)
    out(f"release version={version}")
    return Ok(version)
