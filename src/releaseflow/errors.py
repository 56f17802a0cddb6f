"""Exception types raised by releaseflow."""

from __future__ import annotations


class ReleaseflowError(Exception):
    """Base class for all releaseflow errors."""


class PipelineDefinitionError(ReleaseflowError, ValueError):
    """A pipeline graph is malformed (bad inputs, unknown outputs, cycles...)."""


class InvalidVersionError(ReleaseflowError, ValueError):
    """A tag did not have a semantic version shape in strict mode."""


class InvalidTransitionError(ReleaseflowError, RuntimeError):
    """A release run attempted an illegal state transition."""


class ChangelogError(ReleaseflowError):
    """The changelog generator could not produce release notes."""


class PublishError(ReleaseflowError):
    """The release service rejected or failed a publish request."""


class ConfigError(ReleaseflowError, ValueError):
    """The configuration file could not be loaded."""
