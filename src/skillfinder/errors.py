"""Exception hierarchy for SkillFinder."""

from __future__ import annotations


class SkillFinderError(Exception):
    """Base class for all SkillFinder errors."""


class ConfigError(SkillFinderError):
    """Raised when a skill configuration file cannot be parsed."""


class IndexBuildError(SkillFinderError):
    """Raised when reference documents cannot be read or hashed.

    Unlike search failures this is never swallowed: a broken index affects
    every subsequent query.
    """


class SearchError(SkillFinderError):
    """Base class for recoverable semantic search failures."""


class IndexNotBuilt(SearchError):
    """The semantic collection is missing and was never indexed."""


class ServerStartError(SearchError):
    """The vector database server could not be started."""


class ServerStartTimeout(ServerStartError):
    """The server process spawned but never accepted connections in time."""


class ServerConnectFailure(SearchError):
    """The server is registered but the client could not reach it."""


class CollectionEmpty(SearchError):
    """The semantic collection exists but holds no documents."""


class CollectionUnavailable(SearchError):
    """The semantic collection could not be read or returned malformed data."""


class ContentError(SkillFinderError):
    """Raised when a user note cannot be written to the references directory."""
