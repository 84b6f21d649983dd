"""Exception hierarchy for claude-plugins.

Every error the core raises derives from PluginsError so the CLI can turn it
into a one-line message and a non-zero exit instead of a traceback.
"""

from typing import List, Optional


class PluginsError(Exception):
    """Base class for all claude-plugins errors."""

    hint: Optional[str] = None

    def __init__(self, message: str, hint: Optional[str] = None):
        super().__init__(message)
        if hint is not None:
            self.hint = hint


class ParseError(PluginsError, ValueError):
    """User input could not be classified as a plugin or skill identifier."""


class ResolutionError(PluginsError):
    """An identifier could not be mapped to a fetchable source."""

    hint = "Visit https://claude-plugins.dev to discover available plugins and skills."


class FetchError(PluginsError):
    """A git clone, pull or tarball download failed."""


class ValidationError(PluginsError):
    """A fetched artifact or JSON document has the wrong structure."""


class RegistrationError(PluginsError):
    """Writing a plugin into a marketplace manifest failed."""


class RegistryError(PluginsError):
    """The remote registry answered with an error."""


class PluginNotInstalledError(PluginsError):
    """The named plugin has no entry in settings."""

    def __init__(self, name: str):
        super().__init__(f'Plugin "{name}" is not installed')
        self.name = name


class PluginAlreadyEnabledError(PluginsError):
    """Enable was requested for a plugin that is already enabled."""

    def __init__(self, name: str):
        super().__init__(f'Plugin "{name}" is already enabled')
        self.name = name


class UnknownClientError(PluginsError):
    """A skill client id is not in the client table."""

    def __init__(self, client: str, available: List[str]):
        super().__init__(
            f"Unknown client: {client}",
            hint=f"Available: {', '.join(available)}",
        )
        self.client = client
