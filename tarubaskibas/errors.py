"""Exception hierarchy for the pantry tracker."""

from __future__ import annotations


class TarubaskibasError(Exception):
    """Base class for all errors raised by this package."""


class ConfigurationError(TarubaskibasError):
    """Remote store credentials are missing, malformed or a placeholder."""


class AuthenticationError(TarubaskibasError):
    """The remote sign-in handshake failed."""


class StreamError(TarubaskibasError):
    """A remote real-time subscription reported an error."""


class StorageUnavailableError(TarubaskibasError):
    """Remote mode is active but no client handle exists."""


class InvalidDateError(TarubaskibasError, ValueError):
    """A date string could not be parsed or resolved."""


class InvalidItemError(TarubaskibasError, ValueError):
    """An inventory record is missing required fields."""


class AnalysisError(TarubaskibasError):
    """The image analysis collaborator failed or returned garbage."""
