"""
Exception types for PosterVault.

Each type maps to a failure scope: a TransportError or DataError ends the
current library run, a FilesystemError is recorded against a single item,
and a ConfigError stops the whole sweep before any work starts.
"""


class PosterVaultError(Exception):
    """Base class for all PosterVault errors."""


class TransportError(PosterVaultError):
    """Network failure or non-2xx response from the media server."""


class DataError(PosterVaultError):
    """Malformed or unexpected response shape from the media server."""


class FilesystemError(PosterVaultError):
    """A poster file or tracking file could not be written or renamed."""


class ConfigError(PosterVaultError):
    """A required setting is missing or invalid."""
