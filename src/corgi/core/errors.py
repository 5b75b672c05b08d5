"""
Infrastructure exceptions for Corgi.
Raised when no meaningful decode is possible (dataset missing, download or backend failure).
VIN-level problems are never raised; they are recorded as DecodeError entries instead.
"""
from typing import Optional


class InfrastructureError(Exception):
    """Base class for environment failures that reject a decode call."""
    category = "infrastructure"


class DatabaseUnavailableError(InfrastructureError):
    """No usable dataset file could be found or prepared."""


class DownloadError(InfrastructureError):
    """Fetching the compressed dataset snapshot failed."""

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class RedirectLimitError(DownloadError):
    """The download source redirected more times than allowed."""


class BackendError(InfrastructureError):
    """The dataset store could not be opened or queried."""
