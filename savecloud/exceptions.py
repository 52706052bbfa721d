"""Error taxonomy for the backup/restore engine."""

from __future__ import annotations


class CloudSaveError(Exception):
    """Base class for every error raised by savecloud."""


class NotConfigured(CloudSaveError):
    """No client credentials (or no local backup folder) were configured."""


class AuthorizationDenied(CloudSaveError):
    """The user cancelled or the provider refused the interactive authorization."""


class TransientNetworkFailure(CloudSaveError):
    """A provider call failed (timeout, connection error, 4xx/5xx)."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthenticationExpired(TransientNetworkFailure):
    """The provider rejected the session even after a token refresh."""


class MetadataParseFailure(CloudSaveError):
    """A backup description could not be decoded. Never leaves the catalog/pipeline."""


class LocalIOFailure(CloudSaveError):
    """A load-bearing local file operation failed."""


class CaptureToolError(CloudSaveError):
    """The save-data capture tool failed to capture or restore."""
