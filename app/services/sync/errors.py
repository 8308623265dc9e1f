"""
File sync errors
Raised inside one integration's pass and recorded on its sync run
"""


class FileSyncError(Exception):
    """Base class for failures contained at the per-integration boundary."""


class ProviderNotConfiguredError(FileSyncError):
    """OAuth client credentials for a provider are missing."""


class TokenRefreshError(FileSyncError):
    """Provider rejected a refresh token or returned an unusable grant."""


class ProviderAPIError(FileSyncError):
    """Listing or download call against a provider failed."""

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code


class CursorConflictError(FileSyncError):
    """Cursor record changed since it was read (concurrent sync pass)."""


class StorageNotConfiguredError(FileSyncError):
    """No destination bucket is configured for uploads."""


class LeaseLostError(FileSyncError):
    """Another pass took over this integration's lease mid-run."""
