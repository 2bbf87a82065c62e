"""
Custom exceptions for raindrop-sync

Defines the exception classes used throughout the synchronization process,
split between whole-pass failures (remote API, state file) and per-item
failures (note creation, archival).
"""


class RaindropSyncError(Exception):
    """Base exception class for all raindrop-sync errors."""

    pass


class ConfigError(RaindropSyncError):
    """Raised when the configuration is missing or invalid."""

    pass


class StateFileError(RaindropSyncError):
    """Raised when there are issues with the sync state file."""

    pass


class SyncLogicError(RaindropSyncError):
    """Raised when there are issues with the synchronization logic."""

    pass


class VaultError(RaindropSyncError):
    """Raised when a note cannot be written to or moved inside the vault."""

    pass


class RaindropError(RaindropSyncError):
    """Raised when communication with Raindrop.io fails."""

    pass


class RaindropAuthError(RaindropError):
    """Raised when Raindrop.io rejects the API token (HTTP 401)."""

    pass


class RaindropRateLimitError(RaindropError):
    """Raised when Raindrop.io rate limits the client (HTTP 429)."""

    pass


class RaindropHTTPError(RaindropError):
    """Raised for any other non-2xx answer from Raindrop.io."""

    def __init__(self, message: str, status_code: int = 0):
        super().__init__(message)
        self.status_code = status_code


class RaindropConnectionError(RaindropError):
    """Raised when Raindrop.io cannot be reached or the request times out."""

    pass
