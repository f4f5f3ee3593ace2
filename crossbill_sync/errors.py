from typing import Optional


class SyncError(Exception):
    """Base class for everything that can go wrong during a sync run."""


class AuthError(SyncError):
    """Missing credentials, or the server rejected login/refresh."""


class NetworkError(SyncError):
    """Transport level failure (DNS, connect, timeout, TLS). Always retryable."""


class ServerError(SyncError):
    """Non-200 application response. Retryable like NetworkError."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class LocalStorageError(SyncError):
    """The session database is unavailable or a write failed."""
