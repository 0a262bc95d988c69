from __future__ import annotations


class NowPlayingError(Exception):
    """Base class for every error raised by the badge service."""


class NotLinkedError(NowPlayingError):
    """No stored credential for the requested user."""

    def __init__(self, user_id: str, message: str | None = None):
        super().__init__(message or f"User {user_id} is not linked")
        self.user_id = user_id


class RefreshFailedError(NotLinkedError):
    """The refresh token was rejected or the token endpoint was unreachable."""


class CredentialNotFoundError(NowPlayingError):
    def __init__(self, user_id: str):
        super().__init__(f"No credential stored for {user_id}")
        self.user_id = user_id


class StoreError(NowPlayingError):
    """The credential backend failed to read or write."""


class UnauthorizedError(NowPlayingError):
    """Spotify rejected the access token."""


class SnapshotFetchError(NowPlayingError):
    """The currently-playing request failed for a reason other than auth."""


class AssetFetchError(NowPlayingError):
    """An image asset could not be downloaded or decoded."""
