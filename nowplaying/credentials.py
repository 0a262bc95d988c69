from __future__ import annotations

import logging
import time
from typing import Callable

import requests
from spotipy.oauth2 import SpotifyOauthError

from nowplaying.errors import CredentialNotFoundError, NotLinkedError, RefreshFailedError
from nowplaying.models import CredentialRecord, TokenInfo
from nowplaying.spotify_client import SpotifyGateway
from nowplaying.store import CredentialStore


logger = logging.getLogger(__name__)

# OAuth error codes of a 400 from the token endpoint; anything else is transient
REJECTED_GRANT_ERRORS = frozenset({"invalid_grant", "invalid_client", "invalid_request"})


class CredentialManager:
    """Owns the token lifecycle: callers only ever see a usable access token.

    A token is refreshed when it is within ``refresh_margin`` seconds of
    expiring. Two refreshes racing for the same user both succeed against
    Spotify and the last write wins; no locking is done here.
    """

    def __init__(
        self,
        store: CredentialStore,
        gateway: SpotifyGateway,
        refresh_margin: float = 60.0,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.gateway = gateway
        self.refresh_margin = refresh_margin
        self.clock = clock

    def get_valid_access_token(self, user_id: str) -> str:
        """Return a non-expired access token for ``user_id``.

        Raises:
            NotLinkedError: no credential is stored for the user
            RefreshFailedError: the stored refresh token could not be exchanged
        """
        record = self.store.get(user_id)
        if record is None:
            raise NotLinkedError(user_id)

        if not record.is_expired(self.clock(), self.refresh_margin):
            return record.access_token

        return self._refresh(record).access_token

    def _refresh(self, record: CredentialRecord) -> CredentialRecord:
        try:
            grant = self.gateway.refresh(record.refresh_token)
        except SpotifyOauthError as exc:
            if exc.error not in REJECTED_GRANT_ERRORS:
                logger.warning("Token endpoint failed refreshing %s: %s", record.user_id, exc)
                raise RefreshFailedError(record.user_id, f"Token refresh failed for {record.user_id}") from exc
            # Revoked or invalid refresh token: the row can never be used again
            logger.warning("Refresh token rejected for %s, purging credential: %s", record.user_id, exc)
            self.store.delete(record.user_id)
            raise RefreshFailedError(record.user_id, f"Refresh token rejected for {record.user_id}") from exc
        except requests.exceptions.RequestException as exc:
            logger.warning("Token refresh for %s failed: %s", record.user_id, exc)
            raise RefreshFailedError(record.user_id, f"Token refresh failed for {record.user_id}") from exc

        refreshed = self._record_from_grant(record.user_id, grant, previous_refresh_token=record.refresh_token)
        self.store.put(refreshed)
        logger.info("Refreshed access token for %s", record.user_id)
        return refreshed

    def _record_from_grant(
        self,
        user_id: str,
        grant: TokenInfo,
        previous_refresh_token: str = "",
    ) -> CredentialRecord:
        return CredentialRecord(
            user_id=user_id,
            access_token=grant.access_token,
            refresh_token=grant.refresh_token or previous_refresh_token,
            expires_at=self.clock() + grant.expires_in,
        )

    def set_credential(self, user_id: str, access_token: str, refresh_token: str, expires_in: int) -> CredentialRecord:
        """Store the grant obtained from an authorization callback."""
        grant = TokenInfo(access_token=access_token, refresh_token=refresh_token, expires_in=expires_in)
        record = self._record_from_grant(user_id, grant)
        self.store.put(record)
        return record

    def delete_credential(self, user_id: str) -> None:
        if self.store.delete(user_id) == 0:
            raise CredentialNotFoundError(user_id)
