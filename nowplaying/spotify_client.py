from __future__ import annotations

from typing import Any

import requests
import spotipy
from spotipy.cache_handler import MemoryCacheHandler
from spotipy.exceptions import SpotifyException
from spotipy.oauth2 import SpotifyOAuth

from nowplaying.errors import SnapshotFetchError, UnauthorizedError
from nowplaying.models import TokenInfo, TrackSnapshot, UserProfile
from nowplaying.settings import SPOTIFY_SCOPE, Settings


class SpotifyGateway:
    """Thin wrapper over spotipy for the handful of calls the badge needs."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def get_spotify_oauth(self) -> SpotifyOAuth:
        """Create a SpotifyOAuth instance that never touches a token cache file."""
        return SpotifyOAuth(
            client_id=self.settings.client_id,
            client_secret=self.settings.client_secret,
            redirect_uri=self.settings.redirect_uri,
            scope=SPOTIFY_SCOPE,
            cache_handler=MemoryCacheHandler(),
            requests_timeout=self.settings.http_timeout_seconds,
            open_browser=False,
        )

    def create_spotify_client(self, access_token: str) -> spotipy.Spotify:
        """Create a Spotipy client using a raw access token."""
        return spotipy.Spotify(
            auth=access_token,
            requests_timeout=self.settings.http_timeout_seconds,
            retries=0,
        )

    def authorize_url(self) -> str:
        return self.get_spotify_oauth().get_authorize_url()

    def exchange_code(self, code: str) -> TokenInfo:
        token_info = self.get_spotify_oauth().get_access_token(code, as_dict=True, check_cache=False)
        return TokenInfo(**token_info)

    def refresh(self, refresh_token: str) -> TokenInfo:
        token_info = self.get_spotify_oauth().refresh_access_token(refresh_token)
        return TokenInfo(**token_info)

    def current_user(self, access_token: str) -> UserProfile:
        return UserProfile(**self.create_spotify_client(access_token).me())

    def currently_playing(self, access_token: str) -> dict | None:
        return self.create_spotify_client(access_token).current_user_playing_track()


def snapshot_from_payload(payload: dict[str, Any] | None) -> TrackSnapshot:
    """Map a currently-playing response onto a TrackSnapshot.

    An empty response, or one without a track item (ads, podcasts between
    episodes), is the nothing-playing sentinel.
    """
    if not payload or not isinstance(payload.get("item"), dict):
        return TrackSnapshot.nothing_playing()

    item = payload["item"]
    album = item.get("album") or {}
    images = album.get("images") or []
    artists = item.get("artists") or []

    return TrackSnapshot(
        track_name=item.get("name") or "Unknown Track",
        album_id=album.get("id") or "unknown",
        album_name=album.get("name") or "Unknown Album",
        album_art_url=images[0].get("url") if images else None,
        artist_name=(artists[0].get("name") if artists else None) or "Unknown Artist",
        progress_ms=payload.get("progress_ms") or 0,
        duration_ms=item.get("duration_ms") or 0,
    )


class SnapshotFetcher:
    def __init__(self, gateway: SpotifyGateway):
        self.gateway = gateway

    def fetch_current(self, access_token: str) -> TrackSnapshot:
        """Return what the token's owner is listening to right now.

        A 401 raises UnauthorizedError without any refresh attempt; the
        credential manager is the only place tokens get refreshed.
        """
        try:
            payload = self.gateway.currently_playing(access_token)
        except SpotifyException as exc:
            if exc.http_status == 401:
                raise UnauthorizedError(str(exc)) from exc
            raise SnapshotFetchError(f"Spotify returned {exc.http_status}: {exc.msg}") from exc
        except requests.exceptions.RequestException as exc:
            raise SnapshotFetchError(f"Could not reach Spotify: {exc}") from exc
        return snapshot_from_payload(payload)
