import pytest
import requests
from spotipy.cache_handler import MemoryCacheHandler
from spotipy.exceptions import SpotifyException
from spotipy.oauth2 import SpotifyOAuth

from nowplaying.errors import SnapshotFetchError, UnauthorizedError
from nowplaying.settings import SPOTIFY_SCOPE, Settings
from nowplaying.spotify_client import SnapshotFetcher, SpotifyGateway, snapshot_from_payload


@pytest.fixture
def spotify_gateway():
    return SpotifyGateway(Settings(client_id="id", client_secret="secret"))


def test_empty_response_is_nothing_playing():
    assert snapshot_from_payload(None).playing is False
    assert snapshot_from_payload({"progress_ms": 0, "item": None}).playing is False


def test_payload_maps_onto_snapshot(playing_payload):
    snapshot = snapshot_from_payload(playing_payload)
    assert snapshot.playing is True
    assert snapshot.track_name == "Windowlicker"
    assert snapshot.album_id == "4pJcFmsMRUsXzvCkL7BUkp"
    assert snapshot.album_art_url == "https://i.scdn.co/image/cover"
    assert snapshot.artist_name == "Aphex Twin"
    assert snapshot.progress_ms == 90_000
    assert snapshot.duration_ms == 180_000


def test_payload_without_images_or_artists():
    snapshot = snapshot_from_payload({"progress_ms": 10, "item": {"name": "Intro", "duration_ms": 20, "album": {}}})
    assert snapshot.album_art_url is None
    assert snapshot.artist_name == "Unknown Artist"


def test_fetcher_returns_snapshot(gateway, playing_payload):
    gateway.playing = playing_payload
    assert SnapshotFetcher(gateway).fetch_current("T1").track_name == "Windowlicker"
    assert gateway.playing_calls == ["T1"]


def test_fetcher_maps_401_to_unauthorized(gateway):
    gateway.playing_error = SpotifyException(401, -1, "The access token expired")
    with pytest.raises(UnauthorizedError):
        SnapshotFetcher(gateway).fetch_current("T1")
    assert gateway.refresh_calls == []


@pytest.mark.parametrize("error", [
    SpotifyException(502, -1, "Bad gateway"),
    requests.exceptions.ReadTimeout("read timed out"),
])
def test_fetcher_maps_other_failures(gateway, error):
    gateway.playing_error = error
    with pytest.raises(SnapshotFetchError):
        SnapshotFetcher(gateway).fetch_current("T1")


def test_oauth_uses_memory_cache_and_playback_scope(spotify_gateway):
    oauth = spotify_gateway.get_spotify_oauth()
    assert isinstance(oauth.cache_handler, MemoryCacheHandler)
    url = spotify_gateway.authorize_url()
    assert "client_id=id" in url
    assert SPOTIFY_SCOPE in url


def test_refresh_returns_token_info(spotify_gateway, monkeypatch):
    def fake_refresh(self, refresh_token):
        assert refresh_token == "R1"
        return {"access_token": "T2", "token_type": "Bearer", "expires_in": 3600, "scope": SPOTIFY_SCOPE}

    monkeypatch.setattr(SpotifyOAuth, "refresh_access_token", fake_refresh)
    grant = spotify_gateway.refresh("R1")
    assert grant.access_token == "T2"
    assert grant.refresh_token is None
    assert grant.expires_in == 3600


def test_exchange_code_returns_token_info(spotify_gateway, monkeypatch):
    def fake_exchange(self, code, as_dict=True, check_cache=True):
        assert code == "abc"
        return {"access_token": "T1", "refresh_token": "R1", "expires_in": 3600, "expires_at": 1}

    monkeypatch.setattr(SpotifyOAuth, "get_access_token", fake_exchange)
    grant = spotify_gateway.exchange_code("abc")
    assert (grant.access_token, grant.refresh_token, grant.expires_in) == ("T1", "R1", 3600)
