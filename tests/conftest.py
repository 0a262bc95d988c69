import pytest
from fastapi.testclient import TestClient
from PIL import Image

from nowplaying.context import AppContext
from nowplaying.credentials import CredentialManager
from nowplaying.main import create_app
from nowplaying.models import TokenInfo, UserProfile
from nowplaying.renderer import CardRenderer
from nowplaying.settings import Settings
from nowplaying.spotify_client import SnapshotFetcher
from nowplaying.store import CredentialStore


ART_COLOR = (51, 102, 255)


class FakeClock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeGateway:
    """Stands in for SpotifyGateway; every response is a plain attribute the test can change."""

    def __init__(self):
        self.user_id = "spotify-user"
        self.token_response = {"access_token": "T1", "refresh_token": "R1", "expires_in": 3600}
        self.refresh_response = {"access_token": "T2", "refresh_token": "R2", "expires_in": 3600}
        self.exchange_error = None
        self.refresh_error = None
        self.playing = None
        self.playing_error = None
        self.exchanged_codes = []
        self.refresh_calls = []
        self.playing_calls = []

    def authorize_url(self):
        return "https://accounts.spotify.com/authorize?client_id=test&scope=user-read-currently-playing"

    def exchange_code(self, code):
        self.exchanged_codes.append(code)
        if self.exchange_error is not None:
            raise self.exchange_error
        return TokenInfo(**self.token_response)

    def refresh(self, refresh_token):
        self.refresh_calls.append(refresh_token)
        if self.refresh_error is not None:
            raise self.refresh_error
        return TokenInfo(**self.refresh_response)

    def current_user(self, access_token):
        return UserProfile(id=self.user_id)

    def currently_playing(self, access_token):
        self.playing_calls.append(access_token)
        if self.playing_error is not None:
            raise self.playing_error
        return self.playing


def write_art(url, path, timeout):
    Image.new("RGB", (64, 64), ART_COLOR).save(path, format="PNG")


@pytest.fixture
def settings(tmp_path):
    return Settings(
        client_id="test",
        client_secret="secret",
        db_path=str(tmp_path / "tokens.db"),
        temp_dir=str(tmp_path / "art"),
    )


@pytest.fixture
def store(settings):
    store = CredentialStore(settings.db_path)
    store.init_schema()
    return store


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def manager(store, gateway, clock):
    return CredentialManager(store, gateway, refresh_margin=60, clock=clock)


@pytest.fixture
def renderer(settings):
    return CardRenderer(settings, fetch_art=write_art)


@pytest.fixture
def context(settings, store, gateway, manager, renderer):
    return AppContext(
        settings=settings,
        store=store,
        gateway=gateway,
        credentials=manager,
        fetcher=SnapshotFetcher(gateway),
        renderer=renderer,
    )


@pytest.fixture
def client(context):
    return TestClient(create_app(context))


@pytest.fixture
def playing_payload():
    return {
        "progress_ms": 90_000,
        "is_playing": True,
        "item": {
            "name": "Windowlicker",
            "duration_ms": 180_000,
            "album": {
                "id": "4pJcFmsMRUsXzvCkL7BUkp",
                "name": "Windowlicker",
                "images": [{"url": "https://i.scdn.co/image/cover", "height": 640, "width": 640}],
            },
            "artists": [{"name": "Aphex Twin"}, {"name": "Someone Else"}],
        },
    }
