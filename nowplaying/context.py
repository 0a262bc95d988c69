from __future__ import annotations

import logging
from dataclasses import dataclass

from fastapi import Request

from nowplaying.credentials import CredentialManager
from nowplaying.renderer import CardRenderer
from nowplaying.settings import Settings
from nowplaying.spotify_client import SnapshotFetcher, SpotifyGateway
from nowplaying.store import CredentialStore


logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    """Everything a request handler needs, built once at startup."""

    settings: Settings
    store: CredentialStore
    gateway: SpotifyGateway
    credentials: CredentialManager
    fetcher: SnapshotFetcher
    renderer: CardRenderer


def build_context(settings: Settings) -> AppContext:
    store = CredentialStore(settings.db_path)
    store.init_schema()
    gateway = SpotifyGateway(settings)
    logger.info("Credential store ready at %s", settings.db_path)
    return AppContext(
        settings=settings,
        store=store,
        gateway=gateway,
        credentials=CredentialManager(store, gateway, refresh_margin=settings.token_refresh_margin_seconds),
        fetcher=SnapshotFetcher(gateway),
        renderer=CardRenderer(settings),
    )


def get_context(request: Request) -> AppContext:
    return request.app.state.context
