from __future__ import annotations

import logging
import os

import requests
from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import FileResponse, PlainTextResponse, RedirectResponse
from pydantic import ValidationError
from spotipy.exceptions import SpotifyException
from spotipy.oauth2 import SpotifyOauthError

from nowplaying.context import AppContext, get_context
from nowplaying.errors import CredentialNotFoundError, StoreError


logger = logging.getLogger(__name__)

AUTHORIZED_PAGE = os.path.join(os.path.dirname(__file__), "pages", "authorized.html")

UNLINKED = "Successfully unlinked your account."
NOT_LINKED = "You are not linked to any account."
UNLINK_FAILED = "Error while unlinking your account."
LINK_FAILED = "Error while linking your account."


router = APIRouter()


@router.get("/")
async def index() -> RedirectResponse:
    return RedirectResponse("/authorize")


@router.get("/authorize")
async def authorize(context: AppContext = Depends(get_context)) -> RedirectResponse:
    """Redirect the user to Spotify's authorization URL."""
    return RedirectResponse(context.gateway.authorize_url())


@router.get("/callback")
async def callback(request: Request, context: AppContext = Depends(get_context)):
    """Exchange the authorization code and remember the user's credential.

    Any failure on the way sends the user back to ``/authorize`` to try again.
    """
    code = request.query_params.get("code")
    if not code:
        return RedirectResponse("/authorize")

    try:
        grant = await run_in_threadpool(context.gateway.exchange_code, code)
        profile = await run_in_threadpool(context.gateway.current_user, grant.access_token)
    except (SpotifyOauthError, SpotifyException, requests.exceptions.RequestException, ValidationError) as exc:
        logger.warning("Authorization callback failed: %s", exc)
        return RedirectResponse("/authorize")

    try:
        await run_in_threadpool(
            context.credentials.set_credential,
            profile.id,
            grant.access_token,
            grant.refresh_token or "",
            grant.expires_in,
        )
    except StoreError:
        logger.exception("Could not store credential for %s", profile.id)
        return PlainTextResponse(LINK_FAILED, status_code=500)

    logger.info("User %s authorized.", profile.id)
    return FileResponse(AUTHORIZED_PAGE, media_type="text/html")


@router.get("/unlink/{user_id}")
async def unlink(user_id: str, context: AppContext = Depends(get_context)) -> PlainTextResponse:
    try:
        await run_in_threadpool(context.credentials.delete_credential, user_id)
    except CredentialNotFoundError:
        return PlainTextResponse(NOT_LINKED)
    except StoreError:
        logger.exception("Unlinking %s failed", user_id)
        return PlainTextResponse(UNLINK_FAILED)
    logger.info("Unlinked account %s", user_id)
    return PlainTextResponse(UNLINKED)
