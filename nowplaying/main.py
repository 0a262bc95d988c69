from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, Response

from nowplaying.auth import router as auth_router
from nowplaying.context import AppContext, build_context, get_context
from nowplaying.errors import NotLinkedError, SnapshotFetchError, StoreError, UnauthorizedError
from nowplaying.models import CardOptions
from nowplaying.settings import Settings


logger = logging.getLogger(__name__)

NOT_LINKED_BODY = {"success": False, "error": "Invalid Token/Account Not Linked"}
STORE_FAILED_BODY = {"success": False, "error": "Internal Error"}
RENDER_FAILED_BODY = {"success": False, "error": "Could not render card"}
SPOTIFY_UNAVAILABLE_MESSAGE = "Could not reach Spotify"
RENDER_FAILED_MESSAGE = "Could not render card"
CARD_CACHE_CONTROL = "public, max-age=5"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # spotipy logs every HTTP error it raises; we log the ones we handle
    for logger_name in ("spotipy", "spotipy.client", "spotipy.oauth2"):
        logging.getLogger(logger_name).setLevel(logging.WARNING)


def png_response(content: bytes) -> Response:
    return Response(
        content=content,
        media_type="image/png",
        headers={"Cache-Control": CARD_CACHE_CONTROL},
    )


def create_app(context: Optional[AppContext] = None) -> FastAPI:
    """Build the API. Without an explicit ``context`` one is built from the environment at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "context", None) is None:
            settings = Settings.from_env()
            configure_logging(settings.log_level)
            app.state.context = await run_in_threadpool(build_context, settings)
        yield

    app = FastAPI(title="nowplaying-card", version="0.1.0", lifespan=lifespan)
    app.state.context = context
    app.include_router(auth_router)

    @app.get("/current/{user_id}")
    async def current(user_id: str, request: Request, ctx: AppContext = Depends(get_context)):
        """Render the user's currently playing track as a PNG card."""
        options = CardOptions.from_query(request.query_params)
        try:
            token = await run_in_threadpool(ctx.credentials.get_valid_access_token, user_id)
            snapshot = await run_in_threadpool(ctx.fetcher.fetch_current, token)
        except (NotLinkedError, UnauthorizedError) as exc:
            logger.info("No card for %s: %s", user_id, exc)
            return JSONResponse(NOT_LINKED_BODY)
        except StoreError:
            logger.exception("Credential lookup for %s failed", user_id)
            return JSONResponse(STORE_FAILED_BODY, status_code=500)
        except SnapshotFetchError as exc:
            logger.warning("Currently playing lookup for %s failed: %s", user_id, exc)
            content = await run_in_threadpool(ctx.renderer.render_message, SPOTIFY_UNAVAILABLE_MESSAGE, options)
            return png_response(content)

        try:
            content = await run_in_threadpool(ctx.renderer.render, snapshot, options)
        except Exception:
            logger.exception("Rendering the card for %s failed", user_id)
            try:
                content = await run_in_threadpool(ctx.renderer.render_message, RENDER_FAILED_MESSAGE, CardOptions())
            except Exception:
                logger.exception("Rendering the fallback card for %s failed", user_id)
                return JSONResponse(RENDER_FAILED_BODY, status_code=500)
            return png_response(content)

        logger.info("Sent current song for %s", user_id)
        return png_response(content)

    return app


app = create_app()


def run() -> None:
    import uvicorn

    uvicorn.run("nowplaying.main:app", host="0.0.0.0", port=3000)
