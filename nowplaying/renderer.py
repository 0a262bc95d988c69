from __future__ import annotations

import contextlib
import logging
import os
import re
import tempfile
from functools import lru_cache
from io import BytesIO
from typing import Callable, Iterator, Optional

import requests
from PIL import Image, ImageDraw, ImageFont

from nowplaying.errors import AssetFetchError
from nowplaying.layout import (
    ART_ORIGIN,
    BRAND_GLYPH_ORIGIN,
    BRAND_GLYPH_SIZE,
    CARD_HEIGHT,
    CARD_WIDTH,
    CardLayout,
    Measure,
    blank_art,
    compose,
    compose_message,
    rounded_art,
)
from nowplaying.models import CardOptions, TrackSnapshot
from nowplaying.settings import Settings


logger = logging.getLogger(__name__)

NOTHING_PLAYING_MESSAGE = "Nothing is currently playing"

FALLBACK_FONTS = (
    "DejaVuSans.ttf",
    "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
)

BRAND_GREEN = "#1ed760"


def download_art(url: str, path: str, timeout: float) -> None:
    """Stream ``url`` into ``path``."""
    with requests.get(url, timeout=timeout, stream=True) as resp:
        resp.raise_for_status()
        with open(path, "wb") as fh:
            for chunk in resp.iter_content(chunk_size=64 * 1024):
                fh.write(chunk)


@contextlib.contextmanager
def album_art_file(temp_dir: str, album_id: str) -> Iterator[str]:
    """Reserve a unique temp path for one album art download and always remove it.

    The name is prefixed with the album id but made unique per call, so two
    requests for the same album never share a file.
    """
    os.makedirs(temp_dir, exist_ok=True)
    prefix = re.sub(r"[^A-Za-z0-9_-]", "", album_id) or "album"
    fd, path = tempfile.mkstemp(prefix=f"{prefix}-", suffix=".png", dir=temp_dir)
    os.close(fd)
    try:
        yield path
    finally:
        with contextlib.suppress(FileNotFoundError):
            os.remove(path)


@lru_cache(maxsize=64)
def load_font(family: str, size: int, font_dir: Optional[str] = None) -> ImageFont.FreeTypeFont:
    # Only a bare family name is accepted from the query string
    family = os.path.basename(family)
    candidates = [family, f"{family}.ttf", f"{family.lower()}.ttf"]
    if font_dir:
        candidates.insert(0, os.path.join(font_dir, f"{family}.ttf"))
    candidates.extend(FALLBACK_FONTS)
    for candidate in candidates:
        try:
            return ImageFont.truetype(candidate, size)
        except (OSError, ValueError, TypeError):
            continue
    return ImageFont.load_default(size=size)


def draw_brand_glyph(variant: str, background: str) -> Image.Image:
    """Draw the Spotify mark: a filled disc crossed by three arcs."""
    size = BRAND_GLYPH_SIZE
    glyph = Image.new("RGBA", (size, size), (0, 0, 0, 0))
    draw = ImageDraw.Draw(glyph)
    disc = "#ffffff" if variant == "light" else BRAND_GREEN
    draw.ellipse((0, 0, size - 1, size - 1), fill=disc)
    center = size // 2
    for half_width, top, width in ((14, 11, 4), (11, 18, 3), (8, 25, 3)):
        box = (center - half_width, top, center + half_width, top + half_width)
        draw.arc(box, start=200, end=340, fill=background, width=width)
    return glyph


class CardRenderer:
    """Draws a CardLayout onto a Pillow surface and encodes it as PNG."""

    def __init__(self, settings: Settings, fetch_art: Callable[[str, str, float], None] = download_art):
        self.settings = settings
        self.fetch_art = fetch_art

    def font(self, family: str, size: int) -> ImageFont.FreeTypeFont:
        return load_font(family, size, self.settings.font_dir)

    def measure_for(self, family: str) -> Measure:
        return lambda text, size: self.font(family, size).getlength(text)

    def render(self, snapshot: TrackSnapshot, options: CardOptions) -> bytes:
        if not snapshot.playing:
            return self.render_message(NOTHING_PLAYING_MESSAGE, options)

        layout = compose(snapshot, options, self.measure_for(options.custom_font))
        canvas = Image.new("RGB", (CARD_WIDTH, CARD_HEIGHT), layout.background)

        try:
            art = self.album_art(snapshot)
        except AssetFetchError as exc:
            logger.warning("Using blank album art: %s", exc)
            art = blank_art()
        canvas.paste(art, ART_ORIGIN, art)

        self._draw_brand(canvas, layout)
        self._draw_texts(canvas, layout)
        self._draw_progress(canvas, layout)
        return self.encode(canvas)

    def render_message(self, message: str, options: CardOptions) -> bytes:
        layout = compose_message(message, options, self.measure_for(options.custom_font))
        canvas = Image.new("RGB", (CARD_WIDTH, CARD_HEIGHT), layout.background)
        self._draw_texts(canvas, layout)
        return self.encode(canvas)

    def album_art(self, snapshot: TrackSnapshot) -> Image.Image:
        """Download, decode and round the album art; the temp file never outlives this call."""
        if not snapshot.album_art_url:
            raise AssetFetchError(f"No album art for album {snapshot.album_id}")
        try:
            with album_art_file(self.settings.temp_dir, snapshot.album_id) as path:
                self.fetch_art(snapshot.album_art_url, path, self.settings.http_timeout_seconds)
                with Image.open(path) as image:
                    image.load()
                    return rounded_art(image)
        except (requests.exceptions.RequestException, OSError, Image.DecompressionBombError) as exc:
            raise AssetFetchError(f"Album art {snapshot.album_art_url} unavailable: {exc}") from exc

    def brand_glyph(self, variant: str, background: str) -> Image.Image:
        if not self.settings.brand_icon_dir:
            return draw_brand_glyph(variant, background)
        path = os.path.join(self.settings.brand_icon_dir, f"brand_{variant}.png")
        try:
            with Image.open(path) as image:
                return image.convert("RGBA").resize((BRAND_GLYPH_SIZE, BRAND_GLYPH_SIZE))
        except OSError as exc:
            logger.warning("Brand icon %s unavailable, drawing it instead: %s", path, exc)
            return draw_brand_glyph(variant, background)

    def _draw_brand(self, canvas: Image.Image, layout: CardLayout) -> None:
        ImageDraw.Draw(canvas).ellipse(layout.brand_disc_box, fill=layout.background)
        glyph = self.brand_glyph(layout.brand_variant, layout.background)
        canvas.paste(glyph, BRAND_GLYPH_ORIGIN, glyph)

    def _draw_texts(self, canvas: Image.Image, layout: CardLayout) -> None:
        draw = ImageDraw.Draw(canvas)
        for item in layout.texts:
            draw.text(
                (item.x, item.y),
                item.text,
                fill=item.color,
                font=self.font(layout.font_family, item.size),
                anchor=item.anchor,
            )

    def _draw_progress(self, canvas: Image.Image, layout: CardLayout) -> None:
        progress = layout.progress
        if progress is None:
            return
        draw = ImageDraw.Draw(canvas)
        draw.rectangle(progress.track_box, fill=layout.bar_track_color)
        if progress.fill_box is not None:
            draw.rectangle(progress.fill_box, fill=layout.bar_fill_color)
        draw.ellipse(
            progress.dot_box,
            fill=layout.dot_color,
            outline=layout.dot_border_color if layout.dot_border_width else None,
            width=layout.dot_border_width or 1,
        )

    @staticmethod
    def encode(canvas: Image.Image) -> bytes:
        buf = BytesIO()
        canvas.save(buf, format="PNG")
        return buf.getvalue()
