"""Pure layout math for the now-playing card.

Nothing in here touches the network or the filesystem: every function takes
its inputs explicitly (text widths come from a ``measure`` callable) so the
whole card geometry can be computed and checked without a drawing surface.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

from PIL import Image, ImageColor, ImageDraw

from nowplaying.models import CardOptions, TrackSnapshot


# (text, font size) -> rendered width in pixels
Measure = Callable[[str, int], float]
Box = Tuple[int, int, int, int]

CARD_WIDTH, CARD_HEIGHT = 500, 200

ART_ORIGIN = (10, 10)
ART_SIZE = 180
ART_CORNER_RADIUS = 30
BLANK_ART_COLOR = "#535353"

BRAND_DISC_CENTER = (25, 175)
BRAND_DISC_RADIUS = 25
BRAND_GLYPH_ORIGIN = (5, 155)
BRAND_GLYPH_SIZE = 40
# Red channel below this picks the light glyph
BRAND_THRESHOLD = 127

TEXT_X = 220
TEXT_COLUMN_WIDTH = 260
TRACK_FONT_SIZE, TRACK_BASELINE = 30, 50
ALBUM_FONT_SIZE, ALBUM_BASELINE = 20, 80
ARTIST_FONT_SIZE, ARTIST_BASELINE = 20, 110
TIME_FONT_SIZE, TIME_BASELINE = 15, 160

MIN_FONT_SIZE = 8
FONT_STEP = 1

BAR_X = 220
BAR_LENGTH = 250
BAR_TRACK_Y, BAR_TRACK_HEIGHT = 171, 8
BAR_FILL_Y, BAR_FILL_HEIGHT = 170, 10
DOT_Y = 175
DOT_RADIUS = 7

MESSAGE_FONT_SIZE = 24
MESSAGE_MARGIN = 20


@dataclass(frozen=True)
class TextItem:
    text: str
    x: int
    y: int
    size: int
    color: str
    anchor: str = "ls"


@dataclass(frozen=True)
class ProgressGeometry:
    ratio: float
    fill_width: int
    track_box: Box
    fill_box: Optional[Box]
    dot_center: Tuple[int, int]
    dot_radius: int = DOT_RADIUS

    @property
    def dot_box(self) -> Box:
        x, y = self.dot_center
        r = self.dot_radius
        return (x - r, y - r, x + r, y + r)


@dataclass(frozen=True)
class CardLayout:
    background: str
    font_family: str
    brand_variant: str
    texts: List[TextItem] = field(default_factory=list)
    progress: Optional[ProgressGeometry] = None
    bar_track_color: str = ""
    bar_fill_color: str = ""
    dot_color: str = ""
    dot_border_color: str = ""
    dot_border_width: int = 0

    @property
    def brand_disc_box(self) -> Box:
        x, y = BRAND_DISC_CENTER
        r = BRAND_DISC_RADIUS
        return (x - r, y - r, x + r, y + r)


def fit_text(
    text: str,
    size: int,
    max_width: float,
    measure: Measure,
    min_size: int = MIN_FONT_SIZE,
    step: int = FONT_STEP,
) -> int:
    """Shrink ``size`` until ``text`` fits in ``max_width``, stopping at ``min_size``."""
    while size > min_size and measure(text, size) > max_width:
        size = max(min_size, size - step)
    return size


def progress_ratio(progress_ms: float, duration_ms: float) -> float:
    """Fraction of the track played, clamped to [0, 1].

    Spotify occasionally reports progress past the end of the track, or a zero
    duration; both are clamped instead of drawn out of bounds.
    """
    if duration_ms <= 0:
        return 0.0
    return min(1.0, max(0.0, progress_ms / duration_ms))


def progress_geometry(progress_ms: float, duration_ms: float) -> ProgressGeometry:
    ratio = progress_ratio(progress_ms, duration_ms)
    fill_width = round(BAR_LENGTH * ratio)
    fill_box = None
    if fill_width > 0:
        fill_box = (BAR_X, BAR_FILL_Y, BAR_X + fill_width - 1, BAR_FILL_Y + BAR_FILL_HEIGHT - 1)
    return ProgressGeometry(
        ratio=ratio,
        fill_width=fill_width,
        track_box=(BAR_X, BAR_TRACK_Y, BAR_X + BAR_LENGTH - 1, BAR_TRACK_Y + BAR_TRACK_HEIGHT - 1),
        fill_box=fill_box,
        # The dot sits at the end of the fill so the two can never drift apart
        dot_center=(BAR_X + fill_width, DOT_Y),
    )


def brand_variant(background_color: str) -> str:
    red = ImageColor.getrgb(background_color)[0]
    return "light" if red < BRAND_THRESHOLD else "dark"


def format_duration(ms: float) -> str:
    seconds = max(0, int(ms)) // 1000
    return f"{seconds // 60}:{seconds % 60:02d}"


def rounded_art(image: Image.Image, size: int = ART_SIZE, radius: int = ART_CORNER_RADIUS) -> Image.Image:
    """Resize ``image`` to the art box and cut its corners round."""
    art = image.convert("RGBA").resize((size, size))
    mask = Image.new("L", (size, size), 0)
    ImageDraw.Draw(mask).rounded_rectangle((0, 0, size - 1, size - 1), radius=radius, fill=255)
    art.putalpha(mask)
    return art


def blank_art() -> Image.Image:
    return rounded_art(Image.new("RGB", (ART_SIZE, ART_SIZE), BLANK_ART_COLOR))


def _fitted(text: str, size: int, baseline: int, color: str, measure: Measure) -> TextItem:
    return TextItem(
        text=text,
        x=TEXT_X,
        y=baseline,
        size=fit_text(text, size, TEXT_COLUMN_WIDTH, measure),
        color=color,
    )


def compose(snapshot: TrackSnapshot, options: CardOptions, measure: Measure) -> CardLayout:
    """Lay out a playing track: three fitted text lines, time label and progress bar."""
    time_label = f"{format_duration(snapshot.progress_ms)} / {format_duration(snapshot.duration_ms)}"
    texts = [
        _fitted(snapshot.track_name, TRACK_FONT_SIZE, TRACK_BASELINE, options.track_color, measure),
        _fitted(f"on {snapshot.album_name}", ALBUM_FONT_SIZE, ALBUM_BASELINE, options.album_color, measure),
        _fitted(f"by {snapshot.artist_name}", ARTIST_FONT_SIZE, ARTIST_BASELINE, options.artist_color, measure),
        TextItem(time_label, TEXT_X, TIME_BASELINE, TIME_FONT_SIZE, options.progress_text_color),
    ]
    return CardLayout(
        background=options.background_color,
        font_family=options.custom_font,
        brand_variant=brand_variant(options.background_color),
        texts=texts,
        progress=progress_geometry(snapshot.progress_ms, snapshot.duration_ms),
        bar_track_color=options.progress_bar_total,
        bar_fill_color=options.progress_bar_color,
        dot_color=options.progress_bar_dot_color,
        dot_border_color=options.progress_bar_dot_border_color,
        dot_border_width=options.progress_bar_dot_border_width,
    )


def compose_message(message: str, options: CardOptions, measure: Measure) -> CardLayout:
    """Lay out a card that shows nothing but ``message``, centred."""
    size = fit_text(message, MESSAGE_FONT_SIZE, CARD_WIDTH - 2 * MESSAGE_MARGIN, measure)
    item = TextItem(message, CARD_WIDTH // 2, CARD_HEIGHT // 2, size, options.track_color, anchor="mm")
    return CardLayout(
        background=options.background_color,
        font_family=options.custom_font,
        brand_variant=brand_variant(options.background_color),
        texts=[item],
    )
