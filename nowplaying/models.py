from __future__ import annotations

import logging
from typing import Any, Mapping

from PIL import ImageColor
from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator


logger = logging.getLogger(__name__)

MAX_DOT_BORDER_WIDTH = 7


class TokenInfo(BaseModel):
    """A token grant as returned by Spotify's token endpoint."""

    access_token: str = Field(..., description="Spotify access token")
    refresh_token: str | None = Field(None, description="Spotify refresh token, omitted on some refreshes")
    expires_in: int = Field(3600, description="Lifetime of the access token in seconds")


class CredentialRecord(BaseModel):
    user_id: str
    access_token: str
    refresh_token: str
    expires_at: float = Field(..., description="Epoch seconds when the access token expires")

    def is_expired(self, now: float, margin: float = 0) -> bool:
        return now >= self.expires_at - margin


class UserProfile(BaseModel):
    id: str


class TrackSnapshot(BaseModel):
    """Playback state at the time of the request."""

    playing: bool = True
    track_name: str = ""
    album_id: str = ""
    album_name: str = ""
    album_art_url: str | None = None
    artist_name: str = ""
    progress_ms: int = 0
    duration_ms: int = 0

    @classmethod
    def nothing_playing(cls) -> "TrackSnapshot":
        return cls(playing=False)


COLOR_FIELDS = (
    "background_color",
    "track_color",
    "artist_color",
    "album_color",
    "progress_bar_color",
    "progress_bar_total",
    "progress_bar_dot_color",
    "progress_bar_dot_border_color",
    "progress_text_color",
)


class CardOptions(BaseModel):
    """Styling of one card, built once per request from its query string."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    background_color: str = Field("#212121", alias="backgroundColor")
    track_color: str = Field("#fff", alias="trackColor")
    artist_color: str = Field("#b3b3b3", alias="artistColor")
    album_color: str = Field("#b3b3b3", alias="albumColor")
    progress_bar_color: str = Field("#1ed760", alias="progressBarColor")
    progress_bar_total: str = Field("#137937", alias="progressBarTotal")
    progress_bar_dot_color: str = Field("#1db954", alias="progressBarDotColor")
    progress_bar_dot_border_color: str = Field("#000", alias="progressBarDotBorderColor")
    progress_bar_dot_border_width: int = Field(2, alias="progressBarDotBorderWidth")
    progress_text_color: str = Field("#fff", alias="progressTextColor")
    custom_font: str = Field("Arial", alias="customFont")

    @field_validator(*COLOR_FIELDS, mode="before")
    @classmethod
    def _valid_color(cls, value: Any, info: ValidationInfo) -> str:
        default = cls.model_fields[info.field_name].default
        if not value:
            return default
        try:
            ImageColor.getrgb(str(value))
        except ValueError:
            logger.warning("Ignoring invalid color %r for %s", value, info.field_name)
            return default
        return str(value)

    @field_validator("progress_bar_dot_border_width", mode="before")
    @classmethod
    def _clamp_border_width(cls, value: Any) -> int:
        if value is None or value == "":
            return 2
        try:
            width = int(value)
        except (TypeError, ValueError):
            logger.warning("Ignoring invalid border width %r", value)
            return 2
        return max(0, min(MAX_DOT_BORDER_WIDTH, width))

    @field_validator("custom_font", mode="before")
    @classmethod
    def _font_family(cls, value: Any) -> str:
        family = str(value).strip() if value is not None else ""
        if any(ord(char) < 32 or ord(char) == 127 for char in family):
            logger.warning("Ignoring font family with control characters %r", family)
            return "Arial"
        return family or "Arial"

    @classmethod
    def from_query(cls, params: Mapping[str, str]) -> "CardOptions":
        """Pick the recognized options out of a query string, ignoring the rest."""
        known = {field.alias for field in cls.model_fields.values()}
        return cls.model_validate({key: value for key, value in params.items() if key in known})

    def rgb(self, field_name: str) -> tuple[int, int, int]:
        return ImageColor.getrgb(getattr(self, field_name))[:3]
