from __future__ import annotations

import os
import tempfile

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field


SPOTIFY_SCOPE = "user-read-currently-playing"


class Settings(BaseModel):
    """Runtime configuration, read from the environment (and ``.env``) once at startup."""

    client_id: str = ""
    client_secret: str = ""
    redirect_uri: str = "http://localhost:3000/callback"
    db_path: str = "nowplaying.db"
    temp_dir: str = Field(default_factory=lambda: os.path.join(tempfile.gettempdir(), "nowplaying"))
    font_dir: str | None = None
    brand_icon_dir: str | None = None
    http_timeout_seconds: float = 10.0
    token_refresh_margin_seconds: float = 60.0
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv(find_dotenv(usecwd=True))
        env = {
            "client_id": os.getenv("SPOTIPY_CLIENT_ID"),
            "client_secret": os.getenv("SPOTIPY_CLIENT_SECRET"),
            "redirect_uri": os.getenv("SPOTIPY_REDIRECT_URI"),
            "db_path": os.getenv("DB_PATH"),
            "temp_dir": os.getenv("TEMP_DIR"),
            "font_dir": os.getenv("FONT_DIR"),
            "brand_icon_dir": os.getenv("BRAND_ICON_DIR"),
            "http_timeout_seconds": os.getenv("HTTP_TIMEOUT_SECONDS"),
            "token_refresh_margin_seconds": os.getenv("TOKEN_REFRESH_MARGIN_SECONDS"),
            "log_level": os.getenv("LOG_LEVEL"),
        }
        # Unset variables keep the field defaults
        return cls(**{key: value for key, value in env.items() if value})
