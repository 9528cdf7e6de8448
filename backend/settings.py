import os
from pathlib import Path
from typing import Optional

# Basic settings helper to read environment configuration.

BACKEND_ROOT = Path(__file__).resolve().parent


def _as_int(val: str | None, default: int) -> int:
    if val is None or not val.strip():
        return default
    return int(val)


def _as_float(val: str | None, default: float) -> float:
    if val is None or not val.strip():
        return default
    return float(val)


def _as_path(val: str | None) -> Optional[Path]:
    if val is None or not val.strip():
        return None
    return Path(val)


class Settings:
    def __init__(self) -> None:
        self.MEDIA_ROOT: str = os.getenv("MEDIA_ROOT", "media")
        self.DATABASE_URL: str = os.getenv(
            "DATABASE_URL", f"sqlite:///{BACKEND_ROOT / 'app.db'}"
        )
        self.VIEWER_PROXY_BASE: str = os.getenv("VIEWER_PROXY_BASE", "/api/wm")
        self.COMMUNITY_PAGE_SIZE: int = _as_int(os.getenv("COMMUNITY_PAGE_SIZE"), 60)
        self.IMAGE_FETCH_TIMEOUT: float = _as_float(os.getenv("IMAGE_FETCH_TIMEOUT"), 10.0)
        # Optional fonts and brand rasters; drawn fallbacks are used when unset
        self.CARD_FONT_PATH: Optional[Path] = _as_path(os.getenv("CARD_FONT_PATH"))
        self.CARD_BOLD_FONT_PATH: Optional[Path] = _as_path(os.getenv("CARD_BOLD_FONT_PATH"))
        self.CARD_LOGO_PATH: Optional[Path] = _as_path(os.getenv("CARD_LOGO_PATH"))
        self.CARD_X_ICON_PATH: Optional[Path] = _as_path(os.getenv("CARD_X_ICON_PATH"))
        self.CARD_DISCORD_ICON_PATH: Optional[Path] = _as_path(os.getenv("CARD_DISCORD_ICON_PATH"))


settings = Settings()
