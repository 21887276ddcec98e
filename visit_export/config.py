from __future__ import annotations

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

BASE_DIR = Path(__file__).resolve().parent


def _env(*names, default=None):
    for name in names:
        value = os.environ.get(name)
        if value not in (None, ""):
            return value
    return default


def _env_int(name, default, low=None, high=None):
    raw = os.environ.get(name)
    try:
        value = int(raw) if raw not in (None, "") else default
    except ValueError:
        value = default
    if low is not None:
        value = max(low, value)
    if high is not None:
        value = min(high, value)
    return value


def _env_float(name, default):
    raw = os.environ.get(name)
    try:
        return float(raw) if raw not in (None, "") else default
    except ValueError:
        return default


def _env_list(name, default):
    raw = os.environ.get(name)
    if not raw:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


class Config:
    """Default configuration, loaded into Flask with ``from_object``."""

    ENVIRONMENT = os.environ.get("FLASK_ENV", "production")
    DEBUG = os.environ.get("FLASK_DEBUG", "0") == "1"
    MAX_CONTENT_LENGTH = 2 * 1024 * 1024  # JSON bodies only

    SUPABASE_URL = _env("SUPABASE_URL", "SUPABASE__URL", default="")
    SUPABASE_SERVICE_ROLE_KEY = _env(
        "SUPABASE_SERVICE_ROLE_KEY", "SERVICE_ROLE_KEY", "SUPABASE_KEY", default=""
    )
    SUPABASE_ANON_KEY = _env("SUPABASE_ANON_KEY", default="")
    ALLOWED_ORIGINS = _env_list("ALLOWED_ORIGINS", [])

    # Searched in order for stored photo paths.
    PHOTO_BUCKETS = _env_list("PHOTO_BUCKETS", ["submissions", "photos"])
    CSV_BUCKET = _env("CSV_BUCKET", default="submission-csvs")
    CHAT_BUCKET = _env("CHAT_BUCKET", default="chat")

    IMAGE_NORMALIZER = _env("IMAGE_NORMALIZER", default="raster")
    PHOTO_MAX_EDGE = _env_int("PHOTO_MAX_EDGE", 260, low=260, high=400)
    PHOTO_JPEG_QUALITY = _env_int("PHOTO_JPEG_QUALITY", 55, low=55, high=70)

    HTTP_TIMEOUT_SECONDS = _env_float("HTTP_TIMEOUT_SECONDS", 20.0)
    RETRY_MAX_ATTEMPTS = _env_int("RETRY_MAX_ATTEMPTS", 3, low=1, high=4)
    RETRY_BASE_DELAY_SECONDS = _env_float("RETRY_BASE_DELAY_SECONDS", 0.4)

    PREVIEW_MAX_ROWS = 60
    PREVIEW_MAX_COLS = 20
    PREVIEW_MAX_IMAGES = _env_int("PREVIEW_MAX_IMAGES", 20, low=0, high=50)
    PREVIEW_MAX_IMAGE_BYTES = _env_int("PREVIEW_MAX_IMAGE_BYTES", 6_000_000, low=0, high=8_000_000)
    PREVIEW_THUMB_MAX_DIM = _env_int("PREVIEW_THUMB_MAX_DIM", 900, low=64, high=2048)
    PREVIEW_THUMB_QUALITY = _env_int("PREVIEW_THUMB_QUALITY", 70, low=20, high=95)
    SIGNED_URL_TTL_SECONDS = _env_int("SIGNED_URL_TTL_SECONDS", 60 * 60, low=60)

    EXPORT_DIR = _env("EXPORT_DIR", default="")
    CACHE_DIR = _env("CACHE_DIR", default="")


def config_value(config, name):
    """Read a setting from a Config class or a Flask config mapping."""
    if isinstance(config, dict):
        value = config.get(name)
        if value is not None:
            return value
    value = getattr(config, name, None)
    if value is not None:
        return value
    return getattr(Config, name)


def configure_logging(level=logging.INFO):
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")
        )
        root.addHandler(handler)
    root.setLevel(level)
    return root
