"""Runtime settings from the environment and an optional ``.env`` file."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from .utils import DEFAULT_DATA_DIR, DEFAULT_MODEL, MAX_IMAGES

log = logging.getLogger(__name__)

API_KEY_VARS = ("GEMINI_API_KEY", "GOOGLE_API_KEY", "API_KEY")


@dataclass
class Settings:
    api_key: Optional[str] = None
    text_model: str = DEFAULT_MODEL
    vision_model: str = DEFAULT_MODEL
    data_dir: Path = Path(DEFAULT_DATA_DIR)
    max_images: int = MAX_IMAGES
    request_timeout: Optional[float] = None
    num_threads: int = 4


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if not raw:
        return default
    try:
        return max(1, int(raw))
    except ValueError:
        log.warning("Ignoring %s=%r (not an integer)", name, raw)
        return default


def _float(env: Mapping[str, str], name: str) -> Optional[float]:
    raw = env.get(name)
    if not raw:
        return None
    try:
        value = float(raw)
    except ValueError:
        log.warning("Ignoring %s=%r (not a number)", name, raw)
        return None
    return value if value > 0 else None


def load_settings(
    env: Optional[Mapping[str, str]] = None,
    *,
    dotenv_path: Optional[Path] = None,
) -> Settings:
    """Build :class:`Settings` from *env* (default: ``os.environ`` after ``load_dotenv``)."""
    if env is None:
        from dotenv import load_dotenv

        load_dotenv(dotenv_path)
        env = os.environ

    api_key = next((env[name] for name in API_KEY_VARS if env.get(name)), None)
    settings = Settings(
        api_key=api_key,
        text_model=env.get("FESTIVAL_TEXT_MODEL") or DEFAULT_MODEL,
        vision_model=env.get("FESTIVAL_VISION_MODEL") or DEFAULT_MODEL,
        data_dir=Path(env.get("FESTIVAL_DATA_DIR") or DEFAULT_DATA_DIR),
        max_images=_int(env, "FESTIVAL_MAX_IMAGES", MAX_IMAGES),
        request_timeout=_float(env, "FESTIVAL_REQUEST_TIMEOUT"),
        num_threads=_int(env, "FESTIVAL_NUM_THREADS", 4),
    )
    log.debug(
        "Settings: text_model=%s vision_model=%s data_dir=%s max_images=%s timeout=%s key=%s",
        settings.text_model,
        settings.vision_model,
        settings.data_dir,
        settings.max_images,
        settings.request_timeout,
        "set" if settings.api_key else "missing",
    )
    return settings
