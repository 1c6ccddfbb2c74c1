"""Simple helpers for persisting the stitcher session locally."""

from __future__ import annotations

import json
import logging
import os
from typing import Optional

from pydantic import ValidationError

from ..models import SessionInfo

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
DEFAULT_CACHE_PATH = os.path.join(PROJECT_ROOT, ".cache", "session.json")


def load_cached_session(path: Optional[str]) -> Optional[SessionInfo]:
    if not path:
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        session = SessionInfo.model_validate(data)
    except FileNotFoundError:
        return None
    except (json.JSONDecodeError, OSError, ValidationError) as exc:
        logging.warning("Failed to read session cache %s: %s", path, exc)
        return None
    if session.is_expired():
        logging.debug("Cached session in %s has expired", path)
        return None
    logging.info("Using cached stitcher session from %s", path)
    return session


def save_cached_session(path: Optional[str], session: SessionInfo) -> None:
    if not path:
        return
    try:
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write(session.model_dump_json())
        logging.debug("Saved session cache to %s", path)
    except OSError as exc:  # pragma: no cover - io errors
        logging.warning("Unable to write session cache %s: %s", path, exc)


def clear_cached_session(path: Optional[str]) -> None:
    if not path:
        return
    try:
        if os.path.exists(path):
            os.remove(path)
            logging.info("Cleared cached session %s", path)
    except OSError as exc:  # pragma: no cover
        logging.warning("Failed to remove session cache %s: %s", path, exc)
