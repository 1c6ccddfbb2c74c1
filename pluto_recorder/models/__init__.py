"""Data models for playlists, keys, segments, and stitcher sessions."""

from .playlist_models import (
    DEFAULT_EXCLUDED_IDS,
    KeyNaming,
    KeyRecord,
    MasterPlaylist,
    MediaPlaylist,
    MediaRecord,
    MediaSegment,
    ParserSettings,
    StreamVariant,
)
from .session_models import ProcessReport, SegmentFailure, SessionInfo

__all__ = [
    "DEFAULT_EXCLUDED_IDS",
    "StreamVariant",
    "MediaRecord",
    "KeyRecord",
    "MediaSegment",
    "MasterPlaylist",
    "MediaPlaylist",
    "KeyNaming",
    "ParserSettings",
    "SessionInfo",
    "SegmentFailure",
    "ProcessReport",
]
