"""Pydantic models for parsed master and media playlists."""

from __future__ import annotations

from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict

DEFAULT_EXCLUDED_IDS: Tuple[str, ...] = ("099_Pluto_TV_OandO", "829_Pluto_TV_OandO")


class StreamVariant(BaseModel):
    """One ``#EXT-X-STREAM-INF`` entry of a master playlist."""

    model_config = ConfigDict(frozen=True)

    bandwidth: int
    uri: str
    program_id: Optional[int] = None
    subtitles: Optional[str] = None
    resolution: Optional[str] = None
    codecs: Optional[str] = None


class MediaRecord(BaseModel):
    """One ``#EXT-X-MEDIA`` rendition (subtitles, alternate audio)."""

    model_config = ConfigDict(frozen=True)

    type: str
    group_id: Optional[str] = None
    name: Optional[str] = None
    language: Optional[str] = None
    uri: Optional[str] = None
    default: bool = False
    forced: bool = False
    autoselect: bool = False


class KeyRecord(BaseModel):
    """AES-128 key reference shared by every segment until the next key tag."""

    model_config = ConfigDict(frozen=True)

    name: str
    uri: str
    iv: Optional[str] = None
    method: str = "AES-128"

    def iv_bytes(self, sequence: int) -> bytes:
        """IV as 16 bytes, falling back to the media sequence number.

        Raises ``ValueError`` when the sequence does not fit an unsigned
        128-bit integer.
        """

        if self.iv:
            return bytes.fromhex(self.iv)
        try:
            return sequence.to_bytes(16, byteorder="big")
        except OverflowError as exc:
            raise ValueError(f"media sequence {sequence} cannot be used as an IV") from exc


class MediaSegment(BaseModel):
    """A single media segment in manifest order."""

    model_config = ConfigDict(frozen=True)

    url: str
    index: str = ""
    sequence: int = 0
    duration: Optional[float] = None
    key: Optional[KeyRecord] = None


class MasterPlaylist(BaseModel):
    variants: List[StreamVariant]
    media: List[MediaRecord]


class MediaPlaylist(BaseModel):
    segments: List[MediaSegment]
    keys: List[KeyRecord]
    media_sequence: int = 0
    discontinuity: bool = False


class KeyNaming(BaseModel):
    """Where a key's name sits inside its URI.

    The name is the ``segment``-th ``/``-separated piece of the key URI with
    the first ``offset`` characters cut off. This is a convention of one
    origin's URL layout, so both values are configurable.
    """

    segment: int = 5
    offset: int = 25


class ParserSettings(BaseModel):
    naming: KeyNaming = KeyNaming()
    excluded_ids: Tuple[str, ...] = DEFAULT_EXCLUDED_IDS

    def is_excluded(self, value: str) -> bool:
        return any(marker in value for marker in self.excluded_ids)

