"""Tools for parsing master and media m3u8 playlists."""

from __future__ import annotations

import logging
import os
import re
import string
from typing import Dict, List, Optional
from urllib.parse import urljoin

from ..models import (
    KeyNaming,
    KeyRecord,
    MasterPlaylist,
    MediaPlaylist,
    MediaRecord,
    MediaSegment,
    ParserSettings,
    StreamVariant,
)
from ..utils.file_utils import url_filename
from ..utils.http_client import HttpClient

ATTRIBUTE_PATTERN = re.compile(r'([A-Za-z0-9_-]+)\s*=\s*("[^"]*"|[^,]*)')
HEX_DIGITS = set(string.hexdigits)

TAG_STREAM_INF = "#EXT-X-STREAM-INF"
TAG_MEDIA = "#EXT-X-MEDIA:"
TAG_KEY = "#EXT-X-KEY"
TAG_EXTINF = "#EXTINF"
TAG_MEDIA_SEQUENCE = "#EXT-X-MEDIA-SEQUENCE"
TAG_DISCONTINUITY = "#EXT-X-DISCONTINUITY"
TAG_DISCONTINUITY_SEQUENCE = "#EXT-X-DISCONTINUITY-SEQUENCE"


class ParseError(ValueError):
    """Raised when a manifest line lacks an attribute the format requires."""

    def __init__(self, message: str, line_number: Optional[int] = None) -> None:
        if line_number is not None:
            message = f"line {line_number}: {message}"
        super().__init__(message)
        self.line_number = line_number


def parse_attributes(line: str) -> Dict[str, str]:
    """Parses ``ATTR=value`` pairs of a tag line into a lower-cased dict.

    The tag itself (everything up to the first ``:``) is dropped and one layer
    of surrounding double quotes is removed from each value.
    """

    _, _, payload = line.partition(":")
    attributes: Dict[str, str] = {}
    for match in ATTRIBUTE_PATTERN.finditer(payload):
        key, value = match.group(1), match.group(2).strip()
        if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
            value = value[1:-1]
        attributes[key.strip().lower()] = value
    return attributes


def _optional_int(value: Optional[str], field: str, line_number: int) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except ValueError as exc:
        raise ParseError(f"{field} is not an integer: {value!r}", line_number) from exc


def _next_uri_line(lines: List[str], start: int) -> Optional[str]:
    for candidate in lines[start:]:
        stripped = candidate.strip()
        if not stripped:
            continue
        if stripped.startswith("#"):
            return None
        return stripped
    return None


def _build_variant(attributes: Dict[str, str], uri: Optional[str], line_number: int) -> StreamVariant:
    if not uri:
        raise ParseError("STREAM-INF is not followed by a URI line", line_number)
    bandwidth = _optional_int(attributes.get("bandwidth"), "BANDWIDTH", line_number)
    if bandwidth is None:
        raise ParseError("STREAM-INF without BANDWIDTH", line_number)
    return StreamVariant(
        bandwidth=bandwidth,
        uri=uri,
        program_id=_optional_int(attributes.get("program-id"), "PROGRAM-ID", line_number),
        subtitles=attributes.get("subtitles"),
        resolution=attributes.get("resolution"),
        codecs=attributes.get("codecs"),
    )


def _build_media(attributes: Dict[str, str], line_number: int) -> MediaRecord:
    media_type = attributes.get("type")
    if not media_type:
        raise ParseError("MEDIA without TYPE", line_number)
    return MediaRecord(
        type=media_type,
        group_id=attributes.get("group-id"),
        name=attributes.get("name"),
        language=attributes.get("language"),
        uri=attributes.get("uri"),
        default=attributes.get("default", "").upper() == "YES",
        forced=attributes.get("forced", "").upper() == "YES",
        autoselect=attributes.get("autoselect", "").upper() == "YES",
    )


def parse_master(text: str) -> MasterPlaylist:
    """Extracts stream variants and media renditions from a master playlist."""

    lines = text.splitlines()
    variants: List[StreamVariant] = []
    media: List[MediaRecord] = []

    for position, raw_line in enumerate(lines):
        line = raw_line.strip()
        line_number = position + 1
        try:
            if line.startswith(TAG_STREAM_INF):
                uri = _next_uri_line(lines, position + 1)
                variants.append(_build_variant(parse_attributes(line), uri, line_number))
            elif line.startswith(TAG_MEDIA):
                media.append(_build_media(parse_attributes(line), line_number))
        except ParseError as exc:
            logging.warning("Skipping master playlist entry: %s", exc)

    return MasterPlaylist(variants=variants, media=media)


def select_highest_bandwidth(variants: List[StreamVariant]) -> Optional[StreamVariant]:
    """Variant with the largest bandwidth; the earliest one wins ties."""

    if not variants:
        return None
    return max(variants, key=lambda variant: variant.bandwidth)


def derive_key_name(uri: str, naming: KeyNaming, line_number: Optional[int] = None) -> str:
    pieces = uri.split("/")
    if naming.segment < 0 or naming.segment >= len(pieces):
        raise ParseError(
            f"key URI has {len(pieces)} path pieces, cannot take piece {naming.segment}: {uri}",
            line_number,
        )
    name = pieces[naming.segment][naming.offset:]
    if not name:
        raise ParseError(f"key URI yields an empty key name: {uri}", line_number)
    return name


def normalize_iv(value: Optional[str], line_number: Optional[int] = None) -> Optional[str]:
    """Lower-case 32 digit hex IV without the ``0x`` marker."""

    if value is None or not value.strip():
        return None
    iv = value.strip()
    if iv[:2].lower() == "0x":
        iv = iv[2:]
    iv = iv.lower()
    if not iv or len(iv) > 32 or not set(iv) <= HEX_DIGITS:
        raise ParseError(f"invalid IV {value!r}", line_number)
    return iv.zfill(32)


def segment_index(url: str) -> str:
    """Trailing ``-``-separated token of the file name, extension removed."""

    filename = url_filename(url)
    if "-" not in filename:
        return ""
    return os.path.splitext(filename.rsplit("-", 1)[-1])[0]


def _parse_duration(line: str, line_number: int) -> float:
    _, _, payload = line.partition(":")
    duration = payload.split(",", 1)[0].strip()
    try:
        return float(duration)
    except ValueError as exc:
        raise ParseError(f"invalid EXTINF duration {duration!r}", line_number) from exc


def parse_media(
    text: str,
    base_url: Optional[str] = None,
    settings: Optional[ParserSettings] = None,
) -> MediaPlaylist:
    """Extracts ordered segments and their keys from a media playlist.

    Every segment references the key declared most recently before it, or
    ``None`` when no key applies. Scanning stops at the first discontinuity.
    Keys and segments whose URI contains an excluded id are dropped.
    """

    settings = settings or ParserSettings()
    segments: List[MediaSegment] = []
    keys: List[KeyRecord] = []
    current_key: Optional[KeyRecord] = None
    media_sequence = 0
    position = 0
    pending_duration: Optional[float] = None
    pending_line = 0
    discontinuity = False

    for line_number, raw_line in enumerate(text.splitlines(), start=1):
        line = raw_line.strip()
        if not line:
            continue

        if line.startswith(TAG_DISCONTINUITY) and not line.startswith(TAG_DISCONTINUITY_SEQUENCE):
            logging.info("Discontinuity at line %s; ignoring the rest of the playlist", line_number)
            discontinuity = True
            pending_duration = None
            break

        if line.startswith(TAG_MEDIA_SEQUENCE):
            try:
                value = _optional_int(line.partition(":")[2].strip(), "MEDIA-SEQUENCE", line_number) or 0
                if value < 0:
                    raise ParseError(f"MEDIA-SEQUENCE is negative: {value}", line_number)
                media_sequence = value
            except ParseError as exc:
                logging.warning("Ignoring media sequence: %s", exc)
            continue

        if line.startswith(TAG_KEY):
            attributes = parse_attributes(line)
            method = attributes.get("method", "AES-128").upper()
            if method == "NONE":
                current_key = None
                continue
            if method != "AES-128":
                raise ParseError(f"unsupported encryption method {method}", line_number)
            uri = attributes.get("uri")
            if not uri:
                raise ParseError("KEY without URI", line_number)
            if settings.is_excluded(uri):
                logging.debug("Ignoring excluded key %s", uri)
                continue
            if base_url:
                uri = urljoin(base_url, uri)
            current_key = KeyRecord(
                name=derive_key_name(uri, settings.naming, line_number),
                uri=uri,
                iv=normalize_iv(attributes.get("iv"), line_number),
                method=method,
            )
            keys.append(current_key)
            continue

        if line.startswith(TAG_EXTINF):
            if pending_duration is not None:
                raise ParseError("EXTINF is not followed by a segment URI", pending_line)
            pending_duration = _parse_duration(line, line_number)
            pending_line = line_number
            continue

        if line.startswith("#") or pending_duration is None:
            continue

        url = urljoin(base_url, line) if base_url else line
        sequence = media_sequence + position
        position += 1
        duration, pending_duration = pending_duration, None
        if settings.is_excluded(url):
            logging.debug("Ignoring excluded segment %s", url)
            continue
        segments.append(
            MediaSegment(
                url=url,
                index=segment_index(url),
                sequence=sequence,
                duration=duration,
                key=current_key,
            )
        )

    if pending_duration is not None:
        raise ParseError("EXTINF is not followed by a segment URI", pending_line)

    if not segments:
        logging.warning("Media playlist contained no usable segments")
    return MediaPlaylist(
        segments=segments,
        keys=keys,
        media_sequence=media_sequence,
        discontinuity=discontinuity,
    )


class M3U8Parser:
    """Fetches m3u8 manifests and parses them."""

    def __init__(self, http_client: HttpClient, settings: Optional[ParserSettings] = None) -> None:
        self._http_client = http_client
        self.settings = settings or ParserSettings()

    def parse_master_url(self, url: str) -> MasterPlaylist:
        text = self._http_client.fetch_text(url)
        master = parse_master(text)
        if not master.variants:
            logging.warning("Master playlist at %s did not list any variants", url)
        return master

    def parse_media_url(self, url: str) -> MediaPlaylist:
        text = self._http_client.fetch_text(url)
        return parse_media(text, base_url=url, settings=self.settings)
