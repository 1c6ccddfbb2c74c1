"""Filesystem helpers for the segment output tree and saved playlists."""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import List
from urllib.parse import urlparse

INVALID_FILENAME_CHARS = re.compile(r"[\\/:*?\"<>|]")
DEFAULT_BASE_DIR_MARKER = r"720p(?:DRM)?/"


def sanitize_filename(value: str, default: str = "file") -> str:
    """Removes characters that are invalid on most filesystems."""

    sanitized = INVALID_FILENAME_CHARS.sub("", value or "").strip()
    if sanitized in {".", ".."}:
        sanitized = ""
    return sanitized or default


def ensure_directory(path: str) -> str:
    """Creates a directory (and its parents) if needed."""

    Path(path).mkdir(parents=True, exist_ok=True)
    return path


def url_filename(url: str) -> str:
    """Last path segment of ``url`` without query string or fragment."""

    return urlparse(url).path.rsplit("/", 1)[-1]


def url_base_dir(url: str, marker: str = DEFAULT_BASE_DIR_MARKER) -> str:
    """Directory part of the URL path that follows ``marker``.

    ``https://cdn/x/720pDRM/a/b/seg-1.ts`` gives ``a/b``. Returns an empty
    string when the marker does not occur in the path.
    """

    parts = re.split(marker, urlparse(url).path, maxsplit=1)
    if len(parts) < 2 or not parts[1]:
        return ""
    pieces = parts[1].split("/")[:-1]
    return "/".join(piece for piece in pieces if piece and piece not in {".", ".."})


def build_segment_path(
    output_root: str,
    show_name: str,
    key_name: str,
    url: str,
    marker: str = DEFAULT_BASE_DIR_MARKER,
) -> str:
    """Deterministic output location for one decrypted segment."""

    parts = [
        output_root,
        sanitize_filename(show_name, default="show"),
        sanitize_filename(key_name, default="key"),
    ]
    base_dir = url_base_dir(url, marker)
    if base_dir:
        parts.extend(sanitize_filename(piece, default="_") for piece in base_dir.split("/"))
    parts.append(sanitize_filename(url_filename(url), default="segment.ts"))
    return os.path.join(*parts)


def list_files(directory: str, name_prefix: str = "", extension: str = "") -> List[str]:
    """Sorted paths in ``directory`` whose names match prefix and extension."""

    try:
        names = os.listdir(directory)
    except OSError as exc:
        logging.error("Unable to list %s: %s", directory, exc)
        return []
    paths = [
        os.path.join(directory, name)
        for name in names
        if (not name_prefix or name.startswith(name_prefix)) and (not extension or name.endswith(extension))
    ]
    return sorted(path for path in paths if os.path.isfile(path))


def write_file_atomic(path: str, data: bytes) -> None:
    """Writes ``data`` next to ``path`` and renames it into place."""

    ensure_directory(os.path.dirname(path) or ".")
    tmp_path = f"{path}.part"
    try:
        with open(tmp_path, "wb") as file_obj:
            file_obj.write(data)
        os.replace(tmp_path, path)
    except OSError:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise
