"""Utility helpers for HTTP and filesystem operations."""

from .http_client import AuthenticationError, DownloadError, HttpClient
from .file_utils import build_segment_path, ensure_directory, list_files, sanitize_filename

__all__ = [
    "HttpClient",
    "DownloadError",
    "AuthenticationError",
    "build_segment_path",
    "ensure_directory",
    "list_files",
    "sanitize_filename",
]
