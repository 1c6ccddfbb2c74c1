"""Record Pluto TV channel playlists and decrypt their AES-128 segments."""

__version__ = "0.1.0"

from .downloader.m3u8_parser import M3U8Parser, ParseError, parse_master, parse_media, select_highest_bandwidth
from .downloader.segment_decryptor import DecryptionError, SegmentDecryptor, decrypt_segment
from .downloader.playlist_recorder import PlaylistRecorder, process_saved_playlists
from .api.boot_api import BootAPI
from .models import KeyRecord, MediaPlaylist, MediaSegment, MasterPlaylist, ProcessReport, StreamVariant
from .utils.http_client import AuthenticationError, DownloadError, HttpClient

__all__ = [
    "__version__",
    "M3U8Parser",
    "ParseError",
    "parse_master",
    "parse_media",
    "select_highest_bandwidth",
    "SegmentDecryptor",
    "DecryptionError",
    "decrypt_segment",
    "PlaylistRecorder",
    "process_saved_playlists",
    "BootAPI",
    "KeyRecord",
    "MediaPlaylist",
    "MediaSegment",
    "MasterPlaylist",
    "ProcessReport",
    "StreamVariant",
    "HttpClient",
    "DownloadError",
    "AuthenticationError",
]
