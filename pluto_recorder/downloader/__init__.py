"""Playlist parsing, segment decryption, and playlist capture."""

from .m3u8_parser import M3U8Parser, ParseError, parse_master, parse_media, select_highest_bandwidth
from .segment_decryptor import DecryptionError, SegmentDecryptor, decrypt_segment
from .playlist_recorder import PlaylistRecorder, process_saved_playlists

__all__ = [
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
]
