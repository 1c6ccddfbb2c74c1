"""Periodic playlist capture and processing of captured playlists."""

from __future__ import annotations

import logging
import os
import time
from typing import TYPE_CHECKING, Callable, Optional

from ..models import ParserSettings, SessionInfo
from ..utils.file_utils import ensure_directory, list_files
from ..utils.http_client import AuthenticationError, DownloadError, HttpClient
from ..utils.session_cache import clear_cached_session, load_cached_session, save_cached_session
from .m3u8_parser import ParseError, parse_media
from .segment_decryptor import SegmentDecryptor

if TYPE_CHECKING:
    from ..api.boot_api import BootAPI

PLAYLIST_EXTENSION = ".m3u8"

PlaylistCallback = Callable[[str, str], None]


class PlaylistRecorder:
    """Saves a channel's live media playlist on every tick.

    The stitcher session is refreshed when it expires or when the stitcher
    rejects it. Each tick is independent: a failure is logged and the next
    tick tries again.
    """

    def __init__(
        self,
        http_client: HttpClient,
        boot_api: BootAPI,
        channel_id: str,
        playlist_dir: str,
        prefix: str = "",
        settings: Optional[ParserSettings] = None,
        session_cache: Optional[str] = None,
        on_playlist: Optional[PlaylistCallback] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.channel_id = channel_id
        self.playlist_dir = playlist_dir
        self.prefix = prefix
        self.settings = settings or ParserSettings()
        self.session_cache = session_cache
        self.on_playlist = on_playlist
        self._http_client = http_client
        self._boot_api = boot_api
        self._clock = clock
        self._sleep = sleep
        self._session: Optional[SessionInfo] = load_cached_session(session_cache)
        self._playlist_url: Optional[str] = None

    def _needs_refresh(self) -> bool:
        return self._playlist_url is None or self._session is None or self._session.is_expired()

    def _refresh(self) -> None:
        session = self._session if self._session and not self._session.is_expired() else None
        url, session = self._boot_api.resolve_playlist_url(self.channel_id, session)
        self._playlist_url = url
        if session is not self._session:
            save_cached_session(self.session_cache, session)
        self._session = session

    def _invalidate_session(self) -> None:
        self._session = None
        self._playlist_url = None
        clear_cached_session(self.session_cache)

    def record_once(self) -> Optional[str]:
        """Fetches and saves the playlist; returns the saved path or ``None``."""

        if self._needs_refresh():
            logging.info("Refreshing stitcher session for channel %s", self.channel_id)
            try:
                self._refresh()
            except AuthenticationError as exc:
                logging.error("Session bootstrap rejected: %s", exc)
                self._invalidate_session()
                return None
            except (DownloadError, ValueError) as exc:
                logging.error("Session bootstrap failed: %s", exc)
                return None

        url = self._playlist_url
        try:
            text = self._http_client.fetch_text(url)
        except AuthenticationError as exc:
            logging.warning("Stitcher rejected the session, refreshing next tick: %s", exc)
            self._invalidate_session()
            return None
        except DownloadError as exc:
            logging.error("Error downloading playlist: %s", exc)
            return None

        try:
            playlist = parse_media(text, base_url=url, settings=self.settings)
        except ParseError as exc:
            logging.error("Playlist from %s is malformed: %s", url, exc)
            return None

        if not playlist.segments:
            logging.info("No parseable content in playlist; nothing to do")
            return None

        ensure_directory(self.playlist_dir)
        output_file = os.path.join(self.playlist_dir, f"{self.prefix}{int(self._clock())}{PLAYLIST_EXTENSION}")
        with open(output_file, "w", encoding="utf-8") as handle:
            handle.write(text)
        logging.info("Playlist with %s segments saved to %s", len(playlist.segments), output_file)

        if self.on_playlist:
            self.on_playlist(text, url)
        return output_file

    def run(self, interval: float, max_ticks: Optional[int] = None) -> int:
        """Calls :meth:`record_once` every ``interval`` seconds.

        Ticks never overlap: a tick that overruns the interval delays the next
        one instead of running concurrently with it.
        """

        ticks = 0
        next_tick = self._clock()
        while max_ticks is None or ticks < max_ticks:
            self.record_once()
            ticks += 1
            if max_ticks is not None and ticks >= max_ticks:
                break
            next_tick += interval
            delay = next_tick - self._clock()
            if delay > 0:
                self._sleep(delay)
            else:
                logging.warning("Tick overran the %ss interval by %.1fs", interval, -delay)
                next_tick = self._clock()
        return ticks


def process_saved_playlists(
    decryptor: SegmentDecryptor,
    playlist_dir: str,
    prefix: str,
    show_label: str,
) -> int:
    """Decrypts every saved playlist in name order.

    A playlist file is deleted once all of its segments are on disk; files
    with failed segments stay so the next pass retries them. Returns the
    number of playlists completed.
    """

    completed = 0
    files = list_files(playlist_dir, prefix, PLAYLIST_EXTENSION)
    if not files:
        logging.info("No saved playlists in %s", playlist_dir)
        return 0

    for index, path in enumerate(files, start=1):
        label = f"[{index}/{len(files)}] {os.path.basename(path)}"
        with open(path, "r", encoding="utf-8") as handle:
            text = handle.read()
        try:
            report = decryptor.process(text, show_label)
        except ParseError as exc:
            logging.error("%s Skipping malformed playlist: %s", label, exc)
            continue
        if report.ok:
            os.remove(path)
            completed += 1
            logging.info("%s Done", label)
        else:
            logging.warning("%s %s segments failed; keeping playlist for retry", label, len(report.failed))
    return completed
