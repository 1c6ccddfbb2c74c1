"""Fetches, decrypts, and stores the segments of a media playlist."""

from __future__ import annotations

import asyncio
import binascii
import logging
import os
from typing import Dict, Optional, Set

from Crypto.Cipher import AES
from Crypto.Util.Padding import unpad

from ..models import KeyRecord, MediaPlaylist, MediaSegment, ParserSettings, ProcessReport, SegmentFailure
from ..utils.file_utils import DEFAULT_BASE_DIR_MARKER, build_segment_path, write_file_atomic
from ..utils.http_client import DownloadError, HttpClient
from .m3u8_parser import parse_media

UNENCRYPTED_DIR = "unencrypted"


class DecryptionError(Exception):
    """Raised when a segment cannot be decrypted with its key and IV."""


def normalize_key_bytes(raw: bytes) -> bytes:
    """Returns the 16 key bytes served by the origin.

    Some origins serve the key as 32 hex characters instead of raw bytes.
    """

    if len(raw) == AES.block_size:
        return bytes.fromhex(raw.hex())
    if len(raw) == 2 * AES.block_size:
        try:
            return binascii.unhexlify(raw.strip())
        except (binascii.Error, ValueError) as exc:
            raise DecryptionError("key body is neither 16 raw bytes nor 32 hex characters") from exc
    raise DecryptionError(f"key body has {len(raw)} bytes, expected 16")


def decrypt_segment(data: bytes, key: bytes, iv: bytes) -> bytes:
    """AES-128-CBC decryption followed by PKCS#7 unpadding."""

    try:
        cipher = AES.new(key, AES.MODE_CBC, iv)
        return unpad(cipher.decrypt(data), AES.block_size)
    except ValueError as exc:
        raise DecryptionError(str(exc)) from exc


def segment_iv(segment: MediaSegment) -> bytes:
    """IV for an encrypted segment: the declared one or its media sequence."""

    try:
        return segment.key.iv_bytes(segment.sequence)
    except ValueError as exc:
        raise DecryptionError(str(exc)) from exc


class _KeyCache:
    """Key bytes by URI for a single run; one fetch per key even with workers."""

    def __init__(self, http_client: HttpClient) -> None:
        self._http_client = http_client
        self._keys: Dict[str, bytes] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    async def get(self, key: KeyRecord) -> bytes:
        cached = self._keys.get(key.uri)
        if cached is not None:
            return cached
        lock = self._locks.setdefault(key.uri, asyncio.Lock())
        async with lock:
            cached = self._keys.get(key.uri)
            if cached is None:
                logging.debug("Fetching key %s (%s)", key.name, key.uri)
                raw = await self._http_client.fetch_bytes_async(key.uri)
                cached = normalize_key_bytes(raw)
                self._keys[key.uri] = cached
        return cached


class SegmentDecryptor:
    """Writes the plaintext of every playlist segment exactly once.

    Output lives at ``{output_root}/{show}/{key name}/{url dir}/{file}``. A
    segment whose target file already exists is skipped, so running the same
    playlist twice does no extra work. Download and decryption failures are
    logged and reported per segment; filesystem errors abort the run.
    """

    def __init__(
        self,
        http_client: HttpClient,
        output_root: str = ".",
        workers: int = 1,
        settings: Optional[ParserSettings] = None,
        base_dir_marker: str = DEFAULT_BASE_DIR_MARKER,
    ) -> None:
        self.output_root = output_root
        self.workers = max(1, workers)
        self.settings = settings or ParserSettings()
        self.base_dir_marker = base_dir_marker
        self._http_client = http_client

    def process(self, manifest_text: str, show_label: str, base_url: Optional[str] = None) -> ProcessReport:
        playlist = parse_media(manifest_text, base_url=base_url, settings=self.settings)
        return self.process_playlist(playlist, show_label)

    def process_playlist(self, playlist: MediaPlaylist, show_label: str) -> ProcessReport:
        if not playlist.segments:
            logging.info("No segments to process for %s", show_label)
            return ProcessReport()
        report = asyncio.run(self._process_segments(playlist, show_label))
        logging.info(
            "%s: %s written, %s skipped, %s failed",
            show_label,
            report.written,
            report.skipped,
            len(report.failed),
        )
        return report

    def segment_path(self, segment: MediaSegment, show_label: str) -> str:
        key_name = segment.key.name if segment.key else UNENCRYPTED_DIR
        return build_segment_path(self.output_root, show_label, key_name, segment.url, self.base_dir_marker)

    async def _process_segments(self, playlist: MediaPlaylist, show_label: str) -> ProcessReport:
        report = ProcessReport()
        keys = _KeyCache(self._http_client)
        claimed: Set[str] = set()
        sem = asyncio.Semaphore(self.workers)
        tasks = [
            asyncio.ensure_future(self._process_single(sem, segment, show_label, keys, claimed, report))
            for segment in playlist.segments
        ]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        finally:
            await self._http_client.aclose()
        return report

    async def _process_single(
        self,
        sem: asyncio.Semaphore,
        segment: MediaSegment,
        show_label: str,
        keys: _KeyCache,
        claimed: Set[str],
        report: ProcessReport,
    ) -> None:
        dest_path = self.segment_path(segment, show_label)
        if dest_path in claimed or os.path.exists(dest_path):
            logging.debug("Skipping existing segment %s", dest_path)
            report.skipped += 1
            return
        claimed.add(dest_path)

        async with sem:
            try:
                data = await self._http_client.fetch_bytes_async(segment.url)
                if segment.key is not None:
                    key = await keys.get(segment.key)
                    data = decrypt_segment(data, key, segment_iv(segment))
            except (DownloadError, DecryptionError) as exc:
                logging.error("Segment %s (%s) failed: %s", segment.index or segment.sequence, segment.url, exc)
                report.failed.append(SegmentFailure(url=segment.url, reason=str(exc)))
                return

        write_file_atomic(dest_path, data)
        report.written += 1
        logging.debug("Decrypted segment %s written to %s", segment.index or segment.sequence, dest_path)
