from __future__ import annotations

import argparse
import logging
import os
import sys

from dotenv import load_dotenv

from .api.boot_api import BootAPI
from .downloader.m3u8_parser import ParseError
from .downloader.playlist_recorder import PlaylistRecorder, process_saved_playlists
from .downloader.segment_decryptor import SegmentDecryptor
from .models import DEFAULT_EXCLUDED_IDS, KeyNaming, ParserSettings
from .utils.file_utils import DEFAULT_BASE_DIR_MARKER, ensure_directory
from .utils.http_client import HttpClient
from .utils.session_cache import DEFAULT_CACHE_PATH

load_dotenv()


def _env_str(name: str) -> str | None:
    value = os.getenv(name)
    if value is None or value == "":
        return None
    return value


def _env_int(name: str) -> int | None:
    value = _env_str(name)
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _env_bool(name: str) -> bool:
    value = _env_str(name)
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_list(name: str) -> list[str] | None:
    raw = _env_str(name)
    if not raw:
        return None
    items = [item.strip() for item in raw.split(",") if item.strip()]
    return items or None


def _csv_arg(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Record and decrypt Pluto TV channel segments.")
    parser.add_argument("--output-dir", default=_env_str("OUTPUT_DIR") or ".", help="Root directory for decrypted show folders")
    parser.add_argument("--show-name", default=_env_str("SHOW_NAME") or "show", help="Show folder that segments are written to")
    parser.add_argument("--playlist-dir", default=_env_str("PLAYLIST_DIR") or "m3u8", help="Directory for captured playlists")
    parser.add_argument("--playlist-prefix", default=_env_str("PLAYLIST_PREFIX") or "", help="File name prefix of captured playlists")
    parser.add_argument("--workers", type=int, default=_env_int("WORKERS") or 1, help="Number of concurrent segment downloads")
    parser.add_argument("--timeout", type=int, default=_env_int("TIMEOUT") or 10, help="HTTP timeout in seconds")
    parser.add_argument(
        "--key-name-segment",
        type=int,
        default=_env_int("KEY_NAME_SEGMENT") if _env_int("KEY_NAME_SEGMENT") is not None else 5,
        help="Path piece of the key URI that holds the key name",
    )
    parser.add_argument(
        "--key-name-offset",
        type=int,
        default=_env_int("KEY_NAME_OFFSET") if _env_int("KEY_NAME_OFFSET") is not None else 25,
        help="Characters cut from the start of that path piece",
    )
    parser.add_argument(
        "--excluded-ids",
        type=_csv_arg,
        default=_env_list("EXCLUDED_IDS") or list(DEFAULT_EXCLUDED_IDS),
        help="Comma-separated ids of filler assets to leave out",
    )
    parser.add_argument(
        "--base-dir-marker",
        default=_env_str("BASE_DIR_MARKER") or DEFAULT_BASE_DIR_MARKER,
        help="Regex after which the segment URL path is mirrored into the output tree",
    )
    parser.add_argument("--verbose", action="store_true", default=_env_bool("VERBOSE"), help="Enable debug logging")

    commands = parser.add_subparsers(dest="command", required=True)

    record = commands.add_parser("record", help="Capture the channel playlist on a fixed interval")
    record.add_argument("--channel-id", default=_env_str("CHANNEL_ID"), help="Pluto TV channel id")
    record.add_argument("--interval", type=float, default=_env_int("INTERVAL") or 5, help="Seconds between captures")
    record.add_argument("--max-ticks", type=int, default=_env_int("MAX_TICKS"), help="Stop after this many captures")
    record.add_argument(
        "--decrypt",
        action="store_true",
        default=_env_bool("DECRYPT"),
        help="Decrypt segments of each captured playlist right away",
    )
    session_cache_env = _env_str("SESSION_CACHE")
    record.add_argument(
        "--session-cache",
        default=os.path.expanduser(session_cache_env) if session_cache_env else DEFAULT_CACHE_PATH,
        help="File to persist the stitcher session between runs",
    )

    commands.add_parser("process", help="Decrypt segments of every captured playlist")
    return parser.parse_args(argv)


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )


def build_settings(args: argparse.Namespace) -> ParserSettings:
    return ParserSettings(
        naming=KeyNaming(segment=args.key_name_segment, offset=args.key_name_offset),
        excluded_ids=tuple(args.excluded_ids),
    )


def run_record(args: argparse.Namespace, http_client: HttpClient, decryptor: SegmentDecryptor) -> int:
    if not args.channel_id:
        logging.error("--channel-id (or CHANNEL_ID) is required for recording")
        return 2

    def decrypt_now(text: str, url: str) -> None:
        try:
            decryptor.process(text, args.show_name, base_url=url)
        except ParseError as exc:
            logging.error("Captured playlist could not be decrypted: %s", exc)

    recorder = PlaylistRecorder(
        http_client,
        BootAPI(http_client),
        args.channel_id,
        args.playlist_dir,
        prefix=args.playlist_prefix,
        settings=decryptor.settings,
        session_cache=args.session_cache,
        on_playlist=decrypt_now if args.decrypt else None,
    )
    logging.info("Recording channel %s every %ss into %s", args.channel_id, args.interval, args.playlist_dir)
    recorder.run(args.interval, max_ticks=args.max_ticks)
    return 0


def run_process(args: argparse.Namespace, decryptor: SegmentDecryptor) -> int:
    if not os.path.isdir(args.playlist_dir):
        logging.error("Playlist directory %s does not exist", args.playlist_dir)
        return 2
    completed = process_saved_playlists(decryptor, args.playlist_dir, args.playlist_prefix, args.show_name)
    logging.info("Completed %s playlists", completed)
    return 0


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(args.verbose)

    ensure_directory(args.output_dir)
    with HttpClient(timeout=args.timeout) as http_client:
        decryptor = SegmentDecryptor(
            http_client,
            output_root=args.output_dir,
            workers=args.workers,
            settings=build_settings(args),
            base_dir_marker=args.base_dir_marker,
        )
        try:
            if args.command == "record":
                return run_record(args, http_client, decryptor)
            return run_process(args, decryptor)
        except KeyboardInterrupt:
            logging.info("Interrupted")
            return 130
        except OSError as exc:
            logging.error("Filesystem error: %s", exc)
            return 1


if __name__ == "__main__":
    sys.exit(main())
